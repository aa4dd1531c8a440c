"""
foundry/commands/validator.py

Trust boundary between an authenticated request and process execution.

Validation is pure: no I/O, no state. It rejects shell metacharacters even
though commands are never run through a shell, caps the length, normalises
shorthand (`plugin list` -> `wp plugin list`) and enforces the prefix
allow-list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Tuple

from foundry.errors import ErrorCode, FoundryError

logger = logging.getLogger(__name__)

TOOL_PREFIX = "wp "
BUILTIN_PREFIX = "foundry "

FORBIDDEN_CHARACTERS = frozenset(";&|`$()<>")
MAX_COMMAND_LENGTH = 1000

# Only this many leading characters take part in the prefix match.
PREFIX_WINDOW = 20

ALLOWED_PREFIXES: Tuple[str, ...] = (
    "wp plugin",
    "wp theme",
    "wp core",
    "wp user",
    "wp option",
    "wp post",
    "wp term",
    "wp comment",
    "wp media",
    "wp db",
    "wp cache",
    "wp transient",
    "wp cron",
    "wp rewrite",
    "wp language",
    "wp site",
    "wp network",
    "wp menu",
    "wp widget",
    "wp sidebar",
    BUILTIN_PREFIX,
)


@dataclass(frozen=True)
class ValidatedCommand:
    raw: str
    normalized: str

    @property
    def is_builtin(self) -> bool:
        return self.normalized.startswith(BUILTIN_PREFIX)


def normalize(command: str) -> str:
    if command.startswith(TOOL_PREFIX) or command.startswith(BUILTIN_PREFIX):
        return command
    return TOOL_PREFIX + command


def is_allowlisted(normalized: str) -> bool:
    head = normalized[:PREFIX_WINDOW]
    return any(head.startswith(prefix) for prefix in ALLOWED_PREFIXES)


def validate_command(command: str) -> ValidatedCommand:
    """
    Validate a raw command string.

    Raises:
        FoundryError: COMMAND_MISSING, INJECTION_REJECTED, TOO_LONG or
            NOT_ALLOWLISTED
    """
    if not command or not command.strip():
        raise FoundryError(ErrorCode.COMMAND_MISSING, "No command specified")

    found = sorted(FORBIDDEN_CHARACTERS.intersection(command))
    if found:
        logger.warning(f"[Validator] Rejected metacharacters {''.join(found)!r}")
        raise FoundryError(
            ErrorCode.INJECTION_REJECTED,
            "Command contains forbidden characters",
            details={"characters": found},
        )

    if len(command) > MAX_COMMAND_LENGTH:
        raise FoundryError(
            ErrorCode.TOO_LONG,
            f"Command exceeds {MAX_COMMAND_LENGTH} characters",
            details={"length": len(command)},
        )

    normalized = normalize(command)
    if not is_allowlisted(normalized):
        logger.warning(f"[Validator] Command not allowed: {normalized[:PREFIX_WINDOW]!r}")
        raise FoundryError(
            ErrorCode.NOT_ALLOWLISTED,
            "Command not allowed",
            details={"command": normalized[:PREFIX_WINDOW]},
        )

    return ValidatedCommand(raw=command, normalized=normalized)
