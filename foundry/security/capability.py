"""
foundry/security/capability.py

Administrative capability check.

When an operator directory is configured, every signed request must also
carry HTTP Basic credentials of an operator holding the required capability
(`manage_options` by default). Operators are looked up by login first and
by email second; passwords are application passwords stored as SHA-256 hex
digests and compared in constant time.

Directory file format:

    {
      "operators": [
        {
          "login": "admin",
          "email": "admin@example.com",
          "password_sha256": "<hex>",
          "capabilities": ["manage_options"]
        }
      ]
    }

Without a directory, holding the shared secret is the capability.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from foundry.base.config import get_config
from foundry.errors import ErrorCode, FoundryError

logger = logging.getLogger(__name__)


def hash_application_password(password: str) -> str:
    # Application passwords are displayed in groups of four; spaces are cosmetic
    normalized = "".join(password.split())
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class Operator:
    login: str
    email: str = ""
    password_sha256: str = ""
    capabilities: Tuple[str, ...] = field(default_factory=tuple)

    def can(self, capability: str) -> bool:
        return capability in self.capabilities


class OperatorDirectory:
    """In-memory index of operators keyed by login and by email."""

    def __init__(self, operators: Optional[List[Operator]] = None):
        self._by_login: Dict[str, Operator] = {}
        self._by_email: Dict[str, Operator] = {}
        for operator in operators or []:
            self._by_login[operator.login] = operator
            if operator.email:
                self._by_email[operator.email.lower()] = operator

    @classmethod
    def from_file(cls, path: Path) -> "OperatorDirectory":
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        entries = raw.get("operators", []) if isinstance(raw, dict) else raw
        operators = []
        for item in entries:
            operators.append(Operator(
                login=str(item["login"]),
                email=str(item.get("email") or ""),
                password_sha256=str(item.get("password_sha256") or "").lower(),
                capabilities=tuple(item.get("capabilities") or ()),
            ))
        logger.info(f"[Capability] Loaded {len(operators)} operator(s) from {path}")
        return cls(operators)

    def __len__(self) -> int:
        return len(self._by_login)

    def lookup(self, username: str) -> Optional[Operator]:
        operator = self._by_login.get(username)
        if operator is None:
            operator = self._by_email.get(username.lower())
        return operator

    def authenticate(self, username: str, password: str) -> Operator:
        if not username or not password:
            raise FoundryError(ErrorCode.CAPABILITY_DENIED, "Operator credentials required")

        operator = self.lookup(username)
        if operator is None:
            logger.warning("[Capability] Unknown operator")
            raise FoundryError(ErrorCode.CAPABILITY_DENIED, "Invalid username")

        provided = hash_application_password(password)
        if not operator.password_sha256 or not hmac.compare_digest(provided, operator.password_sha256):
            logger.warning(f"[Capability] Bad application password for {operator.login}")
            raise FoundryError(ErrorCode.CAPABILITY_DENIED, "Invalid credentials")

        return operator


class CapabilityChecker:
    """Resolves whether the caller may drive administrative operations."""

    def __init__(self, directory: Optional[OperatorDirectory] = None, capability: Optional[str] = None):
        self._directory = directory
        self._capability = capability

    @property
    def capability(self) -> str:
        return self._capability or get_config().security.required_capability

    @property
    def directory(self) -> Optional[OperatorDirectory]:
        if self._directory is None:
            path = get_config().security.operators_file
            if path is not None:
                self._directory = OperatorDirectory.from_file(path)
        return self._directory

    def verify(self, credentials: Optional[Tuple[str, str]]) -> Optional[Operator]:
        """
        Return the operator for the request (None when no directory is used).

        Raises:
            FoundryError: CAPABILITY_DENIED without credentials, for unknown
                users, bad passwords or a missing capability.
        """
        directory = self.directory
        if directory is None:
            return None

        if credentials is None:
            raise FoundryError(
                ErrorCode.CAPABILITY_DENIED,
                "Operator credentials required",
                details={"required": self.capability},
            )

        operator = directory.authenticate(*credentials)
        if not operator.can(self.capability):
            logger.warning(f"[Capability] {operator.login} lacks {self.capability}")
            raise FoundryError(
                ErrorCode.CAPABILITY_DENIED,
                "Insufficient permissions",
                details={"required": self.capability},
            )
        return operator


_checker: Optional[CapabilityChecker] = None


def get_capability_checker() -> CapabilityChecker:
    global _checker
    if _checker is None:
        _checker = CapabilityChecker()
    return _checker


def set_capability_checker(checker: Optional[CapabilityChecker]) -> None:
    global _checker
    _checker = checker
