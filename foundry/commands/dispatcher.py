"""
foundry/commands/dispatcher.py

Routes a validated command to a `foundry` built-in or to WP-CLI.

    validated = validate_command("plugin list --format=json")
    envelope = parse_command(validated)
    get_dispatcher().dispatch(envelope, EventEmitter(sink, envelope.raw))

Whatever happens after dispatch() is entered, the emitter receives exactly
one terminal event.
"""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from foundry.commands.builtins import Builtins
from foundry.commands.validator import ValidatedCommand, validate_command
from foundry.engine.emitter import EventEmitter
from foundry.engine.runner import ProcessRunner
from foundry.engine.sink import EventSink
from foundry.errors import ErrorCode, FoundryError, handle_error

logger = logging.getLogger(__name__)


@dataclass
class CommandEnvelope:
    raw: str
    builtin: bool
    subcommand: str
    args: List[str] = field(default_factory=list)

    @property
    def positionals(self) -> List[str]:
        return [a for a in self.args if not a.startswith("--")]

    @property
    def options(self) -> Dict[str, List[str]]:
        """`--key=value` (repeatable) and bare `--flag` arguments."""
        opts: Dict[str, List[str]] = {}
        for arg in self.args:
            if not arg.startswith("--"):
                continue
            key, sep, value = arg[2:].partition("=")
            opts.setdefault(key, []).append(value if sep else "true")
        return opts

    def option(self, key: str, default: Optional[str] = None) -> Optional[str]:
        values = self.options.get(key)
        return values[-1] if values else default

    def option_list(self, key: str) -> List[str]:
        """All values of a repeatable, comma separated option."""
        items: List[str] = []
        for value in self.options.get(key, []):
            items.extend(part.strip() for part in value.split(",") if part.strip())
        return items


def parse_command(validated: ValidatedCommand) -> CommandEnvelope:
    """
    Split a validated command into subcommand and arguments.

    Raises:
        FoundryError: COMMAND_MALFORMED on unbalanced quoting
    """
    try:
        tokens = shlex.split(validated.normalized)
    except ValueError as exc:
        raise FoundryError(ErrorCode.COMMAND_MALFORMED, f"Could not parse command: {exc}")

    # tokens[0] is "wp" or "foundry"
    rest = tokens[1:]
    return CommandEnvelope(
        raw=validated.raw,
        builtin=validated.is_builtin,
        subcommand=rest[0] if rest else "",
        args=rest[1:] if validated.is_builtin else rest,
    )


class CommandDispatcher:
    def __init__(self, runner: Optional[ProcessRunner] = None, builtins: Optional[Builtins] = None):
        self.runner = runner or ProcessRunner()
        self.builtins = builtins or Builtins(runner=self.runner)

    def dispatch(self, envelope: CommandEnvelope, emitter: EventEmitter) -> None:
        logger.info(f"[Dispatcher] {'builtin' if envelope.builtin else 'wp'} '{envelope.subcommand}'")
        try:
            if envelope.builtin:
                self.builtins.run(envelope, emitter)
            else:
                self.runner.execute(envelope.args, emitter)
        except FoundryError as exc:
            emitter.fail(exc)
        except Exception as exc:
            logger.exception(f"[Dispatcher] Unhandled failure in '{envelope.raw}'")
            emitter.fail(handle_error(exc, f"while running '{envelope.subcommand}'"))
        finally:
            if not emitter.terminated:
                emitter.error(ErrorCode.INTERNAL_ERROR, "Command ended without a result")

    def run(self, command: str, sink: EventSink) -> EventEmitter:
        """Validate, parse and dispatch a raw command in one call."""
        envelope = parse_command(validate_command(command))
        emitter = EventEmitter(sink, command=envelope.raw)
        self.dispatch(envelope, emitter)
        return emitter


_dispatcher: Optional[CommandDispatcher] = None


def get_dispatcher() -> CommandDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = CommandDispatcher()
    return _dispatcher


def set_dispatcher(dispatcher: Optional[CommandDispatcher]) -> None:
    global _dispatcher
    _dispatcher = dispatcher
