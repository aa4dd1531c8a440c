"""
foundry/engine/emitter.py

Envelope discipline for one command stream.

An EventEmitter guarantees the ordering every client relies on:

    [command_start] (command_data | command_output | command_progress)* terminal

where terminal is exactly one of command_complete or command_error. A
stream that fails before the command could start (spawn failure) consists
of the terminal command_error alone. Anything emitted after the terminal
event is dropped.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional, Union

from foundry.engine.events import StreamEvent, StreamEventType
from foundry.engine.sink import EventSink
from foundry.errors import ErrorCode, FoundryError

logger = logging.getLogger(__name__)

PROGRESS_EVERY_LINES = 10
PROGRESS_INTERVAL = 2.0


class EventEmitter:
    def __init__(
        self,
        sink: EventSink,
        command: str = "",
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.sink = sink
        self.command = command
        self._monotonic = monotonic
        self._started_at = monotonic()
        self._last_progress = self._started_at
        self.started = False
        self.terminated = False
        self.outcome: Optional[str] = None
        self.connected = True
        self.lines = 0

    @property
    def succeeded(self) -> bool:
        return self.outcome == StreamEventType.COMMAND_COMPLETE.value

    @property
    def elapsed(self) -> float:
        return round(self._monotonic() - self._started_at, 3)

    def _emit(self, event_type: StreamEventType, data: Dict[str, Any]) -> bool:
        if self.terminated:
            logger.debug(f"[Stream] Dropped {event_type.value} after terminal event")
            return False
        if event_type.is_terminal:
            self.terminated = True
            self.outcome = event_type.value

        ok = self.sink.write(StreamEvent(type=event_type, data=data))
        if ok:
            self.sink.flush()
        elif self.connected:
            self.connected = False
            logger.info(f"[Stream] Client went away during '{self.command}', continuing without output")
        return ok

    def next_line(self) -> int:
        self.lines += 1
        return self.lines

    def start(self, **extra: Any) -> bool:
        if self.started:
            return False
        self.started = True
        self._started_at = self._monotonic()
        self._last_progress = self._started_at
        return self._emit(StreamEventType.COMMAND_START, {"command": self.command, **extra})

    def data(self, value: Any, line: int, raw: str) -> bool:
        return self._emit(StreamEventType.COMMAND_DATA, {"data": value, "line": line, "raw": raw})

    def output(self, line: str, line_number: int, level: str = "info") -> bool:
        return self._emit(
            StreamEventType.COMMAND_OUTPUT,
            {"line": line, "line_number": line_number, "level": level},
        )

    def progress(self, **extra: Any) -> bool:
        self._last_progress = self._monotonic()
        return self._emit(
            StreamEventType.COMMAND_PROGRESS,
            {"lines": self.lines, "elapsed": self.elapsed, **extra},
        )

    def maybe_progress(self, every_lines: Optional[int] = PROGRESS_EVERY_LINES, **extra: Any) -> bool:
        """Emit progress on the line cadence or when the interval has passed."""
        due_by_lines = bool(every_lines) and self.lines > 0 and self.lines % every_lines == 0
        due_by_time = self._monotonic() - self._last_progress > PROGRESS_INTERVAL
        if due_by_lines or due_by_time:
            return self.progress(**extra)
        return False

    def complete(self, exit_code: int = 0, **extra: Any) -> bool:
        return self._emit(
            StreamEventType.COMMAND_COMPLETE,
            {"exit_code": exit_code, "lines": self.lines, "elapsed": self.elapsed, **extra},
        )

    def error(self, code: Union[ErrorCode, str], message: str, **extra: Any) -> bool:
        value = code.value if isinstance(code, ErrorCode) else str(code)
        logger.info(f"[Stream] '{self.command}' ended with {value}: {message}")
        return self._emit(
            StreamEventType.COMMAND_ERROR,
            {"code": value, "message": message, "lines": self.lines, "elapsed": self.elapsed, **extra},
        )

    def fail(self, exc: FoundryError) -> bool:
        return self.error(exc.code, exc.message, details=exc.details)
