"""
foundry/engine/events.py

Typed stream events and their Server-Sent Events framing.

Every event on the wire looks like:

    event: command_output
    data: {"type": "command_output", "timestamp": 1712345678.12, "data": {...}}

followed by a blank line.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class StreamEventType(str, Enum):
    COMMAND_START = "command_start"
    COMMAND_DATA = "command_data"
    COMMAND_OUTPUT = "command_output"
    COMMAND_PROGRESS = "command_progress"
    COMMAND_COMPLETE = "command_complete"
    COMMAND_ERROR = "command_error"

    @property
    def is_terminal(self) -> bool:
        return self in (StreamEventType.COMMAND_COMPLETE, StreamEventType.COMMAND_ERROR)


@dataclass
class StreamEvent:
    type: StreamEventType
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "timestamp": self.timestamp,
            "data": self.data,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def to_sse(self) -> str:
        return f"event: {self.type.value}\ndata: {self.to_json()}\n\n"
