"""Severity classification for plain-text tool output."""

from __future__ import annotations

import re

LEVEL_ERROR = "error"
LEVEL_WARNING = "warning"
LEVEL_NOTICE = "notice"
LEVEL_SUCCESS = "success"
LEVEL_INFO = "info"

_ERROR_WORDS = re.compile(r"fatal|critical|failed|exception")


def classify_line(line: str) -> str:
    lowered = line.lower()
    # First match wins
    if (
        " error " in f" {lowered} "
        or lowered.startswith("error:")
        or _ERROR_WORDS.search(lowered)
    ):
        return LEVEL_ERROR
    if "warn" in lowered:
        return LEVEL_WARNING
    if "notice" in lowered or "debug" in lowered:
        return LEVEL_NOTICE
    if "success" in lowered or "completed" in lowered:
        return LEVEL_SUCCESS
    return LEVEL_INFO
