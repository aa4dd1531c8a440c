"""Structured error taxonomy for the Foundry helper."""
#
# PURPOSE:
# Every failure the helper can report, from signature checks to token
# retrieval, is expressed as a FoundryError carrying an ErrorCode. The code
# value is the machine-readable string sent to clients, both in JSON error
# responses and in terminal `command_error` stream events.
#
# ERROR CODE GROUPS:
# - auth_*:       request authentication (always HTTP 401)
# - injection/too_long/not_allowlisted: command validation
# - unknown_subcommand/missing_argument/invalid_slug: built-in dispatch
# - failed_to_start/command_failed: process execution
# - archive_*/path_*: archive creation
# - token_*/file_open_failed: artifact retrieval
# - rate_limited: throttling
#
# USAGE:
#   from foundry.errors import FoundryError, ErrorCode
#
#   raise FoundryError(
#       ErrorCode.TOKEN_NOT_FOUND,
#       "Download token not found or expired",
#       details={"token": token[:8]},
#   )
#
from __future__ import annotations

import json
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    # Authentication
    AUTH_MISSING = "auth_missing"
    AUTH_INVALID = "auth_invalid"
    AUTH_EXPIRED = "auth_expired"
    AUTH_REPLAY = "auth_replay"
    AUTH_FAILED = "auth_failed"
    CAPABILITY_DENIED = "insufficient_capability"

    # Validation
    COMMAND_MISSING = "command_missing"
    COMMAND_MALFORMED = "command_malformed"
    INJECTION_REJECTED = "injection_rejected"
    TOO_LONG = "too_long"
    NOT_ALLOWLISTED = "not_allowlisted"

    # Dispatch
    UNKNOWN_SUBCOMMAND = "unknown_subcommand"
    MISSING_ARGUMENT = "missing_argument"
    INVALID_SLUG = "invalid_slug"

    # Execution
    PROCESS_SPAWN_FAILED = "failed_to_start"
    PROCESS_EXIT_NONZERO = "command_failed"

    # Archiving
    ARCHIVE_ENGINE_UNAVAILABLE = "archive_engine_unavailable"
    ARCHIVE_CREATE_FAILED = "archive_create_failed"
    ARCHIVE_INVALID = "archive_invalid"
    PATH_NOT_FOUND = "path_not_found"
    PATH_NOT_READABLE = "path_not_readable"

    # Retrieval
    TOKEN_MALFORMED = "token_malformed"
    TOKEN_NOT_FOUND = "token_not_found"
    FILE_OPEN_FAILED = "file_open_failed"

    # Self-update
    UPDATE_FETCH_FAILED = "update_fetch_failed"
    UPDATE_MANIFEST_INVALID = "update_manifest_invalid"
    UPDATE_APPLY_FAILED = "update_apply_failed"

    # Throttling
    RATE_LIMITED = "rate_limited"

    # System
    INTERNAL_ERROR = "internal_error"


class FoundryError(Exception):
    """
    Base exception carrying structured error information.

    Attributes:
        code: ErrorCode enum value
        message: Human-readable error message
        details: Optional dictionary with additional context
        http_status: HTTP status used when the error is rendered as a response
    """

    HTTP_STATUS_MAP: Dict[ErrorCode, int] = {
        ErrorCode.AUTH_MISSING: 401,
        ErrorCode.AUTH_INVALID: 401,
        ErrorCode.AUTH_EXPIRED: 401,
        ErrorCode.AUTH_REPLAY: 401,
        ErrorCode.AUTH_FAILED: 401,
        ErrorCode.CAPABILITY_DENIED: 403,

        ErrorCode.COMMAND_MISSING: 400,
        ErrorCode.COMMAND_MALFORMED: 400,
        ErrorCode.INJECTION_REJECTED: 400,
        ErrorCode.TOO_LONG: 400,
        ErrorCode.NOT_ALLOWLISTED: 403,

        ErrorCode.UNKNOWN_SUBCOMMAND: 400,
        ErrorCode.MISSING_ARGUMENT: 400,
        ErrorCode.INVALID_SLUG: 400,

        ErrorCode.PROCESS_SPAWN_FAILED: 500,
        ErrorCode.PROCESS_EXIT_NONZERO: 500,

        ErrorCode.ARCHIVE_ENGINE_UNAVAILABLE: 500,
        ErrorCode.ARCHIVE_CREATE_FAILED: 500,
        ErrorCode.ARCHIVE_INVALID: 400,
        ErrorCode.PATH_NOT_FOUND: 404,
        ErrorCode.PATH_NOT_READABLE: 403,

        ErrorCode.TOKEN_MALFORMED: 400,
        ErrorCode.TOKEN_NOT_FOUND: 404,
        ErrorCode.FILE_OPEN_FAILED: 500,

        ErrorCode.UPDATE_FETCH_FAILED: 502,
        ErrorCode.UPDATE_MANIFEST_INVALID: 502,
        ErrorCode.UPDATE_APPLY_FAILED: 500,

        ErrorCode.RATE_LIMITED: 429,

        ErrorCode.INTERNAL_ERROR: 500,
    }

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        http_status: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self.http_status = http_status or self.HTTP_STATUS_MAP.get(code, 500)
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Dictionary form used for JSON responses and error events."""
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
            "http_status": self.http_status,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FoundryError":
        return cls(
            ErrorCode(data["code"]),
            data["message"],
            data.get("details", {}),
            data.get("http_status"),
        )


def handle_error(error: Exception, context: Optional[str] = None) -> FoundryError:
    """
    Convert a generic exception to a FoundryError.

    Args:
        error: The original exception
        context: Optional context string (e.g., "while building archive")

    Returns:
        FoundryError with an appropriate code and message
    """
    if isinstance(error, FoundryError):
        return error

    error_type = type(error).__name__
    if isinstance(error, FileNotFoundError):
        code = ErrorCode.PATH_NOT_FOUND
    elif isinstance(error, PermissionError):
        code = ErrorCode.PATH_NOT_READABLE
    else:
        code = ErrorCode.INTERNAL_ERROR

    message = str(error) or error_type
    if context:
        message = f"{context}: {message}"

    return FoundryError(
        code=code,
        message=message,
        details={"original_type": error_type},
    )


__all__ = ["ErrorCode", "FoundryError", "handle_error"]
