"""Transport-level error catalog used at the API and CLI boundary."""
from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger("tracelog")

INVALID_FORMAT = "INVALID_FORMAT"
PARSING_ERROR = "PARSING_ERROR"
FILE_TOO_LARGE = "FILE_TOO_LARGE"
SERVER_ERROR = "SERVER_ERROR"

ERROR_TYPES: dict[str, dict[str, Any]] = {
    INVALID_FORMAT: {
        "error": "Invalid log format",
        "message": "The provided log data does not match any known format",
        "status": 400,
    },
    PARSING_ERROR: {
        "error": "Parsing error",
        "message": "An error occurred while parsing the log data",
        "status": 400,
    },
    FILE_TOO_LARGE: {
        "error": "File too large",
        "message": "The provided log file exceeds the maximum size limit",
        "status": 413,
    },
    SERVER_ERROR: {
        "error": "Server error",
        "message": "An internal server error occurred",
        "status": 500,
    },
}


class LogParseError(Exception):
    """Raised when a payload cannot be turned into a run record at all."""

    def __init__(self, error_type: str, message: str | None = None) -> None:
        template = ERROR_TYPES.get(error_type, ERROR_TYPES[SERVER_ERROR])
        self.error_type = error_type if error_type in ERROR_TYPES else SERVER_ERROR
        self.message = message or template["message"]
        super().__init__(self.message)

    @property
    def status(self) -> int:
        return int(ERROR_TYPES[self.error_type]["status"])


def create_error_response(
    error_type: str,
    message: str | None = None,
    request_url: str | None = None,
    exc: BaseException | None = None,
) -> dict[str, Any]:
    """Build the ``{error, message, request_url, status}`` body for a catalog entry.

    Unknown error types resolve to ``SERVER_ERROR``.
    """
    template = ERROR_TYPES.get(error_type, ERROR_TYPES[SERVER_ERROR])
    if exc is not None:
        logger.error("%s: %s", template["error"], exc)
    return {
        "error": template["error"],
        "message": message or template["message"],
        "request_url": request_url or "unknown",
        "status": template["status"],
    }
