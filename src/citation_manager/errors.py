"""Error taxonomy for citation-manager.

Fatal conditions raise a CitationManagerError subclass. Broken citations are
never raised: they are recorded on the link as a validation status.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes used in --json-errors output."""

    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    FILE_READ_ERROR = "FILE_READ_ERROR"
    INVALID_LINE_RANGE = "INVALID_LINE_RANGE"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


def format_error_json(code: ErrorCode | str, message: str, details: dict | None = None) -> str:
    """Format an error payload the way every command reports fatal errors."""
    code_value = code.value if isinstance(code, ErrorCode) else code
    error: dict[str, dict[str, Any]] = {"error": {"code": code_value, "message": message}}
    if details:
        error["error"]["details"] = details
    return json.dumps(error)


class CitationManagerError(Exception):
    """Base class for fatal citation-manager errors."""

    def __init__(self, code: ErrorCode, message: str, details: dict | None = None) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_json(self) -> str:
        return format_error_json(self.code, self.message, self.details)


class CitationFileNotFoundError(CitationManagerError):
    """The source file handed to a command does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(ErrorCode.FILE_NOT_FOUND, f"File not found: {path}", {"path": path})
        self.path = path


class InvalidLineRangeError(CitationManagerError):
    """A --lines value could not be parsed."""

    def __init__(self, value: str) -> None:
        super().__init__(
            ErrorCode.INVALID_LINE_RANGE,
            f"Invalid line range: {value}",
            {"suggestion": "Use a single line (7) or an inclusive range (10-50)"},
        )


class CitationValidationError(CitationManagerError):
    """A link built from command-line arguments failed validation."""

    def __init__(self, error: str, suggestion: str | None = None) -> None:
        details = {"suggestion": suggestion} if suggestion else None
        super().__init__(ErrorCode.VALIDATION_FAILED, error, details)
        self.suggestion = suggestion
