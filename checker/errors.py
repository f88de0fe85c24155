from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    RETRIEVAL_ERROR = "RETRIEVAL_ERROR"
    COMPLETION_SERVICE_ERROR = "COMPLETION_SERVICE_ERROR"
    CANCELLED = "CANCELLED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_STATUS: Dict[ErrorCode, int] = {
    ErrorCode.CONFIGURATION_ERROR: 500,
    ErrorCode.RETRIEVAL_ERROR: 502,
    ErrorCode.COMPLETION_SERVICE_ERROR: 502,
    # nginx's "client closed request"
    ErrorCode.CANCELLED: 499,
    ErrorCode.INTERNAL_ERROR: 500,
}


def status_for_error_code(code: ErrorCode) -> int:
    return ERROR_STATUS.get(code, 500)


class CheckerError(Exception):
    """Base error for a failed chat request."""

    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ) -> None:
        self.message = message
        self.details = details or {}
        self.status_code = status_code or status_for_error_code(self.error_code)
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_response(self) -> Dict[str, Any]:
        return {
            "code": self.error_code.value,
            "message": self.message,
            "details": self.details or None,
            "timestamp": self.timestamp.isoformat(),
        }


class ConfigurationError(CheckerError):
    """Missing or invalid settings, including object-store credentials."""

    error_code = ErrorCode.CONFIGURATION_ERROR


class RetrievalError(CheckerError):
    """The checklist object could not be read from the object store."""

    error_code = ErrorCode.RETRIEVAL_ERROR


class CompletionServiceError(CheckerError):
    """The language model call failed (auth, quota, network)."""

    error_code = ErrorCode.COMPLETION_SERVICE_ERROR


class CancellationError(CheckerError):
    error_code = ErrorCode.CANCELLED
