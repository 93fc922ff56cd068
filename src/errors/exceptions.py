"""Custom exception hierarchy.

Thrown errors are contract violations reported back to the caller.
Expected business outcomes (a skipped or failed copy trade) are
recorded as data instead and never raised.
"""

from typing import Any, Dict, List, Optional

from src.errors.config import ERROR_SEVERITY_MAP, ErrorCode, ErrorSeverity


class PlatformError(Exception):
    """Base exception for all social trading errors.

    All domain exceptions inherit from this, allowing a single
    handler to catch the entire hierarchy.
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        details: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or []

    @property
    def code(self) -> str:
        return self.error_code.value

    @property
    def severity(self) -> ErrorSeverity:
        return ERROR_SEVERITY_MAP.get(self.error_code, ErrorSeverity.MEDIUM)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "error": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            body["details"] = self.details
        return body


class CopyTradingError(PlatformError):
    """Raised when a copy trading subscription operation is rejected."""


class FraudDetectionError(PlatformError):
    """Raised when fraud analysis or alert review cannot proceed."""


class CollaboratorError(PlatformError):
    """Raised by store or order-placement collaborators."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        function_name: Optional[str] = None,
    ):
        details = [{"function": function_name}] if function_name else None
        super().__init__(message, error_code, details)
