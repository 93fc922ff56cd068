"""Error taxonomy for the social trading core."""

from src.errors.config import ERROR_SEVERITY_MAP, ErrorCode, ErrorSeverity
from src.errors.exceptions import (
    CollaboratorError,
    CopyTradingError,
    FraudDetectionError,
    PlatformError,
)

__all__ = [
    "ERROR_SEVERITY_MAP",
    "ErrorCode",
    "ErrorSeverity",
    "PlatformError",
    "CopyTradingError",
    "FraudDetectionError",
    "CollaboratorError",
]
