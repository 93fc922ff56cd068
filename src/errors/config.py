"""Error configuration.

Error codes and severity levels shared by the copy trading and
fraud detection services.
"""

from enum import Enum
from types import MappingProxyType
from typing import Mapping


class ErrorCode(Enum):
    """Standardized error codes surfaced to callers."""

    # Lookup
    NOT_FOUND = "NOT_FOUND"

    # Subscription management
    COPY_TRADING_NOT_ALLOWED = "COPY_TRADING_NOT_ALLOWED"
    AUTO_COPY_NOT_ALLOWED = "AUTO_COPY_NOT_ALLOWED"
    SELF_COPY = "SELF_COPY"
    ALREADY_SUBSCRIBED = "ALREADY_SUBSCRIBED"
    MAX_COPIES_EXCEEDED = "MAX_COPIES_EXCEEDED"
    MAX_COPIERS_EXCEEDED = "MAX_COPIERS_EXCEEDED"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_PERCENTAGE = "INVALID_PERCENTAGE"
    INVALID_RATIO = "INVALID_RATIO"
    INVALID_STATUS = "INVALID_STATUS"
    INVALID_FIELD = "INVALID_FIELD"

    # Fraud detection
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"
    INVALID_DECISION = "INVALID_DECISION"

    # Collaborators
    UNKNOWN_FUNCTION = "UNKNOWN_FUNCTION"
    ORDER_REJECTED = "ORDER_REJECTED"


class ErrorSeverity(Enum):
    """Severity levels for error logging."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


ERROR_SEVERITY_MAP: Mapping[ErrorCode, ErrorSeverity] = MappingProxyType({
    ErrorCode.NOT_FOUND: ErrorSeverity.LOW,
    ErrorCode.COPY_TRADING_NOT_ALLOWED: ErrorSeverity.LOW,
    ErrorCode.AUTO_COPY_NOT_ALLOWED: ErrorSeverity.LOW,
    ErrorCode.SELF_COPY: ErrorSeverity.LOW,
    ErrorCode.ALREADY_SUBSCRIBED: ErrorSeverity.LOW,
    ErrorCode.MAX_COPIES_EXCEEDED: ErrorSeverity.MEDIUM,
    ErrorCode.MAX_COPIERS_EXCEEDED: ErrorSeverity.MEDIUM,
    ErrorCode.INVALID_AMOUNT: ErrorSeverity.LOW,
    ErrorCode.INVALID_PERCENTAGE: ErrorSeverity.LOW,
    ErrorCode.INVALID_RATIO: ErrorSeverity.LOW,
    ErrorCode.INVALID_STATUS: ErrorSeverity.MEDIUM,
    ErrorCode.INVALID_FIELD: ErrorSeverity.LOW,
    ErrorCode.INSUFFICIENT_DATA: ErrorSeverity.LOW,
    ErrorCode.INVALID_DECISION: ErrorSeverity.LOW,
    ErrorCode.UNKNOWN_FUNCTION: ErrorSeverity.CRITICAL,
    ErrorCode.ORDER_REJECTED: ErrorSeverity.HIGH,
})
