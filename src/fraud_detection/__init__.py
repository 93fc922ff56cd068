"""Trading pattern analysis and fraud alerting."""

from .config import (
    FraudAlertType,
    FraudSeverity,
    FraudAlertStatus,
    ReviewDecision,
    ACTIVE_ALERT_STATUSES,
    SEVERITY_BANDS,
    FraudDetectionConfig,
    DEFAULT_FRAUD_DETECTION_CONFIG,
)
from .models import (
    TradeRecord,
    TradingPatternFeatures,
    PatternScores,
    TradingPatterns,
    FraudEvidence,
    CheckResult,
    FraudAlert,
)
from .features import (
    count_round_trips,
    extract_features,
)
from .scoring import (
    compute_scores,
    severity_for,
)
from .checks import (
    detect_wash_trading,
    detect_manipulation,
    detect_bot_behavior,
    detect_unusual_activity,
)
from .service import FraudDetectionService

__all__ = [
    # Config
    "FraudAlertType",
    "FraudSeverity",
    "FraudAlertStatus",
    "ReviewDecision",
    "ACTIVE_ALERT_STATUSES",
    "SEVERITY_BANDS",
    "FraudDetectionConfig",
    "DEFAULT_FRAUD_DETECTION_CONFIG",
    # Models
    "TradeRecord",
    "TradingPatternFeatures",
    "PatternScores",
    "TradingPatterns",
    "FraudEvidence",
    "CheckResult",
    "FraudAlert",
    # Features & scoring
    "count_round_trips",
    "extract_features",
    "compute_scores",
    "severity_for",
    # Checks
    "detect_wash_trading",
    "detect_manipulation",
    "detect_bot_behavior",
    "detect_unusual_activity",
    # Service
    "FraudDetectionService",
]
