"""Configuration for trading pattern fraud detection."""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import FrozenSet, Mapping

from src.settings import Settings


class FraudAlertType(str, Enum):
    WASH_TRADING = "wash_trading"
    MANIPULATION = "manipulation"
    FRONT_RUNNING = "front_running"
    FAKE_PERFORMANCE = "fake_performance"
    COLLUSION = "collusion"
    UNUSUAL_ACTIVITY = "unusual_activity"
    BOT_BEHAVIOR = "bot_behavior"


class FraudSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FraudAlertStatus(str, Enum):
    PENDING = "pending"
    INVESTIGATING = "investigating"
    DISMISSED = "dismissed"
    RESOLVED = "resolved"


class ReviewDecision(str, Enum):
    CONFIRMED = "confirmed"
    DISMISSED = "dismissed"


ACTIVE_ALERT_STATUSES: FrozenSet[FraudAlertStatus] = frozenset({
    FraudAlertStatus.PENDING,
    FraudAlertStatus.INVESTIGATING,
})

REVIEW_OUTCOMES: Mapping[ReviewDecision, FraudAlertStatus] = MappingProxyType({
    ReviewDecision.CONFIRMED: FraudAlertStatus.INVESTIGATING,
    ReviewDecision.DISMISSED: FraudAlertStatus.DISMISSED,
})

# Lower bound of each band, checked from the top.
SEVERITY_BANDS: Mapping[FraudSeverity, float] = MappingProxyType({
    FraudSeverity.CRITICAL: 0.9,
    FraudSeverity.HIGH: 0.7,
    FraudSeverity.MEDIUM: 0.5,
    FraudSeverity.LOW: 0.3,
})

DETECTION_METHOD = "automated_pattern_analysis"


@dataclass(frozen=True)
class FraudDetectionConfig:
    """Thresholds for pattern analysis and alerting."""

    min_trades: int = 10
    default_period_days: int = 30
    wash_trading_min_trades: int = 10
    wash_trading_self_trade_ratio: float = 0.1
    manipulation_round_trip_ratio: float = 0.3
    bot_behavior_time_std_ms: float = 100.0
    bot_behavior_size_cv: float = 0.1
    round_trip_window_ms: int = 3_600_000
    related_ids_limit: int = 10

    @classmethod
    def from_settings(cls, settings: Settings) -> "FraudDetectionConfig":
        return cls(
            min_trades=settings.fraud_min_trades,
            default_period_days=settings.fraud_default_period_days,
            wash_trading_min_trades=settings.fraud_min_trades,
            wash_trading_self_trade_ratio=settings.fraud_wash_trading_self_trade_ratio,
            manipulation_round_trip_ratio=settings.fraud_manipulation_round_trip_ratio,
            bot_behavior_time_std_ms=settings.fraud_bot_behavior_time_std_ms,
            bot_behavior_size_cv=settings.fraud_bot_behavior_size_cv,
            round_trip_window_ms=settings.fraud_round_trip_window_ms,
        )


DEFAULT_FRAUD_DETECTION_CONFIG = FraudDetectionConfig()
