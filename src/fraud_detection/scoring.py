"""Alpha, luck, skill and manipulation scoring."""

from .config import (
    DEFAULT_FRAUD_DETECTION_CONFIG,
    SEVERITY_BANDS,
    FraudDetectionConfig,
    FraudSeverity,
)
from .models import PatternScores, TradingPatternFeatures

LUCK_SATURATION_TRADES = 500


def compute_scores(
    features: TradingPatternFeatures,
    total_trades: int,
    config: FraudDetectionConfig = DEFAULT_FRAUD_DETECTION_CONFIG,
) -> PatternScores:
    """Score a window; every score lies in [0, 1].

    Manipulation accumulates weighted self-trade and round-trip ratios
    above their thresholds plus a fixed penalty for machine-regular
    timing. Alpha is discounted by manipulation, and luck falls as the
    sample grows.
    """
    manipulation = 0.0
    if features.self_trade_ratio > config.wash_trading_self_trade_ratio:
        manipulation += features.self_trade_ratio * 2
    if features.round_trip_ratio > config.manipulation_round_trip_ratio:
        manipulation += features.round_trip_ratio * 1.5
    if features.std_time_between_trades_ms < config.bot_behavior_time_std_ms:
        manipulation += 0.2
    manipulation = min(1.0, manipulation)

    alpha = max(0.0, 1 - manipulation * 0.5)
    luck = max(0.0, 1 - min(total_trades / LUCK_SATURATION_TRADES, 1.0))
    skill = max(0.0, alpha - luck)

    return PatternScores(alpha=alpha, luck=luck, skill=skill, manipulation=manipulation)


def severity_for(confidence: float) -> FraudSeverity:
    """Map a confidence to its severity band (no rounding)."""
    for severity in (FraudSeverity.CRITICAL, FraudSeverity.HIGH, FraudSeverity.MEDIUM):
        if confidence >= SEVERITY_BANDS[severity]:
            return severity
    return FraudSeverity.LOW
