"""Individual fraud checks run against an analysed window.

Each check is independent and returns a CheckResult; the service turns
detected results into alert upserts.
"""

import logging
from typing import Callable, List, Sequence

from .config import (
    DEFAULT_FRAUD_DETECTION_CONFIG,
    SEVERITY_BANDS,
    FraudAlertType,
    FraudDetectionConfig,
    FraudSeverity,
)
from .models import CheckResult, FraudEvidence, TradeRecord, TradingPatterns

logger = logging.getLogger(__name__)

EVIDENCE_ID_LIMIT = 10

FraudCheck = Callable[
    [TradingPatterns, Sequence[TradeRecord], FraudDetectionConfig], CheckResult
]


def detect_wash_trading(
    patterns: TradingPatterns,
    trades: Sequence[TradeRecord],
    config: FraudDetectionConfig = DEFAULT_FRAUD_DETECTION_CONFIG,
) -> CheckResult:
    """Self-trades above the threshold in a large enough window."""
    result = CheckResult(FraudAlertType.WASH_TRADING)
    if len(trades) < config.wash_trading_min_trades:
        return result

    ratio = patterns.features.self_trade_ratio
    if ratio <= config.wash_trading_self_trade_ratio:
        return result

    self_trades = [t for t in trades if t.is_self_trade]
    result.detected = True
    result.confidence = min(1.0, ratio * 3)
    result.evidence.append(FraudEvidence(
        type="self_trades",
        description=f"{ratio * 100:.1f}% of trades are self-trades",
        data={
            "ratio": ratio,
            "count": len(self_trades),
            "trade_ids": [t.id for t in self_trades[:EVIDENCE_ID_LIMIT]],
        },
    ))
    return result


def detect_manipulation(
    patterns: TradingPatterns,
    trades: Sequence[TradeRecord],
    config: FraudDetectionConfig = DEFAULT_FRAUD_DETECTION_CONFIG,
) -> CheckResult:
    """Round trips and an elevated manipulation score."""
    result = CheckResult(FraudAlertType.MANIPULATION)
    confidence = 0.0

    round_trip_ratio = patterns.features.round_trip_ratio
    if round_trip_ratio > config.manipulation_round_trip_ratio:
        confidence += round_trip_ratio
        result.evidence.append(FraudEvidence(
            type="round_trips",
            description=f"{round_trip_ratio * 100:.1f}% of trades are round-trips",
            data={"ratio": round_trip_ratio},
        ))

    score = patterns.manipulation_score
    if score > SEVERITY_BANDS[FraudSeverity.MEDIUM]:
        confidence += score * 0.5
        result.evidence.append(FraudEvidence(
            type="manipulation_score",
            description=f"High manipulation score: {score * 100:.1f}",
            data={"score": score},
        ))

    result.detected = confidence > SEVERITY_BANDS[FraudSeverity.LOW]
    result.confidence = min(1.0, confidence)
    return result


def detect_bot_behavior(
    patterns: TradingPatterns,
    trades: Sequence[TradeRecord],
    config: FraudDetectionConfig = DEFAULT_FRAUD_DETECTION_CONFIG,
) -> CheckResult:
    """Machine-regular timing or order sizes."""
    result = CheckResult(FraudAlertType.BOT_BEHAVIOR)
    features = patterns.features
    confidence = 0.0

    if features.std_time_between_trades_ms < config.bot_behavior_time_std_ms:
        confidence += 0.5
        result.evidence.append(FraudEvidence(
            type="timing_consistency",
            description=(
                "Unusually consistent trade timing "
                f"(std: {features.std_time_between_trades_ms:.0f}ms)"
            ),
            data={
                "avg_time_ms": features.avg_time_between_trades_ms,
                "std_time_ms": features.std_time_between_trades_ms,
            },
        ))

    cv = features.order_size_cv
    if cv is not None and cv < config.bot_behavior_size_cv:
        confidence += 0.3
        result.evidence.append(FraudEvidence(
            type="size_consistency",
            description="Unusually consistent order sizes",
            data={
                "avg_size": features.avg_order_size,
                "std_size": features.std_order_size,
            },
        ))

    result.detected = confidence > SEVERITY_BANDS[FraudSeverity.LOW]
    result.confidence = min(1.0, confidence)
    return result


def detect_unusual_activity(
    patterns: TradingPatterns,
    trades: Sequence[TradeRecord],
    config: FraudDetectionConfig = DEFAULT_FRAUD_DETECTION_CONFIG,
) -> CheckResult:
    # Baseline-deviation detection has no agreed thresholds yet.
    logger.debug("Unusual activity detection not available for %s", patterns.user_id)
    return CheckResult(FraudAlertType.UNUSUAL_ACTIVITY, available=False)


DEFAULT_CHECKS: List[FraudCheck] = [
    detect_wash_trading,
    detect_manipulation,
    detect_bot_behavior,
    detect_unusual_activity,
]
