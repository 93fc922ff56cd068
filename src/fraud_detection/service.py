"""Fraud detection service.

Analyses a trader's recent executions, persists the pattern scores and
raises or merges fraud alerts. Also carries the admin review flow for
alerts.
"""

import logging
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from src.collaborators import Store
from src.errors import ErrorCode, FraudDetectionError, PlatformError
from src.logging_config import TraceContext, log_performance

from .checks import DEFAULT_CHECKS, FraudCheck
from .config import (
    DEFAULT_FRAUD_DETECTION_CONFIG,
    DETECTION_METHOD,
    REVIEW_OUTCOMES,
    FraudAlertStatus,
    FraudAlertType,
    FraudDetectionConfig,
    FraudSeverity,
    ReviewDecision,
)
from .features import extract_features
from .models import FraudAlert, FraudEvidence, TradeRecord, TradingPatterns
from .scoring import compute_scores, severity_for

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


class FraudDetectionService:
    """Trading pattern analysis and fraud alert management.

    Example:
        service = FraudDetectionService(store)
        patterns = service.analyze_trader("trader-1", period_days=30)
        alerts = service.get_alerts("trader-1")
    """

    def __init__(
        self,
        store: Store,
        config: Optional[FraudDetectionConfig] = None,
        checks: Optional[Sequence[FraudCheck]] = None,
    ) -> None:
        self.store = store
        self.config = config or DEFAULT_FRAUD_DETECTION_CONFIG
        self.checks = list(checks) if checks is not None else list(DEFAULT_CHECKS)

    # ── Pattern analysis ──────────────────────────────────────────────

    @log_performance(threshold_ms=5000, expected=(PlatformError,))
    def analyze_trader(
        self,
        user_id: str,
        period_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> TradingPatterns:
        """Analyse a trader's window, store the patterns and raise alerts.

        Args:
            user_id: Trader to analyse.
            period_days: Lookback in days (default from config).
            now: End of the window (default: current UTC time).

        Returns:
            The stored TradingPatterns.

        Raises:
            FraudDetectionError: INSUFFICIENT_DATA with fewer trades
                than the configured minimum.
        """
        period_days = period_days or self.config.default_period_days
        end_time = now or _utc_now()
        start_time = end_time - timedelta(days=period_days)

        with TraceContext(trader_id=user_id):
            records = self.store.query("trades:get_by_user_and_period", {
                "user_id": user_id,
                "start_time": start_time,
                "end_time": end_time,
            })
            trades = [TradeRecord.from_record(r) for r in records]

            if len(trades) < self.config.min_trades:
                raise FraudDetectionError(
                    "Insufficient trades for analysis",
                    ErrorCode.INSUFFICIENT_DATA,
                    details=[{"trades": len(trades), "required": self.config.min_trades}],
                )

            features = extract_features(trades, self.config.round_trip_window_ms)
            scores = compute_scores(features, len(trades), self.config)

            patterns = TradingPatterns(
                id=f"{user_id}_{_epoch_ms(start_time)}",
                user_id=user_id,
                period_start=start_time,
                period_end=end_time,
                features=features,
                alpha_score=scores.alpha,
                luck_score=scores.luck,
                skill_score=scores.skill,
                manipulation_score=scores.manipulation,
                calculated_at=end_time,
            )
            self.store.mutation("trading_patterns:upsert", patterns.to_record())

            alerts = self.check_for_fraud(user_id, patterns, trades, end_time)

            logger.info(
                "Analyzed %d trades for %s: manipulation=%.3f, alerts=%d",
                len(trades), user_id, scores.manipulation, len(alerts),
            )
        return patterns

    def get_patterns(self, patterns_id: str) -> Optional[TradingPatterns]:
        record = self.store.query("trading_patterns:get", {"id": patterns_id})
        return TradingPatterns.from_record(record) if record else None

    def check_for_fraud(
        self,
        user_id: str,
        patterns: TradingPatterns,
        trades: Sequence[TradeRecord],
        now: Optional[datetime] = None,
    ) -> List[FraudAlert]:
        """Run every check and upsert an alert for each one that fires.

        A check that raises is logged and the remaining checks still run.
        """
        now = now or _utc_now()
        alerts: List[FraudAlert] = []
        for check in self.checks:
            try:
                result = check(patterns, trades, self.config)
            except Exception as exc:
                logger.error(
                    "Fraud check %s failed for %s: %s",
                    getattr(check, "__name__", check), user_id, exc,
                    exc_info=True,
                )
                continue

            if result.detected:
                alerts.append(self._upsert_alert(
                    user_id, result.alert_type, result.confidence, result.evidence, trades, now
                ))
        return alerts

    # ── Alert upsert ──────────────────────────────────────────────────

    def _upsert_alert(
        self,
        user_id: str,
        alert_type: FraudAlertType,
        confidence: float,
        evidence: List[FraudEvidence],
        trades: Sequence[TradeRecord],
        now: datetime,
    ) -> FraudAlert:
        related = list(trades[: self.config.related_ids_limit])
        new_evidence = [asdict(e) for e in evidence]

        existing = self.store.query(
            "fraud_alerts:get_active", {"user_id": user_id, "alert_type": alert_type.value}
        )
        if existing:
            merged_confidence = max(existing["confidence"], confidence)
            trade_ids = list(existing.get("related_trade_ids", []))
            trade_ids.extend(t.id for t in related if t.id not in trade_ids)
            record = self.store.mutation("fraud_alerts:update", {
                "id": existing["id"],
                "confidence": merged_confidence,
                "severity": severity_for(merged_confidence).value,
                "evidence": existing.get("evidence", []) + new_evidence,
                "related_trade_ids": trade_ids,
            })
            alert = FraudAlert.from_record(record)
            logger.info(
                "Merged %s evidence into alert %s for %s (confidence %.3f)",
                alert_type.value, alert.id, user_id, merged_confidence,
                extra={"alert_id": alert.id},
            )
        else:
            severity = severity_for(confidence)
            record = self.store.mutation("fraud_alerts:create", {
                "user_id": user_id,
                "alert_type": alert_type.value,
                "severity": severity.value,
                "detection_method": DETECTION_METHOD,
                "confidence": confidence,
                "evidence": new_evidence,
                "related_order_ids": [t.order_id for t in related],
                "related_trade_ids": [t.id for t in related],
                "related_user_ids": [],
                "status": FraudAlertStatus.PENDING.value,
                "detected_at": now,
            })
            alert = FraudAlert.from_record(record)
            logger.warning(
                "Fraud alert %s created for %s: %s (%s, confidence %.3f)",
                alert.id, user_id, alert_type.value, severity.value, confidence,
                extra={"alert_id": alert.id},
            )

        self.store.mutation("reputation_scores:update_fraud_risk", {
            "user_id": user_id,
            "fraud_risk_score": min(100.0, confidence * 100),
            "suspicious_activity_count": 1,
        })
        return alert

    # ── Alert review ──────────────────────────────────────────────────

    def get_alert(self, alert_id: str) -> FraudAlert:
        record = self.store.query("fraud_alerts:get", {"id": alert_id})
        if not record:
            raise FraudDetectionError("Alert not found", ErrorCode.NOT_FOUND)
        return FraudAlert.from_record(record)

    def get_alerts(
        self,
        user_id: str,
        statuses: Optional[List[FraudAlertStatus]] = None,
        limit: int = 50,
    ) -> List[FraudAlert]:
        records = self.store.query("fraud_alerts:get_by_user", {
            "user_id": user_id,
            "statuses": [s.value for s in statuses] if statuses else None,
            "limit": limit,
        })
        return [FraudAlert.from_record(r) for r in records]

    def get_pending_alerts(
        self,
        severity: Optional[FraudSeverity] = None,
        limit: int = 50,
    ) -> List[FraudAlert]:
        """Pending alerts for admin review, newest first."""
        records = self.store.query("fraud_alerts:get_pending", {
            "severity": severity.value if severity else None,
            "limit": limit,
        })
        return [FraudAlert.from_record(r) for r in records]

    def review_alert(
        self,
        alert_id: str,
        reviewer_id: str,
        decision: ReviewDecision,
        notes: Optional[str] = None,
    ) -> FraudAlert:
        """Confirm (moves to investigating) or dismiss an alert."""
        alert = self.get_alert(alert_id)
        try:
            decision = ReviewDecision(decision)
        except ValueError as exc:
            raise FraudDetectionError(
                f"Unknown review decision: {decision}", ErrorCode.INVALID_DECISION
            ) from exc

        status = REVIEW_OUTCOMES[decision]
        record = self.store.mutation("fraud_alerts:update", {
            "id": alert_id,
            "status": status.value,
            "reviewed_by": reviewer_id,
            "review_notes": notes,
            "reviewed_at": _utc_now(),
        })
        logger.info(
            "Alert %s for %s reviewed by %s: %s",
            alert_id, alert.user_id, reviewer_id, decision.value,
            extra={"alert_id": alert_id},
        )
        return FraudAlert.from_record(record)

    def resolve_alert(
        self,
        alert_id: str,
        reviewer_id: str,
        resolution: str,
        action_taken: Optional[str] = None,
    ) -> FraudAlert:
        alert = self.get_alert(alert_id)
        record = self.store.mutation("fraud_alerts:update", {
            "id": alert_id,
            "status": FraudAlertStatus.RESOLVED.value,
            "resolution": resolution,
            "action_taken": action_taken,
            "resolved_at": _utc_now(),
        })
        logger.info(
            "Alert %s for %s resolved by %s: %s",
            alert_id, alert.user_id, reviewer_id, resolution,
            extra={"alert_id": alert_id},
        )
        return FraudAlert.from_record(record)

    def get_fraud_risk(self, user_id: str) -> Dict[str, Any]:
        """Stored fraud-risk score and suspicious-activity count."""
        record = self.store.query("reputation_scores:get", {"user_id": user_id})
        return record or {"user_id": user_id, "fraud_risk_score": 0.0, "suspicious_activity_count": 0}
