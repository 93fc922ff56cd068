"""Data models for trading pattern analysis and fraud alerts."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .config import FraudAlertStatus, FraudAlertType, FraudSeverity


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TradeRecord:
    """A historical execution of the analysed trader."""

    id: str
    order_id: str
    user_id: str
    symbol: str
    side: str
    quantity: float
    price: float
    executed_at: datetime
    counterparty_id: Optional[str] = None

    @property
    def order_size(self) -> float:
        return self.quantity * self.price

    @property
    def is_self_trade(self) -> bool:
        return self.counterparty_id is not None and self.counterparty_id == self.user_id

    @property
    def executed_at_ms(self) -> float:
        return self.executed_at.timestamp() * 1000.0

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "TradeRecord":
        return cls(
            id=record["id"],
            order_id=record.get("order_id", ""),
            user_id=record["user_id"],
            symbol=record["symbol"],
            side=record["side"],
            quantity=float(record["quantity"]),
            price=float(record["price"]),
            executed_at=record["executed_at"],
            counterparty_id=record.get("counterparty_id"),
        )


@dataclass
class TradingPatternFeatures:
    """Statistics over one analysis window.

    Price, order-book and P&L based fields need data this layer does not
    receive and stay at 0.0.
    """

    # Timing
    avg_time_between_trades_ms: float = 0.0
    std_time_between_trades_ms: float = 0.0
    peak_trading_hours: List[int] = field(default_factory=list)

    # Size
    avg_order_size: float = 0.0
    std_order_size: float = 0.0
    median_order_size: float = 0.0

    # Price
    avg_price_improvement: float = 0.0
    avg_slippage: float = 0.0
    limit_order_fill_rate: float = 0.0

    # Behaviour
    cancel_to_fill_ratio: float = 0.0
    self_trade_ratio: float = 0.0
    round_trip_ratio: float = 0.0
    consecutive_same_side_ratio: float = 0.0

    # Performance
    win_after_loss_ratio: float = 0.0
    loss_after_win_ratio: float = 0.0
    streak_correlation: float = 0.0

    @property
    def order_size_cv(self) -> Optional[float]:
        """Coefficient of variation of order sizes, None when undefined."""
        if self.avg_order_size == 0:
            return None
        return self.std_order_size / self.avg_order_size


@dataclass
class PatternScores:
    alpha: float = 0.0
    luck: float = 0.0
    skill: float = 0.0
    manipulation: float = 0.0


@dataclass
class TradingPatterns:
    """Persisted result of one analysis run."""

    id: str
    user_id: str
    period_start: datetime
    period_end: datetime
    features: TradingPatternFeatures
    alpha_score: float = 0.0
    luck_score: float = 0.0
    skill_score: float = 0.0
    manipulation_score: float = 0.0
    calculated_at: datetime = field(default_factory=_utc_now)

    def to_record(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "TradingPatterns":
        data = dict(record)
        data["features"] = TradingPatternFeatures(**data["features"])
        return cls(**data)


@dataclass
class FraudEvidence:
    type: str
    description: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utc_now)


@dataclass
class CheckResult:
    """Outcome of one fraud check.

    ``available`` is False for checks whose detection logic does not
    exist yet; such a check never fires.
    """

    alert_type: FraudAlertType
    detected: bool = False
    confidence: float = 0.0
    evidence: List[FraudEvidence] = field(default_factory=list)
    available: bool = True


@dataclass
class FraudAlert:
    """A suspected-fraud finding for one trader and alert type."""

    id: str
    user_id: str
    alert_type: FraudAlertType
    severity: FraudSeverity
    confidence: float
    detection_method: str = ""
    evidence: List[FraudEvidence] = field(default_factory=list)
    related_order_ids: List[str] = field(default_factory=list)
    related_trade_ids: List[str] = field(default_factory=list)
    related_user_ids: List[str] = field(default_factory=list)
    status: FraudAlertStatus = FraudAlertStatus.PENDING
    reviewed_by: Optional[str] = None
    review_notes: Optional[str] = None
    resolution: Optional[str] = None
    action_taken: Optional[str] = None
    detected_at: datetime = field(default_factory=_utc_now)
    reviewed_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status in (FraudAlertStatus.PENDING, FraudAlertStatus.INVESTIGATING)

    def to_record(self) -> Dict[str, Any]:
        record = asdict(self)
        record["alert_type"] = self.alert_type.value
        record["severity"] = self.severity.value
        record["status"] = self.status.value
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "FraudAlert":
        data = {k: v for k, v in record.items() if k in cls.__dataclass_fields__}
        data["alert_type"] = FraudAlertType(data["alert_type"])
        data["severity"] = FraudSeverity(data["severity"])
        data["status"] = FraudAlertStatus(data["status"])
        data["evidence"] = [
            e if isinstance(e, FraudEvidence) else FraudEvidence(**e)
            for e in data.get("evidence", [])
        ]
        return cls(**data)
