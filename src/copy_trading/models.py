"""Copy trading data models.

Dataclasses for subscriptions, leader trades and copy trades, with
conversion to and from the plain dict records held by the store.
"""

import enum
import hashlib
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Optional

from src.copy_trading.config import (
    AssetClass,
    CopyMode,
    CopyTradeStatus,
    OrderSide,
    SubscriptionStatus,
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def idempotency_key(subscription_id: str, original_order_id: str) -> str:
    """Deterministic key for one (subscription, leader order) pair."""
    raw = f"{subscription_id}:{original_order_id}".encode()
    return hashlib.sha256(raw).hexdigest()[:32]


def encode_value(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, list):
        return [encode_value(v) for v in value]
    return value


class _Record:
    """Mixin converting between dataclasses and store records."""

    _enum_fields = {}

    def to_record(self) -> dict[str, Any]:
        return {f.name: encode_value(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_record(cls, record: dict[str, Any]):
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in record.items():
            if key not in known:
                continue
            enum_type = cls._enum_fields.get(key)
            if enum_type is not None and value is not None:
                if isinstance(value, list):
                    value = [enum_type(v) for v in value]
                else:
                    value = enum_type(value)
            kwargs[key] = value
        return cls(**kwargs)


@dataclass
class LeaderTrade:
    """A leader's executed trade, the input to copy replication.

    Attributes:
        order_id: Leader's order ID.
        symbol: Traded symbol.
        side: Buy or sell.
        quantity: Leader's executed quantity.
        price: Execution price.
        asset_class: Asset class of the symbol.
        trade_id: Leader's fill ID, when known.
        executed_at: Leader execution time.
    """
    order_id: str
    symbol: str
    side: OrderSide
    quantity: float
    price: float
    asset_class: AssetClass
    trade_id: Optional[str] = None
    executed_at: datetime = field(default_factory=_utc_now)

    @property
    def trade_value(self) -> float:
        return self.quantity * self.price


@dataclass
class SubscriptionRequest:
    """Input for creating a copy subscription."""
    trader_id: str
    copy_mode: CopyMode
    max_position_size: float
    max_daily_loss: float
    max_total_exposure: float
    copy_asset_classes: list[AssetClass]
    fixed_amount: Optional[float] = None
    portfolio_percentage: Optional[float] = None
    copy_ratio: Optional[float] = None
    stop_loss_percent: Optional[float] = None
    take_profit_percent: Optional[float] = None
    excluded_symbols: list[str] = field(default_factory=list)
    copy_delay_seconds: Optional[int] = None


@dataclass
class CopySubscription(_Record):
    """Standing instruction for a copier to replicate a leader's trades.

    Attributes:
        id: Subscription ID (assigned by the store).
        copier_id: Follower replicating trades.
        trader_id: Leader being copied.
        status: Lifecycle status.
        copy_mode: Sizing mode.
        fixed_amount: Dollar amount per trade (fixed_amount mode).
        portfolio_percentage: Percent of available balance (percentage_portfolio mode).
        copy_ratio: Quantity multiplier (fixed_ratio mode).
        max_position_size: Max dollar value of a single copied position.
        max_daily_loss: Max realised loss per UTC day before copying halts.
        max_total_exposure: Max total dollar exposure of the copier.
        copy_asset_classes: Asset classes allowed to be copied.
        excluded_symbols: Symbols never copied.
        copy_delay_seconds: Delay before a copy is placed.
        total_copied_trades: Number of filled copy trades.
        total_pnl: Realised P&L across copy trades.
        total_fees_paid: Platform fees paid across copy trades.
    """
    _enum_fields = {
        "status": SubscriptionStatus,
        "copy_mode": CopyMode,
        "copy_asset_classes": AssetClass,
    }

    id: str = ""
    copier_id: str = ""
    trader_id: str = ""
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    copy_mode: CopyMode = CopyMode.FIXED_AMOUNT
    fixed_amount: Optional[float] = None
    portfolio_percentage: Optional[float] = None
    copy_ratio: Optional[float] = None
    max_position_size: float = 0.0
    max_daily_loss: float = 0.0
    max_total_exposure: float = 0.0
    stop_loss_percent: Optional[float] = None
    take_profit_percent: Optional[float] = None
    copy_asset_classes: list[AssetClass] = field(default_factory=list)
    excluded_symbols: list[str] = field(default_factory=list)
    copy_delay_seconds: int = 0
    total_copied_trades: int = 0
    total_pnl: float = 0.0
    total_fees_paid: float = 0.0
    subscribed_at: datetime = field(default_factory=_utc_now)
    paused_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    updated_at: datetime = field(default_factory=_utc_now)

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    def allows_asset_class(self, asset_class: AssetClass) -> bool:
        return asset_class in self.copy_asset_classes

    def excludes_symbol(self, symbol: str) -> bool:
        return symbol in self.excluded_symbols


@dataclass
class CopyTrade(_Record):
    """One attempt to replicate a leader execution for one subscription.

    Quantity and price are fixed when the trade is created; a delayed
    trade executes later with exactly these values.
    """
    _enum_fields = {
        "status": CopyTradeStatus,
        "side": OrderSide,
    }

    id: str = ""
    subscription_id: str = ""
    copier_id: str = ""
    trader_id: str = ""
    original_order_id: str = ""
    original_trade_id: Optional[str] = None
    idempotency_key: str = ""
    status: CopyTradeStatus = CopyTradeStatus.PENDING
    skip_reason: Optional[str] = None
    failure_reason: Optional[str] = None
    symbol: str = ""
    side: OrderSide = OrderSide.BUY
    original_quantity: float = 0.0
    original_price: float = 0.0
    copy_quantity: float = 0.0
    copy_order_id: Optional[str] = None
    copy_price: Optional[float] = None
    copy_fee: float = 0.0
    performance_fee: float = 0.0
    pnl: Optional[float] = None
    scheduled_for: Optional[datetime] = None
    original_executed_at: Optional[datetime] = None
    copy_executed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=_utc_now)

    @property
    def position_value(self) -> float:
        return self.copy_quantity * self.original_price

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            CopyTradeStatus.FILLED,
            CopyTradeStatus.SKIPPED,
            CopyTradeStatus.FAILED,
            CopyTradeStatus.CANCELLED,
        )
