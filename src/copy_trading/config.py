"""Copy trading configuration.

Enums, skip reasons, state transition tables and the service config.
"""

import enum
from dataclasses import dataclass
from types import MappingProxyType
from typing import FrozenSet, Mapping

from src.settings import Settings


class CopyMode(str, enum.Enum):
    """How a copied position is sized."""
    FIXED_AMOUNT = "fixed_amount"
    PERCENTAGE_PORTFOLIO = "percentage_portfolio"
    PROPORTIONAL = "proportional"
    FIXED_RATIO = "fixed_ratio"


class SubscriptionStatus(str, enum.Enum):
    """Copy subscription lifecycle status."""
    PENDING = "pending"
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class CopyTradeStatus(str, enum.Enum):
    """Copy trade execution status."""
    PENDING = "pending"
    EXECUTING = "executing"
    FILLED = "filled"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AssetClass(str, enum.Enum):
    """Tradable asset classes."""
    CRYPTO = "crypto"
    PREDICTION = "prediction"
    RWA = "rwa"
    EQUITY = "equity"


class OrderSide(str, enum.Enum):
    BUY = "buy"
    SELL = "sell"


class SkipReason:
    """Human-readable reasons recorded on skipped copy trades."""
    ASSET_CLASS_NOT_ALLOWED = "Asset class not allowed"
    SYMBOL_EXCLUDED = "Symbol excluded"
    DAILY_LOSS_LIMIT = "Daily loss limit reached"
    QUANTITY_TOO_SMALL = "Copy quantity too small"
    POSITION_SIZE_EXCEEDED = "Position size exceeded"
    TOTAL_EXPOSURE_EXCEEDED = "Total exposure exceeded"


SUBSCRIPTION_NOT_ACTIVE = "Subscription not active"

# Only active <-> paused may go back and forth.
SUBSCRIPTION_TRANSITIONS: Mapping[SubscriptionStatus, FrozenSet[SubscriptionStatus]] = MappingProxyType({
    SubscriptionStatus.PENDING: frozenset({
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELLED,
    }),
    SubscriptionStatus.ACTIVE: frozenset({
        SubscriptionStatus.PAUSED,
        SubscriptionStatus.CANCELLED,
        SubscriptionStatus.EXPIRED,
    }),
    SubscriptionStatus.PAUSED: frozenset({
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELLED,
        SubscriptionStatus.EXPIRED,
    }),
    SubscriptionStatus.CANCELLED: frozenset(),
    SubscriptionStatus.EXPIRED: frozenset(),
})

COPY_TRADE_TRANSITIONS: Mapping[CopyTradeStatus, FrozenSet[CopyTradeStatus]] = MappingProxyType({
    CopyTradeStatus.PENDING: frozenset({
        CopyTradeStatus.EXECUTING,
        CopyTradeStatus.CANCELLED,
        CopyTradeStatus.SKIPPED,
    }),
    CopyTradeStatus.EXECUTING: frozenset({
        CopyTradeStatus.FILLED,
        CopyTradeStatus.FAILED,
    }),
    CopyTradeStatus.FILLED: frozenset(),
    CopyTradeStatus.SKIPPED: frozenset(),
    CopyTradeStatus.FAILED: frozenset(),
    CopyTradeStatus.CANCELLED: frozenset(),
})

OPEN_SUBSCRIPTION_STATUSES: FrozenSet[SubscriptionStatus] = frozenset({
    SubscriptionStatus.PENDING,
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.PAUSED,
})

SIZING_FIELDS = ("copy_mode", "fixed_amount", "portfolio_percentage", "copy_ratio")
RISK_CAP_FIELDS = ("max_position_size", "max_daily_loss", "max_total_exposure")


def can_transition_subscription(current: SubscriptionStatus, target: SubscriptionStatus) -> bool:
    return target in SUBSCRIPTION_TRANSITIONS[current]


def can_transition_copy_trade(current: CopyTradeStatus, target: CopyTradeStatus) -> bool:
    return target in COPY_TRADE_TRANSITIONS[current]


@dataclass(frozen=True)
class CopyTradingConfig:
    """Copy trading service configuration."""
    max_copies_per_user: int = 10
    max_copiers_per_trader: int = 10_000
    min_copy_amount: float = 10.0
    default_copy_delay: int = 0
    platform_fee_percent: float = 0.5
    fan_out_limit: int = 1000

    @classmethod
    def from_settings(cls, settings: Settings) -> "CopyTradingConfig":
        return cls(
            max_copies_per_user=settings.copy_max_copies_per_user,
            max_copiers_per_trader=settings.copy_max_copiers_per_trader,
            min_copy_amount=settings.copy_min_copy_amount,
            default_copy_delay=settings.copy_default_delay_seconds,
            platform_fee_percent=settings.copy_platform_fee_percent,
            fan_out_limit=settings.copy_fan_out_limit,
        )


DEFAULT_COPY_TRADING_CONFIG = CopyTradingConfig()
