"""Copy trading: subscriptions, position sizing and trade replication."""

from .config import (
    CopyMode,
    SubscriptionStatus,
    CopyTradeStatus,
    AssetClass,
    OrderSide,
    SkipReason,
    SUBSCRIPTION_NOT_ACTIVE,
    CopyTradingConfig,
    DEFAULT_COPY_TRADING_CONFIG,
    can_transition_subscription,
    can_transition_copy_trade,
)
from .models import (
    LeaderTrade,
    SubscriptionRequest,
    CopySubscription,
    CopyTrade,
    idempotency_key,
)
from .sizing import (
    SizingInputs,
    SizingDecision,
    CopyPositionSizer,
    compute_copy_quantity,
)
from .service import CopyTradingService

__all__ = [
    # Config
    "CopyMode",
    "SubscriptionStatus",
    "CopyTradeStatus",
    "AssetClass",
    "OrderSide",
    "SkipReason",
    "SUBSCRIPTION_NOT_ACTIVE",
    "CopyTradingConfig",
    "DEFAULT_COPY_TRADING_CONFIG",
    "can_transition_subscription",
    "can_transition_copy_trade",
    # Models
    "LeaderTrade",
    "SubscriptionRequest",
    "CopySubscription",
    "CopyTrade",
    "idempotency_key",
    # Sizing
    "SizingInputs",
    "SizingDecision",
    "CopyPositionSizer",
    "compute_copy_quantity",
    # Service
    "CopyTradingService",
]
