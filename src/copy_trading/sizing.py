"""Copy position sizing and risk gates.

Decides whether a leader trade is replicated for a subscription and
with what quantity. Gates run in a fixed order and the first failing
gate determines the skip reason.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from src.collaborators import Store
from src.copy_trading.config import CopyMode, SkipReason
from src.copy_trading.models import CopySubscription, LeaderTrade


@dataclass
class SizingInputs:
    """Account values a sizing mode may depend on."""
    available_balance: float = 0.0
    copier_portfolio_value: float = 0.0
    leader_portfolio_value: float = 0.0


@dataclass
class SizingDecision:
    """Outcome of evaluating one leader trade against one subscription."""
    copy_quantity: float = 0.0
    position_value: float = 0.0
    skip_reason: Optional[str] = None

    @property
    def approved(self) -> bool:
        return self.skip_reason is None


def compute_copy_quantity(
    subscription: CopySubscription,
    trade: LeaderTrade,
    inputs: SizingInputs,
) -> float:
    """Compute the copy quantity for a leader trade.

    Args:
        subscription: Copier's subscription (mode and parameter).
        trade: Leader's executed trade.
        inputs: Resolved balances and portfolio values.

    Returns:
        Quantity to copy; 0 when the trade cannot be sized.
    """
    mode = subscription.copy_mode

    if mode == CopyMode.FIXED_RATIO:
        ratio = subscription.copy_ratio if subscription.copy_ratio is not None else 1.0
        return trade.quantity * ratio

    if trade.price <= 0:
        return 0.0

    if mode == CopyMode.FIXED_AMOUNT:
        return (subscription.fixed_amount or 0.0) / trade.price

    if mode == CopyMode.PERCENTAGE_PORTFOLIO:
        pct = subscription.portfolio_percentage or 0.0
        amount = inputs.available_balance * pct / 100.0
        return amount / trade.price

    if mode == CopyMode.PROPORTIONAL:
        if inputs.leader_portfolio_value == 0:
            return 0.0
        leader_fraction = trade.trade_value / inputs.leader_portfolio_value
        return inputs.copier_portfolio_value * leader_fraction / trade.price

    return 0.0


def start_of_utc_day(now: datetime) -> datetime:
    return now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


class CopyPositionSizer:
    """Applies a subscription's filters, sizing mode and risk caps.

    Gate order:
    1. asset class allow-list
    2. symbol exclude-list
    3. daily realised loss
    4. quantity > 0
    5. single position size
    6. copier total exposure
    """

    def __init__(self, store: Store) -> None:
        self.store = store

    def evaluate(
        self,
        subscription: CopySubscription,
        trade: LeaderTrade,
        now: Optional[datetime] = None,
    ) -> SizingDecision:
        now = now or datetime.now(timezone.utc)

        if not subscription.allows_asset_class(trade.asset_class):
            return SizingDecision(skip_reason=SkipReason.ASSET_CLASS_NOT_ALLOWED)

        if subscription.excludes_symbol(trade.symbol):
            return SizingDecision(skip_reason=SkipReason.SYMBOL_EXCLUDED)

        if self.daily_pnl(subscription.id, now) < -subscription.max_daily_loss:
            return SizingDecision(skip_reason=SkipReason.DAILY_LOSS_LIMIT)

        quantity = compute_copy_quantity(
            subscription, trade, self.resolve_inputs(subscription)
        )
        if quantity <= 0:
            return SizingDecision(skip_reason=SkipReason.QUANTITY_TOO_SMALL)

        position_value = quantity * trade.price
        if position_value > subscription.max_position_size:
            return SizingDecision(
                copy_quantity=quantity,
                position_value=position_value,
                skip_reason=SkipReason.POSITION_SIZE_EXCEEDED,
            )

        exposure = self.current_exposure(subscription.copier_id)
        if exposure + position_value > subscription.max_total_exposure:
            return SizingDecision(
                copy_quantity=quantity,
                position_value=position_value,
                skip_reason=SkipReason.TOTAL_EXPOSURE_EXCEEDED,
            )

        return SizingDecision(copy_quantity=quantity, position_value=position_value)

    def resolve_inputs(self, subscription: CopySubscription) -> SizingInputs:
        """Fetch only the account values the subscription's mode uses."""
        inputs = SizingInputs()
        if subscription.copy_mode == CopyMode.PERCENTAGE_PORTFOLIO:
            power = self.store.query(
                "balances:get_buying_power", {"user_id": subscription.copier_id}
            )
            inputs.available_balance = power["available"]
        elif subscription.copy_mode == CopyMode.PROPORTIONAL:
            leader = self.store.query(
                "positions:get_portfolio_value", {"user_id": subscription.trader_id}
            )
            copier = self.store.query(
                "positions:get_portfolio_value", {"user_id": subscription.copier_id}
            )
            inputs.leader_portfolio_value = leader["total_value"]
            inputs.copier_portfolio_value = copier["total_value"]
        return inputs

    def daily_pnl(self, subscription_id: str, now: datetime) -> float:
        result = self.store.query(
            "copy_trades:get_daily_pnl",
            {"subscription_id": subscription_id, "since": start_of_utc_day(now)},
        )
        return result["total_pnl"]

    def current_exposure(self, user_id: str) -> float:
        result = self.store.query("positions:get_total_exposure", {"user_id": user_id})
        return result["total_exposure"]
