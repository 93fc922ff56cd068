"""Copy trading service.

Manages copy subscriptions and replicates leader trades to copiers.
Contract violations raise CopyTradingError; a copy that is not placed
is recorded as a skipped or failed CopyTrade instead.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator, Optional

from src.collaborators import OrderRequest, OrderService, Store
from src.copy_trading.config import (
    DEFAULT_COPY_TRADING_CONFIG,
    OPEN_SUBSCRIPTION_STATUSES,
    RISK_CAP_FIELDS,
    SIZING_FIELDS,
    SUBSCRIPTION_NOT_ACTIVE,
    CopyMode,
    CopyTradeStatus,
    CopyTradingConfig,
    SubscriptionStatus,
    can_transition_copy_trade,
    can_transition_subscription,
)
from src.copy_trading.models import (
    CopySubscription,
    CopyTrade,
    LeaderTrade,
    SubscriptionRequest,
    encode_value,
    idempotency_key,
)
from src.copy_trading.sizing import CopyPositionSizer
from src.errors import CopyTradingError, ErrorCode, PlatformError
from src.logging_config import TraceContext, log_performance

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset(
    SIZING_FIELDS
    + RISK_CAP_FIELDS
    + (
        "stop_loss_percent",
        "take_profit_percent",
        "copy_asset_classes",
        "excluded_symbols",
        "copy_delay_seconds",
    )
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CopyTradingService:
    """Copy subscriptions and leader-trade replication.

    Features:
    - Subscribe / update / pause / resume / cancel with limit checks
    - Four sizing modes with per-subscription and per-account risk caps
    - Fan-out over all active copiers, isolated per subscription
    - One CopyTrade per (subscription, leader order)
    - Delayed copies as a pending record executed by an external scheduler
    """

    def __init__(
        self,
        store: Store,
        order_service: OrderService,
        config: Optional[CopyTradingConfig] = None,
    ) -> None:
        self.store = store
        self.order_service = order_service
        self.config = config or DEFAULT_COPY_TRADING_CONFIG
        self.sizer = CopyPositionSizer(store)

    # ── Subscription management ───────────────────────────────────────

    def create_subscription(
        self, copier_id: str, request: SubscriptionRequest
    ) -> CopySubscription:
        """Subscribe a copier to a leader.

        Args:
            copier_id: User who wants to copy.
            request: Leader, sizing and risk settings.

        Returns:
            The created, active subscription.

        Raises:
            CopyTradingError: If the leader disallows copying, a limit is
                hit, or the sizing settings are invalid.
        """
        if copier_id == request.trader_id:
            raise CopyTradingError("Cannot copy yourself", ErrorCode.SELF_COPY)

        profile = self.store.query("trader_profiles:get", {"user_id": request.trader_id})
        if not profile or not profile.get("allow_copy_trading"):
            raise CopyTradingError(
                "Trader does not allow copy trading", ErrorCode.COPY_TRADING_NOT_ALLOWED
            )

        delay = request.copy_delay_seconds
        if delay is None:
            delay = self.config.default_copy_delay
        self._validate_delay(delay, profile)

        existing = self.store.query(
            "copy_subscriptions:get_by_pair",
            {"copier_id": copier_id, "trader_id": request.trader_id},
        )
        if existing and SubscriptionStatus(existing["status"]) in OPEN_SUBSCRIPTION_STATUSES:
            raise CopyTradingError(
                "Already subscribed to this trader", ErrorCode.ALREADY_SUBSCRIBED
            )

        copier_count = self.store.query(
            "copy_subscriptions:count_by_copier",
            {"copier_id": copier_id, "statuses": ["active", "paused"]},
        )
        if copier_count >= self.config.max_copies_per_user:
            raise CopyTradingError(
                f"Cannot copy more than {self.config.max_copies_per_user} traders",
                ErrorCode.MAX_COPIES_EXCEEDED,
            )

        trader_count = self.store.query(
            "copy_subscriptions:count_by_trader",
            {"trader_id": request.trader_id, "statuses": ["active"]},
        )
        if trader_count >= self.config.max_copiers_per_trader:
            raise CopyTradingError(
                "Trader has reached maximum copier limit", ErrorCode.MAX_COPIERS_EXCEEDED
            )

        now = _utc_now()
        subscription = CopySubscription(
            copier_id=copier_id,
            trader_id=request.trader_id,
            status=SubscriptionStatus.ACTIVE,
            copy_mode=request.copy_mode,
            fixed_amount=request.fixed_amount,
            portfolio_percentage=request.portfolio_percentage,
            copy_ratio=request.copy_ratio,
            max_position_size=request.max_position_size,
            max_daily_loss=request.max_daily_loss,
            max_total_exposure=request.max_total_exposure,
            stop_loss_percent=request.stop_loss_percent,
            take_profit_percent=request.take_profit_percent,
            copy_asset_classes=list(request.copy_asset_classes),
            excluded_symbols=list(request.excluded_symbols),
            copy_delay_seconds=delay,
            subscribed_at=now,
            updated_at=now,
        )
        self._validate_sizing(subscription)

        record = subscription.to_record()
        del record["id"]
        created = CopySubscription.from_record(
            self.store.mutation("copy_subscriptions:create", record)
        )
        self._refresh_copier_count(request.trader_id)

        logger.info(
            "User %s started copying %s (subscription %s, mode %s)",
            copier_id, request.trader_id, created.id, created.copy_mode.value,
        )
        return created

    def update_subscription(
        self, copier_id: str, subscription_id: str, updates: dict[str, Any]
    ) -> CopySubscription:
        """Change sizing, risk or filter settings of an open subscription."""
        subscription = self._get_owned(copier_id, subscription_id)
        if subscription.status not in (SubscriptionStatus.ACTIVE, SubscriptionStatus.PAUSED):
            raise CopyTradingError(
                "Cannot update inactive subscription", ErrorCode.INVALID_STATUS
            )

        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise CopyTradingError(
                f"Fields cannot be updated: {', '.join(sorted(unknown))}",
                ErrorCode.INVALID_FIELD,
            )

        record = subscription.to_record()
        record.update({key: encode_value(value) for key, value in updates.items()})
        try:
            merged = CopySubscription.from_record(record)
        except ValueError as exc:
            raise CopyTradingError(str(exc), ErrorCode.INVALID_FIELD) from exc

        if set(updates) & set(SIZING_FIELDS + RISK_CAP_FIELDS):
            self._validate_sizing(merged)
        if "copy_delay_seconds" in updates:
            profile = self.store.query(
                "trader_profiles:get", {"user_id": subscription.trader_id}
            )
            self._validate_delay(merged.copy_delay_seconds, profile or {})

        changes = {key: merged.to_record()[key] for key in updates}
        changes.update({"id": subscription_id, "updated_at": _utc_now()})
        updated = self.store.mutation("copy_subscriptions:update", changes)
        logger.info("Updated subscription %s: %s", subscription_id, ", ".join(sorted(updates)))
        return CopySubscription.from_record(updated)

    def pause_subscription(self, copier_id: str, subscription_id: str) -> CopySubscription:
        subscription = self._get_owned(copier_id, subscription_id)
        if subscription.status != SubscriptionStatus.ACTIVE:
            raise CopyTradingError("Subscription is not active", ErrorCode.INVALID_STATUS)
        now = _utc_now()
        return self._transition(
            subscription, SubscriptionStatus.PAUSED, paused_at=now, updated_at=now
        )

    def resume_subscription(self, copier_id: str, subscription_id: str) -> CopySubscription:
        subscription = self._get_owned(copier_id, subscription_id)
        if subscription.status != SubscriptionStatus.PAUSED:
            raise CopyTradingError("Subscription is not paused", ErrorCode.INVALID_STATUS)
        return self._transition(
            subscription, SubscriptionStatus.ACTIVE, paused_at=None, updated_at=_utc_now()
        )

    def cancel_subscription(self, copier_id: str, subscription_id: str) -> CopySubscription:
        subscription = self._get_owned(copier_id, subscription_id)
        now = _utc_now()
        cancelled = self._transition(
            subscription, SubscriptionStatus.CANCELLED, cancelled_at=now, updated_at=now
        )
        self._refresh_copier_count(subscription.trader_id)
        logger.info(
            "User %s stopped copying %s (subscription %s)",
            copier_id, subscription.trader_id, subscription_id,
        )
        return cancelled

    def get_subscription(self, subscription_id: str) -> CopySubscription:
        record = self.store.query("copy_subscriptions:get", {"id": subscription_id})
        if not record:
            raise CopyTradingError("Subscription not found", ErrorCode.NOT_FOUND)
        return CopySubscription.from_record(record)

    def get_copier_subscriptions(
        self,
        copier_id: str,
        statuses: Optional[list[SubscriptionStatus]] = None,
        limit: int = 50,
    ) -> list[CopySubscription]:
        records = self.store.query("copy_subscriptions:get_by_copier", {
            "copier_id": copier_id,
            "statuses": [s.value for s in statuses] if statuses else None,
            "limit": limit,
        })
        return [CopySubscription.from_record(r) for r in records]

    def get_trader_copiers(
        self,
        trader_id: str,
        statuses: Optional[list[SubscriptionStatus]] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[CopySubscription]:
        statuses = statuses or [SubscriptionStatus.ACTIVE]
        records = self.store.query("copy_subscriptions:get_by_trader", {
            "trader_id": trader_id,
            "statuses": [s.value for s in statuses],
            "limit": limit,
            "offset": offset,
        })
        return [CopySubscription.from_record(r) for r in records]

    def _get_owned(self, copier_id: str, subscription_id: str) -> CopySubscription:
        subscription = self.get_subscription(subscription_id)
        if subscription.copier_id != copier_id:
            raise CopyTradingError("Subscription not found", ErrorCode.NOT_FOUND)
        return subscription

    def _transition(
        self,
        subscription: CopySubscription,
        target: SubscriptionStatus,
        **changes: Any,
    ) -> CopySubscription:
        if not can_transition_subscription(subscription.status, target):
            raise CopyTradingError(
                f"Cannot move subscription from {subscription.status.value} to {target.value}",
                ErrorCode.INVALID_STATUS,
            )
        updated = self.store.mutation(
            "copy_subscriptions:update",
            {"id": subscription.id, "status": target.value, **changes},
        )
        return CopySubscription.from_record(updated)

    def _validate_sizing(self, subscription: CopySubscription) -> None:
        for cap in RISK_CAP_FIELDS:
            if getattr(subscription, cap) < 0:
                raise CopyTradingError(f"{cap} must not be negative", ErrorCode.INVALID_AMOUNT)

        mode = subscription.copy_mode
        if mode == CopyMode.FIXED_AMOUNT:
            amount = subscription.fixed_amount
            if not amount or amount < self.config.min_copy_amount:
                raise CopyTradingError(
                    f"Fixed amount must be at least {self.config.min_copy_amount}",
                    ErrorCode.INVALID_AMOUNT,
                )
        elif mode == CopyMode.PERCENTAGE_PORTFOLIO:
            pct = subscription.portfolio_percentage
            if not pct or pct <= 0 or pct > 100:
                raise CopyTradingError(
                    "Portfolio percentage must be between 0 and 100",
                    ErrorCode.INVALID_PERCENTAGE,
                )
        elif mode in (CopyMode.PROPORTIONAL, CopyMode.FIXED_RATIO):
            if not subscription.copy_ratio or subscription.copy_ratio <= 0:
                raise CopyTradingError(
                    "Copy ratio must be greater than 0", ErrorCode.INVALID_RATIO
                )

    def _validate_delay(self, delay: Optional[int], profile: dict[str, Any]) -> None:
        if delay is None or delay < 0:
            raise CopyTradingError(
                "copy_delay_seconds must not be negative", ErrorCode.INVALID_FIELD
            )
        if not profile.get("allow_auto_copy", True) and delay == 0:
            raise CopyTradingError(
                "Trader does not allow auto-copy", ErrorCode.AUTO_COPY_NOT_ALLOWED
            )

    def _refresh_copier_count(self, trader_id: str) -> None:
        count = self.store.query(
            "copy_subscriptions:count_by_trader",
            {"trader_id": trader_id, "statuses": ["active"]},
        )
        self.store.mutation(
            "trader_profiles:update_counts", {"user_id": trader_id, "copier_count": count}
        )

    # ── Trade replication ─────────────────────────────────────────────

    @log_performance(threshold_ms=2000, expected=(PlatformError,))
    def process_trade(
        self,
        trader_id: str,
        trade: LeaderTrade,
        now: Optional[datetime] = None,
    ) -> list[CopyTrade]:
        """Replicate a leader's trade to every active copier.

        Each subscription is handled on its own: an exception while
        processing one is logged and the rest are still attempted.

        Returns:
            CopyTrades created, whatever their status.
        """
        now = now or _utc_now()
        with TraceContext(trader_id=trader_id, extra={"order_id": trade.order_id}):
            copy_trades: list[CopyTrade] = []
            seen = 0
            for subscription in self._iter_active_copiers(trader_id):
                seen += 1
                with TraceContext(subscription_id=subscription.id):
                    try:
                        copy_trades.append(self.execute_copy_trade(subscription, trade, now))
                    except Exception as exc:
                        logger.error(
                            "Failed to copy trade for subscription %s (copier %s): %s",
                            subscription.id, subscription.copier_id, exc,
                            exc_info=True,
                        )

            logger.info(
                "Processed %s %s for copying: %d copies from %d subscriptions",
                trade.side.value, trade.symbol, len(copy_trades), seen,
            )
        return copy_trades

    def _iter_active_copiers(self, trader_id: str) -> Iterator[CopySubscription]:
        """Yield every active subscription, one page of fan_out_limit at a time."""
        page_size = self.config.fan_out_limit
        offset = 0
        while True:
            page = self.get_trader_copiers(
                trader_id, [SubscriptionStatus.ACTIVE], limit=page_size, offset=offset
            )
            yield from page
            if len(page) < page_size:
                return
            offset += page_size

    def execute_copy_trade(
        self,
        subscription: CopySubscription,
        trade: LeaderTrade,
        now: Optional[datetime] = None,
    ) -> CopyTrade:
        """Evaluate and, when approved, place one copy of a leader trade."""
        now = now or _utc_now()
        key = idempotency_key(subscription.id, trade.order_id)

        existing = self.store.query("copy_trades:get_by_key", {"idempotency_key": key})
        if existing:
            recorded = CopyTrade.from_record(existing)
            if recorded.status == CopyTradeStatus.PENDING and recorded.scheduled_for is None:
                # Immediate copy left behind before its order was placed.
                logger.info(
                    "Resuming copy trade %s for order %s", recorded.id, trade.order_id,
                    extra={"copy_trade_id": recorded.id},
                )
                return self._execute_copy_order(recorded, subscription, now)
            logger.debug("Copy of order %s already recorded as %s", trade.order_id, recorded.id)
            return recorded

        decision = self.sizer.evaluate(subscription, trade, now)
        copy_trade = CopyTrade(
            subscription_id=subscription.id,
            copier_id=subscription.copier_id,
            trader_id=subscription.trader_id,
            original_order_id=trade.order_id,
            original_trade_id=trade.trade_id,
            idempotency_key=key,
            symbol=trade.symbol,
            side=trade.side,
            original_quantity=trade.quantity,
            original_price=trade.price,
            original_executed_at=trade.executed_at,
            created_at=now,
        )

        if not decision.approved:
            copy_trade.status = CopyTradeStatus.SKIPPED
            copy_trade.skip_reason = decision.skip_reason
            logger.info("Skipped copy of %s: %s", trade.symbol, decision.skip_reason)
            return self._create_copy_trade(copy_trade)

        copy_trade.copy_quantity = decision.copy_quantity
        if subscription.copy_delay_seconds > 0:
            copy_trade.scheduled_for = now + timedelta(seconds=subscription.copy_delay_seconds)
            created = self._create_copy_trade(copy_trade)
            logger.info(
                "Copy trade %s scheduled for %s",
                created.id, created.scheduled_for.isoformat(),
                extra={"copy_trade_id": created.id},
            )
            return created

        return self._execute_copy_order(self._create_copy_trade(copy_trade), subscription, now)

    def execute_pending_copy_trade(
        self, copy_trade_id: str, now: Optional[datetime] = None
    ) -> CopyTrade:
        """Second phase of a delayed copy, invoked by the scheduler.

        Executes with the quantity and price fixed at decision time. A
        subscription that is no longer active cancels the copy. A copy
        that is not yet due is returned unchanged.
        """
        now = now or _utc_now()
        copy_trade = self.get_copy_trade(copy_trade_id)
        if copy_trade.status != CopyTradeStatus.PENDING:
            return copy_trade
        if copy_trade.scheduled_for is not None and copy_trade.scheduled_for > now:
            logger.debug(
                "Copy trade %s not due until %s",
                copy_trade_id, copy_trade.scheduled_for.isoformat(),
            )
            return copy_trade

        subscription = self.get_subscription(copy_trade.subscription_id)
        with TraceContext(trader_id=subscription.trader_id, subscription_id=subscription.id):
            if not subscription.is_active:
                logger.info(
                    "Cancelled delayed copy trade %s: subscription is %s",
                    copy_trade_id, subscription.status.value,
                )
                return self._update_copy_trade(
                    copy_trade, CopyTradeStatus.CANCELLED, skip_reason=SUBSCRIPTION_NOT_ACTIVE
                )
            return self._execute_copy_order(copy_trade, subscription, now)

    def _execute_copy_order(
        self,
        copy_trade: CopyTrade,
        subscription: CopySubscription,
        now: datetime,
    ) -> CopyTrade:
        copy_trade = self._update_copy_trade(copy_trade, CopyTradeStatus.EXECUTING)

        try:
            order = self.order_service.create_order(OrderRequest(
                user_id=subscription.copier_id,
                symbol=copy_trade.symbol,
                side=copy_trade.side.value,
                quantity=copy_trade.copy_quantity,
                metadata={
                    "is_copy_trade": True,
                    "copy_trade_id": copy_trade.id,
                    "original_order_id": copy_trade.original_order_id,
                    "trader_id": subscription.trader_id,
                },
            ))
        except Exception as exc:
            logger.warning(
                "Copy trade %s failed: %s", copy_trade.id, exc,
                extra={"copy_trade_id": copy_trade.id},
            )
            return self._update_copy_trade(
                copy_trade, CopyTradeStatus.FAILED, failure_reason=str(exc) or type(exc).__name__
            )

        fee = copy_trade.position_value * self.config.platform_fee_percent / 100.0
        filled = self._update_copy_trade(
            copy_trade,
            CopyTradeStatus.FILLED,
            copy_order_id=order["id"],
            copy_price=copy_trade.original_price,
            copy_fee=fee,
            copy_executed_at=now,
        )
        self.store.mutation("copy_subscriptions:increment_stats", {
            "id": subscription.id,
            "total_copied_trades": 1,
            "total_fees_paid": fee,
        })

        logger.info(
            "Copy trade %s executed as order %s for %s",
            filled.id, order["id"], subscription.copier_id,
            extra={"copy_trade_id": filled.id},
        )
        return filled

    def _create_copy_trade(self, copy_trade: CopyTrade) -> CopyTrade:
        record = copy_trade.to_record()
        del record["id"]
        return CopyTrade.from_record(self.store.mutation("copy_trades:create", record))

    def _update_copy_trade(
        self, copy_trade: CopyTrade, target: CopyTradeStatus, **changes: Any
    ) -> CopyTrade:
        if not can_transition_copy_trade(copy_trade.status, target):
            raise CopyTradingError(
                f"Cannot move copy trade from {copy_trade.status.value} to {target.value}",
                ErrorCode.INVALID_STATUS,
            )
        updated = self.store.mutation(
            "copy_trades:update", {"id": copy_trade.id, "status": target.value, **changes}
        )
        return CopyTrade.from_record(updated)

    # ── Queries ───────────────────────────────────────────────────────

    def get_copy_trade(self, copy_trade_id: str) -> CopyTrade:
        record = self.store.query("copy_trades:get", {"id": copy_trade_id})
        if not record:
            raise CopyTradingError("Copy trade not found", ErrorCode.NOT_FOUND)
        return CopyTrade.from_record(record)

    def get_copy_trades(
        self,
        subscription_id: str,
        statuses: Optional[list[CopyTradeStatus]] = None,
        limit: int = 50,
    ) -> list[CopyTrade]:
        records = self.store.query("copy_trades:get_by_subscription", {
            "subscription_id": subscription_id,
            "statuses": [s.value for s in statuses] if statuses else None,
            "limit": limit,
        })
        return [CopyTrade.from_record(r) for r in records]

    def get_due_copy_trades(self, now: Optional[datetime] = None) -> list[CopyTrade]:
        """Pending delayed copies whose delay has elapsed."""
        records = self.store.query("copy_trades:get_due", {"before": now or _utc_now()})
        return [CopyTrade.from_record(r) for r in records]

    def get_copier_stats(self, copier_id: str) -> dict[str, Any]:
        return self.store.query("copy_subscriptions:get_copier_stats", {"copier_id": copier_id})
