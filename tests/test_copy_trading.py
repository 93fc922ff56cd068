"""Tests for copy trading: subscriptions, position sizing and replication."""

from datetime import datetime, timedelta, timezone

import pytest

from src.collaborators import InMemoryStore, PaperOrderService
from src.copy_trading.config import (
    AssetClass,
    CopyMode,
    CopyTradeStatus,
    CopyTradingConfig,
    DEFAULT_COPY_TRADING_CONFIG,
    OrderSide,
    SkipReason,
    SubscriptionStatus,
    SUBSCRIPTION_NOT_ACTIVE,
    can_transition_copy_trade,
    can_transition_subscription,
)
from src.copy_trading.models import (
    CopySubscription,
    CopyTrade,
    LeaderTrade,
    SubscriptionRequest,
    idempotency_key,
)
from src.copy_trading.service import CopyTradingService
from src.copy_trading.sizing import (
    CopyPositionSizer,
    SizingInputs,
    compute_copy_quantity,
    start_of_utc_day,
)
from src.errors import CopyTradingError, ErrorCode
from src.settings import Settings

LEADER = "leader-1"
COPIER = "copier-1"
NOW = datetime(2026, 3, 2, 15, 30, tzinfo=timezone.utc)


def _request(**overrides):
    params = dict(
        trader_id=LEADER,
        copy_mode=CopyMode.FIXED_AMOUNT,
        fixed_amount=500.0,
        max_position_size=1000.0,
        max_daily_loss=500.0,
        max_total_exposure=10_000.0,
        copy_asset_classes=[AssetClass.CRYPTO],
    )
    params.update(overrides)
    return SubscriptionRequest(**params)


def _btc_buy(**overrides):
    params = dict(
        order_id="leader-order-1",
        symbol="BTC",
        side=OrderSide.BUY,
        quantity=1.0,
        price=50_000.0,
        asset_class=AssetClass.CRYPTO,
    )
    params.update(overrides)
    return LeaderTrade(**params)


def _subscription(**overrides):
    params = dict(
        id="sub-1",
        copier_id=COPIER,
        trader_id=LEADER,
        copy_mode=CopyMode.FIXED_AMOUNT,
        fixed_amount=500.0,
        max_position_size=1000.0,
        max_daily_loss=500.0,
        max_total_exposure=10_000.0,
        copy_asset_classes=[AssetClass.CRYPTO],
    )
    params.update(overrides)
    return CopySubscription(**params)


# ── Config / Enum Tests ──────────────────────────────────────────────


class TestCopyTradingConfig:
    """Tests for enums, transition tables and config."""

    def test_copy_mode_values(self):
        assert len(CopyMode) == 4
        assert CopyMode.FIXED_AMOUNT.value == "fixed_amount"
        assert CopyMode.PERCENTAGE_PORTFOLIO.value == "percentage_portfolio"
        assert CopyMode.PROPORTIONAL.value == "proportional"
        assert CopyMode.FIXED_RATIO.value == "fixed_ratio"

    def test_copy_trade_status_values(self):
        assert {s.value for s in CopyTradeStatus} == {
            "pending", "executing", "filled", "skipped", "failed", "cancelled",
        }

    def test_default_config(self):
        config = DEFAULT_COPY_TRADING_CONFIG
        assert config.max_copies_per_user == 10
        assert config.max_copiers_per_trader == 10_000
        assert config.min_copy_amount == 10.0
        assert config.platform_fee_percent == 0.5
        assert config.default_copy_delay == 0
        assert not hasattr(config, "max_slippage_percent")

    def test_config_is_frozen(self):
        with pytest.raises(Exception):
            DEFAULT_COPY_TRADING_CONFIG.platform_fee_percent = 1.0

    def test_from_settings(self):
        settings = Settings(copy_platform_fee_percent=1.25, copy_max_copies_per_user=3)
        config = CopyTradingConfig.from_settings(settings)
        assert config.platform_fee_percent == 1.25
        assert config.max_copies_per_user == 3

    def test_active_paused_round_trip_allowed(self):
        assert can_transition_subscription(SubscriptionStatus.ACTIVE, SubscriptionStatus.PAUSED)
        assert can_transition_subscription(SubscriptionStatus.PAUSED, SubscriptionStatus.ACTIVE)

    def test_terminal_subscription_statuses(self):
        for status in SubscriptionStatus:
            assert not can_transition_subscription(SubscriptionStatus.CANCELLED, status)
            assert not can_transition_subscription(SubscriptionStatus.EXPIRED, status)

    def test_copy_trade_transitions(self):
        assert can_transition_copy_trade(CopyTradeStatus.PENDING, CopyTradeStatus.EXECUTING)
        assert can_transition_copy_trade(CopyTradeStatus.PENDING, CopyTradeStatus.CANCELLED)
        assert can_transition_copy_trade(CopyTradeStatus.EXECUTING, CopyTradeStatus.FILLED)
        assert not can_transition_copy_trade(CopyTradeStatus.FILLED, CopyTradeStatus.FAILED)
        assert not can_transition_copy_trade(CopyTradeStatus.SKIPPED, CopyTradeStatus.EXECUTING)


# ── Model Tests ──────────────────────────────────────────────────────


class TestCopyTradingModels:

    def test_idempotency_key_is_deterministic(self):
        assert idempotency_key("sub-1", "o-1") == idempotency_key("sub-1", "o-1")
        assert idempotency_key("sub-1", "o-1") != idempotency_key("sub-2", "o-1")
        assert len(idempotency_key("sub-1", "o-1")) == 32

    def test_subscription_record_round_trip(self):
        sub = _subscription(excluded_symbols=["DOGE"])
        record = sub.to_record()
        assert record["copy_mode"] == "fixed_amount"
        assert record["copy_asset_classes"] == ["crypto"]
        restored = CopySubscription.from_record({**record, "unknown_column": 1})
        assert restored == sub

    def test_copy_trade_terminal(self):
        assert CopyTrade(status=CopyTradeStatus.FILLED).is_terminal
        assert not CopyTrade(status=CopyTradeStatus.PENDING).is_terminal

    def test_leader_trade_value(self):
        assert _btc_buy(quantity=2.0).trade_value == 100_000.0


# ── Sizing Tests ─────────────────────────────────────────────────────


class TestComputeCopyQuantity:
    """Tests for the four sizing modes."""

    @pytest.mark.parametrize("quantity,ratio", [(1.0, 0.5), (3.0, 2.0), (0.7, 0.3)])
    def test_fixed_ratio_is_exact(self, quantity, ratio):
        sub = _subscription(copy_mode=CopyMode.FIXED_RATIO, copy_ratio=ratio)
        trade = _btc_buy(quantity=quantity)
        assert compute_copy_quantity(sub, trade, SizingInputs()) == quantity * ratio

    def test_fixed_ratio_ignores_price(self):
        sub = _subscription(copy_mode=CopyMode.FIXED_RATIO, copy_ratio=2.0)
        assert compute_copy_quantity(sub, _btc_buy(price=0.0), SizingInputs()) == 2.0

    def test_fixed_amount(self):
        sub = _subscription(fixed_amount=500.0)
        assert compute_copy_quantity(sub, _btc_buy(), SizingInputs()) == pytest.approx(0.01)

    def test_percentage_portfolio(self):
        sub = _subscription(copy_mode=CopyMode.PERCENTAGE_PORTFOLIO, portfolio_percentage=10.0)
        inputs = SizingInputs(available_balance=20_000.0)
        assert compute_copy_quantity(sub, _btc_buy(), inputs) == pytest.approx(0.04)

    def test_proportional_preserves_fraction(self):
        sub = _subscription(copy_mode=CopyMode.PROPORTIONAL, copy_ratio=1.0)
        inputs = SizingInputs(copier_portfolio_value=10_000.0, leader_portfolio_value=100_000.0)
        # leader risked half its portfolio; copier risks half of 10k
        assert compute_copy_quantity(sub, _btc_buy(), inputs) == pytest.approx(0.1)

    def test_proportional_zero_leader_value(self):
        sub = _subscription(copy_mode=CopyMode.PROPORTIONAL, copy_ratio=1.0)
        inputs = SizingInputs(copier_portfolio_value=10_000.0, leader_portfolio_value=0.0)
        assert compute_copy_quantity(sub, _btc_buy(), inputs) == 0.0

    def test_zero_price_yields_zero(self):
        sub = _subscription(fixed_amount=500.0)
        assert compute_copy_quantity(sub, _btc_buy(price=0.0), SizingInputs()) == 0.0

    def test_start_of_utc_day(self):
        assert start_of_utc_day(NOW) == datetime(2026, 3, 2, tzinfo=timezone.utc)


class TestCopyPositionSizer:
    """Tests for gate ordering and skip reasons."""

    @pytest.fixture
    def sizer(self):
        return CopyPositionSizer(InMemoryStore())

    def test_approved(self, sizer):
        decision = sizer.evaluate(_subscription(), _btc_buy(), NOW)
        assert decision.approved
        assert decision.copy_quantity == pytest.approx(0.01)
        assert decision.position_value == pytest.approx(500.0)

    def test_asset_class_gate_runs_first(self):
        store = InMemoryStore()
        store.set_exposure(COPIER, 1_000_000.0)
        store.record_copy_pnl("sub-1", -10_000.0, at=NOW)
        sizer = CopyPositionSizer(store)
        sub = _subscription(excluded_symbols=["BTC"], fixed_amount=1_000_000.0)
        for asset_class in (AssetClass.EQUITY, AssetClass.PREDICTION, AssetClass.RWA):
            decision = sizer.evaluate(sub, _btc_buy(asset_class=asset_class), NOW)
            assert decision.skip_reason == SkipReason.ASSET_CLASS_NOT_ALLOWED

    def test_symbol_excluded(self, sizer):
        decision = sizer.evaluate(_subscription(excluded_symbols=["BTC"]), _btc_buy(), NOW)
        assert decision.skip_reason == SkipReason.SYMBOL_EXCLUDED

    def test_daily_loss_limit(self):
        store = InMemoryStore()
        store.record_copy_pnl("sub-1", -600.0, at=NOW - timedelta(hours=1))
        decision = CopyPositionSizer(store).evaluate(_subscription(), _btc_buy(), NOW)
        assert decision.skip_reason == SkipReason.DAILY_LOSS_LIMIT

    def test_daily_loss_at_limit_still_copies(self):
        store = InMemoryStore()
        store.record_copy_pnl("sub-1", -500.0, at=NOW - timedelta(hours=1))
        assert CopyPositionSizer(store).evaluate(_subscription(), _btc_buy(), NOW).approved

    def test_yesterdays_loss_ignored(self):
        store = InMemoryStore()
        store.record_copy_pnl("sub-1", -5_000.0, at=NOW - timedelta(days=1))
        assert CopyPositionSizer(store).evaluate(_subscription(), _btc_buy(), NOW).approved

    def test_quantity_too_small(self, sizer):
        sub = _subscription(copy_mode=CopyMode.PERCENTAGE_PORTFOLIO, portfolio_percentage=10.0)
        decision = sizer.evaluate(sub, _btc_buy(), NOW)
        assert decision.skip_reason == SkipReason.QUANTITY_TOO_SMALL

    def test_position_size_exceeded(self, sizer):
        decision = sizer.evaluate(_subscription(fixed_amount=1500.0), _btc_buy(), NOW)
        assert decision.skip_reason == SkipReason.POSITION_SIZE_EXCEEDED

    def test_exposure_gate_boundary(self):
        store = InMemoryStore()
        store.set_exposure(COPIER, 9_500.0)
        sizer = CopyPositionSizer(store)
        sub = _subscription(copy_mode=CopyMode.FIXED_RATIO, copy_ratio=1.0)

        within = sizer.evaluate(sub, _btc_buy(quantity=5.0, price=100.0), NOW)
        assert within.approved

        over = sizer.evaluate(sub, _btc_buy(quantity=6.0, price=100.0), NOW)
        assert over.skip_reason == SkipReason.TOTAL_EXPOSURE_EXCEEDED

    def test_resolve_inputs_only_for_mode(self):
        store = InMemoryStore()
        store.set_balance(COPIER, 1234.0)
        store.set_portfolio_value(LEADER, 50.0)
        sizer = CopyPositionSizer(store)

        pct = sizer.resolve_inputs(_subscription(copy_mode=CopyMode.PERCENTAGE_PORTFOLIO))
        assert pct.available_balance == 1234.0
        assert pct.leader_portfolio_value == 0.0

        prop = sizer.resolve_inputs(_subscription(copy_mode=CopyMode.PROPORTIONAL))
        assert prop.leader_portfolio_value == 50.0
        assert prop.available_balance == 0.0


# ── Subscription Management Tests ────────────────────────────────────


class TestSubscriptionManagement:

    def test_create_subscription(self, copy_service, store):
        sub = copy_service.create_subscription(COPIER, _request())
        assert sub.id
        assert sub.status == SubscriptionStatus.ACTIVE
        assert sub.copy_mode == CopyMode.FIXED_AMOUNT
        assert sub.copy_delay_seconds == 0
        assert store.query("trader_profiles:get", {"user_id": LEADER})["copier_count"] == 1

    def test_cannot_copy_self(self, copy_service):
        with pytest.raises(CopyTradingError) as exc_info:
            copy_service.create_subscription(LEADER, _request())
        assert exc_info.value.error_code == ErrorCode.SELF_COPY

    def test_unknown_trader_not_allowed(self, copy_service):
        with pytest.raises(CopyTradingError) as exc_info:
            copy_service.create_subscription(COPIER, _request(trader_id="ghost"))
        assert exc_info.value.error_code == ErrorCode.COPY_TRADING_NOT_ALLOWED

    def test_trader_disallows_copy_trading(self, copy_service, store):
        store.put_trader_profile("private", allow_copy_trading=False)
        with pytest.raises(CopyTradingError) as exc_info:
            copy_service.create_subscription(COPIER, _request(trader_id="private"))
        assert exc_info.value.error_code == ErrorCode.COPY_TRADING_NOT_ALLOWED

    def test_auto_copy_requires_delay(self, copy_service, store):
        store.put_trader_profile("manual", allow_auto_copy=False)
        with pytest.raises(CopyTradingError) as exc_info:
            copy_service.create_subscription(COPIER, _request(trader_id="manual"))
        assert exc_info.value.error_code == ErrorCode.AUTO_COPY_NOT_ALLOWED

        sub = copy_service.create_subscription(
            COPIER, _request(trader_id="manual", copy_delay_seconds=30)
        )
        assert sub.copy_delay_seconds == 30

    def test_already_subscribed(self, copy_service):
        copy_service.create_subscription(COPIER, _request())
        with pytest.raises(CopyTradingError) as exc_info:
            copy_service.create_subscription(COPIER, _request())
        assert exc_info.value.error_code == ErrorCode.ALREADY_SUBSCRIBED

    def test_resubscribe_after_cancel(self, copy_service):
        sub = copy_service.create_subscription(COPIER, _request())
        copy_service.cancel_subscription(COPIER, sub.id)
        again = copy_service.create_subscription(COPIER, _request())
        assert again.id != sub.id

    def test_max_copies_per_user(self, store, order_service):
        service = CopyTradingService(
            store, order_service, CopyTradingConfig(max_copies_per_user=1)
        )
        store.put_trader_profile("leader-2")
        service.create_subscription(COPIER, _request())
        with pytest.raises(CopyTradingError) as exc_info:
            service.create_subscription(COPIER, _request(trader_id="leader-2"))
        assert exc_info.value.error_code == ErrorCode.MAX_COPIES_EXCEEDED

    def test_max_copiers_per_trader(self, store, order_service):
        service = CopyTradingService(
            store, order_service, CopyTradingConfig(max_copiers_per_trader=1)
        )
        service.create_subscription(COPIER, _request())
        with pytest.raises(CopyTradingError) as exc_info:
            service.create_subscription("copier-2", _request())
        assert exc_info.value.error_code == ErrorCode.MAX_COPIERS_EXCEEDED

    @pytest.mark.parametrize("overrides,code", [
        ({"fixed_amount": 5.0}, ErrorCode.INVALID_AMOUNT),
        ({"fixed_amount": None}, ErrorCode.INVALID_AMOUNT),
        ({"copy_mode": CopyMode.PERCENTAGE_PORTFOLIO, "portfolio_percentage": 150.0},
         ErrorCode.INVALID_PERCENTAGE),
        ({"copy_mode": CopyMode.PERCENTAGE_PORTFOLIO, "portfolio_percentage": 0.0},
         ErrorCode.INVALID_PERCENTAGE),
        ({"copy_mode": CopyMode.FIXED_RATIO, "copy_ratio": 0.0}, ErrorCode.INVALID_RATIO),
        ({"copy_mode": CopyMode.PROPORTIONAL}, ErrorCode.INVALID_RATIO),
        ({"max_daily_loss": -1.0}, ErrorCode.INVALID_AMOUNT),
    ])
    def test_invalid_sizing(self, copy_service, overrides, code):
        with pytest.raises(CopyTradingError) as exc_info:
            copy_service.create_subscription(COPIER, _request(**overrides))
        assert exc_info.value.error_code == code
        assert exc_info.value.retryable is False

    def test_pause_and_resume(self, copy_service):
        sub = copy_service.create_subscription(COPIER, _request())
        paused = copy_service.pause_subscription(COPIER, sub.id)
        assert paused.status == SubscriptionStatus.PAUSED
        assert paused.paused_at is not None

        resumed = copy_service.resume_subscription(COPIER, sub.id)
        assert resumed.status == SubscriptionStatus.ACTIVE
        assert resumed.paused_at is None

    def test_pause_requires_active(self, copy_service):
        sub = copy_service.create_subscription(COPIER, _request())
        copy_service.pause_subscription(COPIER, sub.id)
        with pytest.raises(CopyTradingError) as exc_info:
            copy_service.pause_subscription(COPIER, sub.id)
        assert exc_info.value.error_code == ErrorCode.INVALID_STATUS

    def test_resume_requires_paused(self, copy_service):
        sub = copy_service.create_subscription(COPIER, _request())
        with pytest.raises(CopyTradingError) as exc_info:
            copy_service.resume_subscription(COPIER, sub.id)
        assert exc_info.value.error_code == ErrorCode.INVALID_STATUS

    def test_cancel_is_terminal(self, copy_service, store):
        sub = copy_service.create_subscription(COPIER, _request())
        cancelled = copy_service.cancel_subscription(COPIER, sub.id)
        assert cancelled.status == SubscriptionStatus.CANCELLED
        assert cancelled.cancelled_at is not None
        assert store.query("trader_profiles:get", {"user_id": LEADER})["copier_count"] == 0

        with pytest.raises(CopyTradingError) as exc_info:
            copy_service.cancel_subscription(COPIER, sub.id)
        assert exc_info.value.error_code == ErrorCode.INVALID_STATUS

    def test_other_users_subscription_not_found(self, copy_service):
        sub = copy_service.create_subscription(COPIER, _request())
        with pytest.raises(CopyTradingError) as exc_info:
            copy_service.pause_subscription("intruder", sub.id)
        assert exc_info.value.error_code == ErrorCode.NOT_FOUND

    def test_missing_subscription(self, copy_service):
        with pytest.raises(CopyTradingError) as exc_info:
            copy_service.get_subscription("nope")
        assert exc_info.value.error_code == ErrorCode.NOT_FOUND

    def test_update_subscription(self, copy_service):
        sub = copy_service.create_subscription(COPIER, _request())
        updated = copy_service.update_subscription(COPIER, sub.id, {
            "fixed_amount": 250.0,
            "excluded_symbols": ["DOGE"],
            "copy_asset_classes": [AssetClass.CRYPTO, AssetClass.EQUITY],
        })
        assert updated.fixed_amount == 250.0
        assert updated.excluded_symbols == ["DOGE"]
        assert updated.copy_asset_classes == [AssetClass.CRYPTO, AssetClass.EQUITY]

    def test_update_switches_mode(self, copy_service):
        sub = copy_service.create_subscription(COPIER, _request())
        updated = copy_service.update_subscription(
            COPIER, sub.id, {"copy_mode": "fixed_ratio", "copy_ratio": 0.5}
        )
        assert updated.copy_mode == CopyMode.FIXED_RATIO
        assert updated.copy_ratio == 0.5

    def test_update_rejects_unknown_field(self, copy_service):
        sub = copy_service.create_subscription(COPIER, _request())
        with pytest.raises(CopyTradingError) as exc_info:
            copy_service.update_subscription(COPIER, sub.id, {"copier_id": "someone"})
        assert exc_info.value.error_code == ErrorCode.INVALID_FIELD

    def test_update_rejects_bad_enum(self, copy_service):
        sub = copy_service.create_subscription(COPIER, _request())
        with pytest.raises(CopyTradingError) as exc_info:
            copy_service.update_subscription(COPIER, sub.id, {"copy_mode": "martingale"})
        assert exc_info.value.error_code == ErrorCode.INVALID_FIELD

    def test_update_revalidates_sizing(self, copy_service):
        sub = copy_service.create_subscription(COPIER, _request())
        with pytest.raises(CopyTradingError) as exc_info:
            copy_service.update_subscription(COPIER, sub.id, {"fixed_amount": 1.0})
        assert exc_info.value.error_code == ErrorCode.INVALID_AMOUNT
        assert copy_service.get_subscription(sub.id).fixed_amount == 500.0

    def test_negative_delay_rejected(self, copy_service, store):
        store.put_trader_profile("manual", allow_auto_copy=False)
        for trader_id in (LEADER, "manual"):
            with pytest.raises(CopyTradingError) as exc_info:
                copy_service.create_subscription(
                    COPIER, _request(trader_id=trader_id, copy_delay_seconds=-5)
                )
            assert exc_info.value.error_code == ErrorCode.INVALID_FIELD

    def test_update_delay_keeps_auto_copy_rule(self, copy_service, store):
        store.put_trader_profile("manual", allow_auto_copy=False)
        sub = copy_service.create_subscription(
            COPIER, _request(trader_id="manual", copy_delay_seconds=30)
        )

        with pytest.raises(CopyTradingError) as exc_info:
            copy_service.update_subscription(COPIER, sub.id, {"copy_delay_seconds": 0})
        assert exc_info.value.error_code == ErrorCode.AUTO_COPY_NOT_ALLOWED

        with pytest.raises(CopyTradingError) as exc_info:
            copy_service.update_subscription(COPIER, sub.id, {"copy_delay_seconds": -5})
        assert exc_info.value.error_code == ErrorCode.INVALID_FIELD

        assert copy_service.get_subscription(sub.id).copy_delay_seconds == 30
        updated = copy_service.update_subscription(COPIER, sub.id, {"copy_delay_seconds": 10})
        assert updated.copy_delay_seconds == 10

    def test_update_delay_to_zero_when_auto_copy_allowed(self, copy_service):
        sub = copy_service.create_subscription(COPIER, _request(copy_delay_seconds=30))
        updated = copy_service.update_subscription(COPIER, sub.id, {"copy_delay_seconds": 0})
        assert updated.copy_delay_seconds == 0

    def test_update_cancelled_rejected(self, copy_service):
        sub = copy_service.create_subscription(COPIER, _request())
        copy_service.cancel_subscription(COPIER, sub.id)
        with pytest.raises(CopyTradingError) as exc_info:
            copy_service.update_subscription(COPIER, sub.id, {"fixed_amount": 100.0})
        assert exc_info.value.error_code == ErrorCode.INVALID_STATUS

    def test_list_subscriptions(self, copy_service, store):
        store.put_trader_profile("leader-2")
        first = copy_service.create_subscription(COPIER, _request())
        copy_service.create_subscription(COPIER, _request(trader_id="leader-2"))
        copy_service.pause_subscription(COPIER, first.id)

        assert len(copy_service.get_copier_subscriptions(COPIER)) == 2
        active = copy_service.get_copier_subscriptions(COPIER, [SubscriptionStatus.ACTIVE])
        assert [s.trader_id for s in active] == ["leader-2"]
        assert copy_service.get_trader_copiers(LEADER) == []


# ── Trade Replication Tests ──────────────────────────────────────────


class TestTradeReplication:

    def test_btc_fixed_amount_fills(self, copy_service, order_service):
        sub = copy_service.create_subscription(COPIER, _request())
        trades = copy_service.process_trade(LEADER, _btc_buy(), NOW)

        assert len(trades) == 1
        trade = trades[0]
        assert trade.status == CopyTradeStatus.FILLED
        assert trade.copy_quantity == pytest.approx(0.01)
        assert trade.position_value == pytest.approx(500.0)
        assert trade.copy_fee == pytest.approx(2.5)
        assert trade.copy_order_id == order_service.orders[0]["id"]
        assert trade.copy_price == 50_000.0
        assert trade.subscription_id == sub.id
        assert trade.idempotency_key == idempotency_key(sub.id, "leader-order-1")

    def test_order_request_carries_copy_metadata(self, copy_service, order_service):
        copy_service.create_subscription(COPIER, _request())
        trade = copy_service.process_trade(LEADER, _btc_buy(), NOW)[0]

        order = order_service.orders[0]
        assert order["user_id"] == COPIER
        assert order["type"] == "market"
        assert order["side"] == "buy"
        assert order["metadata"] == {
            "is_copy_trade": True,
            "copy_trade_id": trade.id,
            "original_order_id": "leader-order-1",
            "trader_id": LEADER,
        }

    def test_excluded_symbol_skipped(self, copy_service, order_service):
        copy_service.create_subscription(COPIER, _request(excluded_symbols=["BTC"]))
        trade = copy_service.process_trade(LEADER, _btc_buy(), NOW)[0]
        assert trade.status == CopyTradeStatus.SKIPPED
        assert trade.skip_reason == "Symbol excluded"
        assert trade.copy_quantity == 0.0
        assert order_service.orders == []

    def test_asset_class_not_allowed(self, copy_service):
        copy_service.create_subscription(COPIER, _request())
        trade = copy_service.process_trade(
            LEADER, _btc_buy(asset_class=AssetClass.EQUITY), NOW
        )[0]
        assert trade.status == CopyTradeStatus.SKIPPED
        assert trade.skip_reason == "Asset class not allowed"

    def test_skipped_trade_does_not_touch_stats(self, copy_service):
        sub = copy_service.create_subscription(COPIER, _request(excluded_symbols=["BTC"]))
        copy_service.process_trade(LEADER, _btc_buy(), NOW)
        refreshed = copy_service.get_subscription(sub.id)
        assert refreshed.total_copied_trades == 0
        assert refreshed.total_fees_paid == 0.0

    def test_filled_trade_increments_stats(self, copy_service):
        sub = copy_service.create_subscription(COPIER, _request())
        copy_service.process_trade(LEADER, _btc_buy(), NOW)
        copy_service.process_trade(LEADER, _btc_buy(order_id="leader-order-2"), NOW)
        refreshed = copy_service.get_subscription(sub.id)
        assert refreshed.total_copied_trades == 2
        assert refreshed.total_fees_paid == pytest.approx(5.0)

    def test_fill_updates_copier_exposure(self, copy_service, store):
        copy_service.create_subscription(COPIER, _request())
        copy_service.process_trade(LEADER, _btc_buy(), NOW)
        exposure = store.query("positions:get_total_exposure", {"user_id": COPIER})
        assert exposure["total_exposure"] == pytest.approx(500.0)

    def test_exposure_gate_across_trades(self, copy_service, store):
        store.set_exposure(COPIER, 9_200.0)
        copy_service.create_subscription(COPIER, _request())
        first = copy_service.process_trade(LEADER, _btc_buy(), NOW)[0]
        second = copy_service.process_trade(LEADER, _btc_buy(order_id="leader-order-2"), NOW)[0]
        assert first.status == CopyTradeStatus.FILLED
        assert second.status == CopyTradeStatus.SKIPPED
        assert second.skip_reason == "Total exposure exceeded"

    def test_order_failure_marks_failed(self, copy_service, order_service):
        sub = copy_service.create_subscription(COPIER, _request())
        order_service.reject_symbol("BTC")
        trade = copy_service.process_trade(LEADER, _btc_buy(), NOW)[0]

        assert trade.status == CopyTradeStatus.FAILED
        assert "Order rejected for BTC" in trade.failure_reason
        assert trade.copy_order_id is None
        assert copy_service.get_subscription(sub.id).total_copied_trades == 0

    def test_processing_twice_is_idempotent(self, copy_service, order_service):
        sub = copy_service.create_subscription(COPIER, _request())
        first = copy_service.process_trade(LEADER, _btc_buy(), NOW)
        second = copy_service.process_trade(LEADER, _btc_buy(), NOW)

        assert first[0].id == second[0].id
        assert len(order_service.orders) == 1
        assert len(copy_service.get_copy_trades(sub.id)) == 1
        assert copy_service.get_subscription(sub.id).total_copied_trades == 1

    def test_fan_out_covers_all_active_copiers(self, copy_service):
        for i in range(3):
            copy_service.create_subscription(f"copier-{i}", _request())
        paused = copy_service.create_subscription("copier-paused", _request())
        copy_service.pause_subscription("copier-paused", paused.id)

        trades = copy_service.process_trade(LEADER, _btc_buy(), NOW)
        assert sorted(t.copier_id for t in trades) == ["copier-0", "copier-1", "copier-2"]

    def test_fan_out_isolates_failures(self, copy_service, monkeypatch, caplog):
        broken = copy_service.create_subscription("copier-broken", _request())
        copy_service.create_subscription("copier-ok", _request())
        real_evaluate = copy_service.sizer.evaluate

        def flaky_evaluate(subscription, trade, now=None):
            if subscription.id == broken.id:
                raise RuntimeError("store timeout")
            return real_evaluate(subscription, trade, now)

        monkeypatch.setattr(copy_service.sizer, "evaluate", flaky_evaluate)
        with caplog.at_level("ERROR"):
            trades = copy_service.process_trade(LEADER, _btc_buy(), NOW)

        assert [t.copier_id for t in trades] == ["copier-ok"]
        assert trades[0].status == CopyTradeStatus.FILLED
        assert any("store timeout" in r.getMessage() for r in caplog.records)

    def test_stranded_immediate_copy_resumes(self, order_service):
        failures = []

        class FlakyStore(InMemoryStore):
            def mutation(self, name, args):
                executing = name == "copy_trades:update" and args.get("status") == "executing"
                if executing and not failures:
                    failures.append(name)
                    raise RuntimeError("store timeout")
                return super().mutation(name, args)

        flaky = FlakyStore()
        flaky.put_trader_profile(LEADER)
        service = CopyTradingService(flaky, order_service)
        sub = service.create_subscription(COPIER, _request())

        assert service.process_trade(LEADER, _btc_buy(), NOW) == []
        stranded = service.get_copy_trades(sub.id)
        assert [t.status for t in stranded] == [CopyTradeStatus.PENDING]
        assert order_service.orders == []

        retried = service.process_trade(LEADER, _btc_buy(), NOW)
        assert [t.id for t in retried] == [stranded[0].id]
        assert retried[0].status == CopyTradeStatus.FILLED
        assert len(order_service.orders) == 1
        assert service.get_subscription(sub.id).total_copied_trades == 1

    def test_fan_out_pages_past_limit(self, store, order_service):
        service = CopyTradingService(store, order_service, CopyTradingConfig(fan_out_limit=2))
        copiers = [f"copier-{i}" for i in range(5)]
        for copier in copiers:
            service.create_subscription(copier, _request())

        trades = service.process_trade(LEADER, _btc_buy(), NOW)
        assert sorted(t.copier_id for t in trades) == copiers
        assert len(order_service.orders) == 5

    def test_no_copiers(self, copy_service):
        assert copy_service.process_trade(LEADER, _btc_buy(), NOW) == []

    def test_percentage_portfolio_mode(self, copy_service, store):
        store.set_balance(COPIER, 20_000.0)
        copy_service.create_subscription(COPIER, _request(
            copy_mode=CopyMode.PERCENTAGE_PORTFOLIO, fixed_amount=None, portfolio_percentage=2.5,
        ))
        trade = copy_service.process_trade(LEADER, _btc_buy(), NOW)[0]
        assert trade.status == CopyTradeStatus.FILLED
        assert trade.copy_quantity == pytest.approx(0.01)

    def test_proportional_mode(self, copy_service, store):
        store.set_portfolio_value(LEADER, 1_000_000.0)
        store.set_portfolio_value(COPIER, 10_000.0)
        copy_service.create_subscription(COPIER, _request(
            copy_mode=CopyMode.PROPORTIONAL, fixed_amount=None, copy_ratio=1.0,
        ))
        trade = copy_service.process_trade(LEADER, _btc_buy(), NOW)[0]
        assert trade.copy_quantity == pytest.approx(0.01)

    def test_sell_reduces_exposure(self, copy_service, store):
        store.set_exposure(COPIER, 800.0)
        copy_service.create_subscription(COPIER, _request())
        copy_service.process_trade(LEADER, _btc_buy(side=OrderSide.SELL), NOW)
        exposure = store.query("positions:get_total_exposure", {"user_id": COPIER})
        assert exposure["total_exposure"] == pytest.approx(300.0)


# ── Delayed Copy Tests ───────────────────────────────────────────────


class TestDelayedCopies:

    def test_delayed_copy_is_pending(self, copy_service, order_service):
        copy_service.create_subscription(COPIER, _request(copy_delay_seconds=60))
        trade = copy_service.process_trade(LEADER, _btc_buy(), NOW)[0]

        assert trade.status == CopyTradeStatus.PENDING
        assert trade.scheduled_for == NOW + timedelta(seconds=60)
        assert trade.copy_quantity == pytest.approx(0.01)
        assert order_service.orders == []

    def test_due_copy_trades(self, copy_service):
        copy_service.create_subscription(COPIER, _request(copy_delay_seconds=60))
        trade = copy_service.process_trade(LEADER, _btc_buy(), NOW)[0]

        assert copy_service.get_due_copy_trades(NOW + timedelta(seconds=30)) == []
        due = copy_service.get_due_copy_trades(NOW + timedelta(seconds=61))
        assert [t.id for t in due] == [trade.id]

    def test_execute_pending_uses_frozen_quantity(self, copy_service, store):
        copy_service.create_subscription(COPIER, _request(copy_delay_seconds=60))
        pending = copy_service.process_trade(LEADER, _btc_buy(), NOW)[0]

        # balances move after the decision; the copy does not resize
        store.set_exposure(COPIER, 9_999.0)
        filled = copy_service.execute_pending_copy_trade(
            pending.id, NOW + timedelta(seconds=60)
        )
        assert filled.status == CopyTradeStatus.FILLED
        assert filled.copy_quantity == pending.copy_quantity
        assert filled.copy_executed_at == NOW + timedelta(seconds=60)

    def test_paused_subscription_cancels_pending(self, copy_service, order_service):
        sub = copy_service.create_subscription(COPIER, _request(copy_delay_seconds=60))
        pending = copy_service.process_trade(LEADER, _btc_buy(), NOW)[0]
        copy_service.pause_subscription(COPIER, sub.id)

        result = copy_service.execute_pending_copy_trade(pending.id, NOW + timedelta(seconds=60))
        assert result.status == CopyTradeStatus.CANCELLED
        assert result.skip_reason == SUBSCRIPTION_NOT_ACTIVE
        assert order_service.orders == []

    def test_execute_pending_twice_is_noop(self, copy_service, order_service):
        copy_service.create_subscription(COPIER, _request(copy_delay_seconds=60))
        pending = copy_service.process_trade(LEADER, _btc_buy(), NOW)[0]
        due = NOW + timedelta(seconds=60)
        copy_service.execute_pending_copy_trade(pending.id, due)
        again = copy_service.execute_pending_copy_trade(pending.id, due)
        assert again.status == CopyTradeStatus.FILLED
        assert len(order_service.orders) == 1

    def test_execute_pending_before_due_is_noop(self, copy_service, order_service):
        copy_service.create_subscription(COPIER, _request(copy_delay_seconds=60))
        pending = copy_service.process_trade(LEADER, _btc_buy(), NOW)[0]

        early = copy_service.execute_pending_copy_trade(pending.id, NOW + timedelta(seconds=59))
        assert early.status == CopyTradeStatus.PENDING
        assert order_service.orders == []

        on_time = copy_service.execute_pending_copy_trade(pending.id, NOW + timedelta(seconds=60))
        assert on_time.status == CopyTradeStatus.FILLED

    def test_execute_missing_copy_trade(self, copy_service):
        with pytest.raises(CopyTradingError) as exc_info:
            copy_service.execute_pending_copy_trade("nope")
        assert exc_info.value.error_code == ErrorCode.NOT_FOUND


# ── Query Tests ──────────────────────────────────────────────────────


class TestCopyTradeQueries:

    def test_get_copy_trades_filters_status(self, copy_service):
        sub = copy_service.create_subscription(COPIER, _request())
        copy_service.process_trade(LEADER, _btc_buy(), NOW)
        copy_service.process_trade(
            LEADER, _btc_buy(order_id="leader-order-2", asset_class=AssetClass.EQUITY), NOW
        )

        assert len(copy_service.get_copy_trades(sub.id)) == 2
        skipped = copy_service.get_copy_trades(sub.id, [CopyTradeStatus.SKIPPED])
        assert [t.original_order_id for t in skipped] == ["leader-order-2"]

    def test_get_copy_trade(self, copy_service):
        copy_service.create_subscription(COPIER, _request())
        trade = copy_service.process_trade(LEADER, _btc_buy(), NOW)[0]
        assert copy_service.get_copy_trade(trade.id) == trade

    def test_copier_stats(self, copy_service, store):
        store.put_trader_profile("leader-2")
        sub = copy_service.create_subscription(COPIER, _request())
        other = copy_service.create_subscription(COPIER, _request(trader_id="leader-2"))
        copy_service.cancel_subscription(COPIER, other.id)
        copy_service.process_trade(LEADER, _btc_buy(), NOW)
        store.record_copy_pnl(sub.id, 42.0)

        stats = copy_service.get_copier_stats(COPIER)
        assert stats["total_subscriptions"] == 2
        assert stats["active_subscriptions"] == 1
        assert stats["total_copied_trades"] == 1
        assert stats["total_pnl"] == pytest.approx(42.0)
        assert stats["total_fees_paid"] == pytest.approx(2.5)
