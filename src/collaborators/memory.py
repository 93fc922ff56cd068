"""In-memory collaborators.

Reference implementations of the store and order placement
collaborators. They back local runs and tests with the same named
functions a production document-database client exposes.
"""

import copy
import logging
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from src.collaborators.interface import OrderRequest
from src.errors import CollaboratorError, ErrorCode

logger = logging.getLogger(__name__)

ACTIVE_ALERT_STATUSES = ("pending", "investigating")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex[:16]


class InMemoryStore:
    """Dict-backed store dispatching named queries and mutations.

    Records are plain dicts keyed by ``id``. Every read returns a deep
    copy so callers never alias stored state.
    """

    def __init__(self) -> None:
        self._trader_profiles: dict[str, dict] = {}
        self._subscriptions: dict[str, dict] = {}
        self._copy_trades: dict[str, dict] = {}
        self._copy_trade_keys: dict[str, str] = {}
        self._pnl_ledger: list[dict] = []
        self._balances: dict[str, float] = defaultdict(float)
        self._portfolio_values: dict[str, float] = defaultdict(float)
        self._exposures: dict[str, float] = defaultdict(float)
        self._trades: list[dict] = []
        self._trading_patterns: dict[str, dict] = {}
        self._fraud_alerts: dict[str, dict] = {}
        self._reputation: dict[str, dict] = {}

        self._queries: dict[str, Callable[[dict], Any]] = {
            "trader_profiles:get": self._get_trader_profile,
            "copy_subscriptions:get": self._get_subscription,
            "copy_subscriptions:get_by_pair": self._get_subscription_by_pair,
            "copy_subscriptions:get_by_copier": self._get_subscriptions_by_copier,
            "copy_subscriptions:get_by_trader": self._get_subscriptions_by_trader,
            "copy_subscriptions:count_by_copier": self._count_by_copier,
            "copy_subscriptions:count_by_trader": self._count_by_trader,
            "copy_subscriptions:get_copier_stats": self._get_copier_stats,
            "copy_trades:get": self._get_copy_trade,
            "copy_trades:get_by_key": self._get_copy_trade_by_key,
            "copy_trades:get_by_subscription": self._get_copy_trades_by_subscription,
            "copy_trades:get_daily_pnl": self._get_daily_pnl,
            "copy_trades:get_due": self._get_due_copy_trades,
            "balances:get_buying_power": self._get_buying_power,
            "positions:get_portfolio_value": self._get_portfolio_value,
            "positions:get_total_exposure": self._get_total_exposure,
            "trades:get_by_user_and_period": self._get_trades_by_user_and_period,
            "trading_patterns:get": self._get_trading_patterns,
            "fraud_alerts:get": self._get_fraud_alert,
            "fraud_alerts:get_active": self._get_active_fraud_alert,
            "fraud_alerts:get_by_user": self._get_fraud_alerts_by_user,
            "fraud_alerts:get_pending": self._get_pending_fraud_alerts,
            "reputation_scores:get": self._get_reputation,
        }
        self._mutations: dict[str, Callable[[dict], Any]] = {
            "trader_profiles:update_counts": self._update_trader_counts,
            "copy_subscriptions:create": self._create_subscription,
            "copy_subscriptions:update": self._update_subscription,
            "copy_subscriptions:increment_stats": self._increment_subscription_stats,
            "copy_trades:create": self._create_copy_trade,
            "copy_trades:update": self._update_copy_trade,
            "trading_patterns:upsert": self._upsert_trading_patterns,
            "fraud_alerts:create": self._create_fraud_alert,
            "fraud_alerts:update": self._update_fraud_alert,
            "reputation_scores:update_fraud_risk": self._update_fraud_risk,
        }

    # ── Store protocol ────────────────────────────────────────────────

    def query(self, name: str, args: dict[str, Any]) -> Any:
        handler = self._queries.get(name)
        if handler is None:
            raise CollaboratorError(
                f"Unknown query: {name}", ErrorCode.UNKNOWN_FUNCTION, function_name=name
            )
        return copy.deepcopy(handler(args))

    def mutation(self, name: str, args: dict[str, Any]) -> Any:
        handler = self._mutations.get(name)
        if handler is None:
            raise CollaboratorError(
                f"Unknown mutation: {name}", ErrorCode.UNKNOWN_FUNCTION, function_name=name
            )
        return copy.deepcopy(handler(copy.deepcopy(args)))

    # ── Seeding helpers ───────────────────────────────────────────────

    def put_trader_profile(
        self,
        user_id: str,
        allow_copy_trading: bool = True,
        allow_auto_copy: bool = True,
    ) -> dict:
        profile = {
            "user_id": user_id,
            "allow_copy_trading": allow_copy_trading,
            "allow_auto_copy": allow_auto_copy,
            "copier_count": 0,
        }
        self._trader_profiles[user_id] = profile
        return copy.deepcopy(profile)

    def set_balance(self, user_id: str, available: float) -> None:
        self._balances[user_id] = available

    def set_portfolio_value(self, user_id: str, total_value: float) -> None:
        self._portfolio_values[user_id] = total_value

    def set_exposure(self, user_id: str, total_exposure: float) -> None:
        self._exposures[user_id] = total_exposure

    def add_trade_records(self, records: list[dict]) -> None:
        self._trades.extend(copy.deepcopy(records))

    def record_copy_pnl(
        self, subscription_id: str, pnl: float, at: Optional[datetime] = None
    ) -> None:
        """Book realised P&L against a subscription."""
        self._pnl_ledger.append({
            "subscription_id": subscription_id,
            "pnl": pnl,
            "at": at or _utc_now(),
        })
        sub = self._subscriptions.get(subscription_id)
        if sub is not None:
            sub["total_pnl"] = sub.get("total_pnl", 0.0) + pnl

    # ── Trader profiles ───────────────────────────────────────────────

    def _get_trader_profile(self, args: dict) -> Optional[dict]:
        return self._trader_profiles.get(args["user_id"])

    def _update_trader_counts(self, args: dict) -> Optional[dict]:
        profile = self._trader_profiles.get(args["user_id"])
        if profile is None:
            return None
        profile["copier_count"] = args["copier_count"]
        return profile

    # ── Subscriptions ─────────────────────────────────────────────────

    def _get_subscription(self, args: dict) -> Optional[dict]:
        return self._subscriptions.get(args["id"])

    def _get_subscription_by_pair(self, args: dict) -> Optional[dict]:
        matches = [
            s for s in self._subscriptions.values()
            if s["copier_id"] == args["copier_id"] and s["trader_id"] == args["trader_id"]
        ]
        if not matches:
            return None
        return max(matches, key=lambda s: s["subscribed_at"])

    def _filter_subscriptions(self, key: str, value: str, statuses: Optional[list]) -> list[dict]:
        subs = [s for s in self._subscriptions.values() if s[key] == value]
        if statuses:
            subs = [s for s in subs if s["status"] in statuses]
        return sorted(subs, key=lambda s: s["subscribed_at"])

    def _get_subscriptions_by_copier(self, args: dict) -> list[dict]:
        subs = self._filter_subscriptions("copier_id", args["copier_id"], args.get("statuses"))
        return subs[: args.get("limit", 50)]

    def _get_subscriptions_by_trader(self, args: dict) -> list[dict]:
        subs = self._filter_subscriptions("trader_id", args["trader_id"], args.get("statuses"))
        offset = args.get("offset", 0)
        return subs[offset: offset + args.get("limit", 50)]

    def _count_by_copier(self, args: dict) -> int:
        return len(self._filter_subscriptions("copier_id", args["copier_id"], args.get("statuses")))

    def _count_by_trader(self, args: dict) -> int:
        return len(self._filter_subscriptions("trader_id", args["trader_id"], args.get("statuses")))

    def _get_copier_stats(self, args: dict) -> dict:
        subs = self._filter_subscriptions("copier_id", args["copier_id"], None)
        return {
            "total_subscriptions": len(subs),
            "active_subscriptions": sum(1 for s in subs if s["status"] == "active"),
            "total_copied_trades": sum(s.get("total_copied_trades", 0) for s in subs),
            "total_pnl": sum(s.get("total_pnl", 0.0) for s in subs),
            "total_fees_paid": sum(s.get("total_fees_paid", 0.0) for s in subs),
        }

    def _create_subscription(self, args: dict) -> dict:
        record = dict(args)
        record["id"] = record.get("id") or _new_id()
        self._subscriptions[record["id"]] = record
        return record

    def _update_subscription(self, args: dict) -> dict:
        sub = self._subscriptions[args.pop("id")]
        sub.update(args)
        return sub

    def _increment_subscription_stats(self, args: dict) -> dict:
        sub = self._subscriptions[args["id"]]
        sub["total_copied_trades"] = sub.get("total_copied_trades", 0) + args.get("total_copied_trades", 0)
        sub["total_fees_paid"] = sub.get("total_fees_paid", 0.0) + args.get("total_fees_paid", 0.0)
        return sub

    # ── Copy trades ───────────────────────────────────────────────────

    def _get_copy_trade(self, args: dict) -> Optional[dict]:
        return self._copy_trades.get(args["id"])

    def _get_copy_trade_by_key(self, args: dict) -> Optional[dict]:
        trade_id = self._copy_trade_keys.get(args["idempotency_key"])
        return self._copy_trades.get(trade_id) if trade_id else None

    def _get_copy_trades_by_subscription(self, args: dict) -> list[dict]:
        trades = [
            t for t in self._copy_trades.values()
            if t["subscription_id"] == args["subscription_id"]
        ]
        statuses = args.get("statuses")
        if statuses:
            trades = [t for t in trades if t["status"] in statuses]
        trades.sort(key=lambda t: t["created_at"], reverse=True)
        return trades[: args.get("limit", 50)]

    def _get_daily_pnl(self, args: dict) -> dict:
        total = sum(
            entry["pnl"] for entry in self._pnl_ledger
            if entry["subscription_id"] == args["subscription_id"]
            and entry["at"] >= args["since"]
        )
        return {"total_pnl": total}

    def _get_due_copy_trades(self, args: dict) -> list[dict]:
        due = [
            t for t in self._copy_trades.values()
            if t["status"] == "pending"
            and t.get("scheduled_for") is not None
            and t["scheduled_for"] <= args["before"]
        ]
        return sorted(due, key=lambda t: t["scheduled_for"])

    def _create_copy_trade(self, args: dict) -> dict:
        key = args.get("idempotency_key")
        if key and key in self._copy_trade_keys:
            return self._copy_trades[self._copy_trade_keys[key]]
        record = dict(args)
        record["id"] = record.get("id") or _new_id()
        self._copy_trades[record["id"]] = record
        if key:
            self._copy_trade_keys[key] = record["id"]
        return record

    def _update_copy_trade(self, args: dict) -> dict:
        trade = self._copy_trades[args.pop("id")]
        became_filled = args.get("status") == "filled" and trade["status"] != "filled"
        trade.update(args)
        if became_filled:
            value = trade["copy_quantity"] * (trade.get("copy_price") or trade["original_price"])
            signed = value if trade["side"] == "buy" else -value
            copier = trade["copier_id"]
            self._exposures[copier] = max(0.0, self._exposures[copier] + signed)
        return trade

    # ── Balances & positions ──────────────────────────────────────────

    def _get_buying_power(self, args: dict) -> dict:
        return {"available": self._balances[args["user_id"]]}

    def _get_portfolio_value(self, args: dict) -> dict:
        return {"total_value": self._portfolio_values[args["user_id"]]}

    def _get_total_exposure(self, args: dict) -> dict:
        return {"total_exposure": self._exposures[args["user_id"]]}

    # ── Trade history & patterns ──────────────────────────────────────

    def _get_trades_by_user_and_period(self, args: dict) -> list[dict]:
        return [
            t for t in self._trades
            if t["user_id"] == args["user_id"]
            and args["start_time"] <= t["executed_at"] <= args["end_time"]
        ]

    def _get_trading_patterns(self, args: dict) -> Optional[dict]:
        return self._trading_patterns.get(args["id"])

    def _upsert_trading_patterns(self, args: dict) -> dict:
        self._trading_patterns[args["id"]] = args
        return args

    # ── Fraud alerts & reputation ─────────────────────────────────────

    def _get_fraud_alert(self, args: dict) -> Optional[dict]:
        return self._fraud_alerts.get(args["id"])

    def _get_active_fraud_alert(self, args: dict) -> Optional[dict]:
        active = [
            a for a in self._fraud_alerts.values()
            if a["user_id"] == args["user_id"]
            and a["alert_type"] == args["alert_type"]
            and a["status"] in ACTIVE_ALERT_STATUSES
        ]
        if not active:
            return None
        return max(active, key=lambda a: a["detected_at"])

    def _get_fraud_alerts_by_user(self, args: dict) -> list[dict]:
        alerts = [a for a in self._fraud_alerts.values() if a["user_id"] == args["user_id"]]
        statuses = args.get("statuses")
        if statuses:
            alerts = [a for a in alerts if a["status"] in statuses]
        alerts.sort(key=lambda a: a["detected_at"], reverse=True)
        return alerts[: args.get("limit", 50)]

    def _get_pending_fraud_alerts(self, args: dict) -> list[dict]:
        alerts = [a for a in self._fraud_alerts.values() if a["status"] == "pending"]
        severity = args.get("severity")
        if severity:
            alerts = [a for a in alerts if a["severity"] == severity]
        alerts.sort(key=lambda a: a["detected_at"], reverse=True)
        return alerts[: args.get("limit", 50)]

    def _create_fraud_alert(self, args: dict) -> dict:
        record = dict(args)
        record["id"] = record.get("id") or _new_id()
        self._fraud_alerts[record["id"]] = record
        return record

    def _update_fraud_alert(self, args: dict) -> dict:
        alert = self._fraud_alerts[args.pop("id")]
        alert.update(args)
        return alert

    def _get_reputation(self, args: dict) -> Optional[dict]:
        return self._reputation.get(args["user_id"])

    def _update_fraud_risk(self, args: dict) -> dict:
        rep = self._reputation.setdefault(args["user_id"], {
            "user_id": args["user_id"],
            "fraud_risk_score": 0.0,
            "suspicious_activity_count": 0,
        })
        rep["fraud_risk_score"] = max(rep["fraud_risk_score"], args["fraud_risk_score"])
        rep["suspicious_activity_count"] += args.get("suspicious_activity_count", 1)
        rep["updated_at"] = _utc_now()
        return rep


class PaperOrderService:
    """Order service that fills every order immediately.

    Symbols passed to ``reject_symbol`` raise ``ORDER_REJECTED`` instead,
    which is how tests exercise the failed-placement path.
    """

    def __init__(self) -> None:
        self.orders: list[dict[str, Any]] = []
        self._rejected_symbols: set[str] = set()

    def reject_symbol(self, symbol: str) -> None:
        self._rejected_symbols.add(symbol)

    def create_order(self, request: OrderRequest) -> dict[str, Any]:
        if request.symbol in self._rejected_symbols:
            raise CollaboratorError(
                f"Order rejected for {request.symbol}", ErrorCode.ORDER_REJECTED
            )
        order = {
            "id": _new_id(),
            "status": "filled",
            "user_id": request.user_id,
            "symbol": request.symbol,
            "side": request.side,
            "type": request.type,
            "quantity": request.quantity,
            "price": request.price,
            "metadata": dict(request.metadata),
            "created_at": _utc_now(),
        }
        self.orders.append(order)
        logger.debug("Paper order %s filled: %s %s", order["id"], request.side, request.symbol)
        return {"id": order["id"], "status": order["status"]}
