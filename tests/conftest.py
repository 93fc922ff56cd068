"""Pytest configuration and shared fixtures."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.collaborators import InMemoryStore, PaperOrderService  # noqa: E402
from src.copy_trading import CopyTradingService  # noqa: E402
from src.fraud_detection import FraudDetectionService  # noqa: E402

LEADER_ID = "leader-1"
ANALYSIS_NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    """In-memory store with a leader that allows copy trading."""
    store = InMemoryStore()
    store.put_trader_profile(LEADER_ID)
    return store


@pytest.fixture
def order_service():
    return PaperOrderService()


@pytest.fixture
def copy_service(store, order_service):
    return CopyTradingService(store, order_service)


@pytest.fixture
def fraud_service(store):
    return FraudDetectionService(store)


def _trade_records(
    count,
    user_id=LEADER_ID,
    self_trades=0,
    start=None,
    gap_seconds=None,
    sides=None,
    symbol="ETH",
    quantities=None,
    price=100.0,
    id_prefix="t",
):
    """Build trade history dicts for the store.

    Gaps and quantities vary by default so that timing and size checks
    stay quiet unless a test asks for regularity.
    """
    start = start or ANALYSIS_NOW - timedelta(days=2)
    gap_seconds = gap_seconds or [600 + 97 * (i % 7) for i in range(count)]
    quantities = quantities or [1.0 + (i % 5) for i in range(count)]
    sides = sides or ["buy"] * count

    records = []
    executed_at = start
    for i in range(count):
        records.append({
            "id": f"{id_prefix}{i}",
            "order_id": f"o-{id_prefix}{i}",
            "user_id": user_id,
            "symbol": symbol,
            "side": sides[i],
            "quantity": quantities[i],
            "price": price,
            "executed_at": executed_at,
            "counterparty_id": user_id if i < self_trades else f"cp{i}",
        })
        executed_at = executed_at + timedelta(seconds=gap_seconds[i])
    return records


@pytest.fixture
def make_trades():
    """Factory for trade history records (see _trade_records)."""
    return _trade_records
