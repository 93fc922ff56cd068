"""Feature extraction over a trader's execution history."""

from collections import Counter, defaultdict
from datetime import timedelta, timezone
from typing import Dict, List, Sequence

import numpy as np

from .models import TradeRecord, TradingPatternFeatures

DEFAULT_ROUND_TRIP_WINDOW_MS = 3_600_000
PEAK_HOURS = 3

_ONE_MS = timedelta(milliseconds=1)


def _mean(values: np.ndarray) -> float:
    if values.size == 0:
        return 0.0
    return float(np.mean(values))


def _std(values: np.ndarray) -> float:
    """Population standard deviation; 0 for fewer than two values."""
    if values.size < 2:
        return 0.0
    return float(np.std(values))


def _median(values: np.ndarray) -> float:
    if values.size == 0:
        return 0.0
    return float(np.median(values))


def count_round_trips(
    sorted_trades: Sequence[TradeRecord],
    window_ms: int = DEFAULT_ROUND_TRIP_WINDOW_MS,
) -> int:
    """Count sells that close an open buy of the same symbol within the window.

    Each sell matches the earliest still-open buy; a matched buy leaves
    the pool and cannot be matched again. The input is not mutated.
    """
    open_buys: Dict[str, List[TradeRecord]] = defaultdict(list)
    round_trips = 0

    for trade in sorted_trades:
        pool = open_buys[trade.symbol]
        if trade.side == "buy":
            pool.append(trade)
            continue
        for idx, buy in enumerate(pool):
            if (trade.executed_at - buy.executed_at) / _ONE_MS < window_ms:
                round_trips += 1
                del pool[idx]
                break

    return round_trips


def peak_trading_hours(trades: Sequence[TradeRecord], top: int = PEAK_HOURS) -> List[int]:
    """Most active UTC hours, busiest first; ties keep first-seen order."""
    counts = Counter(t.executed_at.astimezone(timezone.utc).hour for t in trades)
    return [hour for hour, _ in counts.most_common(top)]


def extract_features(
    trades: Sequence[TradeRecord],
    round_trip_window_ms: int = DEFAULT_ROUND_TRIP_WINDOW_MS,
) -> TradingPatternFeatures:
    """Compute timing, sizing and behavioural statistics for a window.

    Args:
        trades: Executions in any order.
        round_trip_window_ms: Max buy-to-sell gap counted as a round trip.

    Returns:
        Features for the window. An empty window yields all zeros.
    """
    if not trades:
        return TradingPatternFeatures()

    ordered = sorted(trades, key=lambda t: t.executed_at)
    n = len(ordered)

    times = np.array([t.executed_at_ms for t in ordered], dtype=float)
    gaps = np.diff(times)

    sizes = np.array([t.order_size for t in ordered], dtype=float)

    self_trades = sum(1 for t in ordered if t.is_self_trade)
    round_trips = count_round_trips(ordered, round_trip_window_ms)

    same_side = sum(
        1 for prev, cur in zip(ordered, ordered[1:]) if prev.side == cur.side
    )

    return TradingPatternFeatures(
        avg_time_between_trades_ms=_mean(gaps),
        std_time_between_trades_ms=_std(gaps),
        peak_trading_hours=peak_trading_hours(ordered),
        avg_order_size=_mean(sizes),
        std_order_size=_std(sizes),
        median_order_size=_median(sizes),
        self_trade_ratio=self_trades / n,
        round_trip_ratio=round_trips / n,
        consecutive_same_side_ratio=same_side / (n - 1) if n > 1 else 0.0,
    )
