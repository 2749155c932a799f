"""
Trend and volatility analysis over sampled rate history.
"""

from collections import defaultdict
from datetime import datetime, timedelta
from statistics import pstdev
from typing import Iterable, Optional

from src.alerts.models import RateHistoryEntry, TrendDirection, TrendEntry

# Percent change beyond which a pair counts as rising or falling
TREND_THRESHOLD_PCT = 1.0


def classify_trend(percent_change: float) -> TrendDirection:
    """Classify a percent change as rising, falling or stable."""
    if percent_change > TREND_THRESHOLD_PCT:
        return TrendDirection.RISING
    elif percent_change < -TREND_THRESHOLD_PCT:
        return TrendDirection.FALLING
    return TrendDirection.STABLE


def analyze_trends(
    history: Iterable[RateHistoryEntry],
    days: int,
    now: Optional[datetime] = None,
) -> dict[str, TrendEntry]:
    """
    Compute per-pair rate movement over the last `days` days.

    Volatility is the population standard deviation of the rate levels in
    the window. Pairs with fewer than two samples are left out.

    Args:
        history: Rate samples in any order
        days: Window length in days
        now: End of the window (defaults to the current time)

    Returns:
        Mapping of pair key (e.g. "USD/EUR") to TrendEntry
    """
    now = now or datetime.now()
    cutoff = now - timedelta(days=days)

    by_pair: dict[str, list[RateHistoryEntry]] = defaultdict(list)
    for entry in history:
        if cutoff <= entry.timestamp <= now:
            by_pair[entry.pair].append(entry)

    trends = {}
    for pair, entries in by_pair.items():
        if len(entries) < 2:
            continue

        entries.sort(key=lambda e: e.timestamp)
        rates = [e.rate for e in entries]
        first_rate = rates[0]
        last_rate = rates[-1]
        change = (last_rate - first_rate) / first_rate * 100

        trends[pair] = TrendEntry(
            start_rate=first_rate,
            end_rate=last_rate,
            percent_change=change,
            volatility=pstdev(rates),
            data_points=len(rates),
            trend=classify_trend(change),
        )

    return trends
