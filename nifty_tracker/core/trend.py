"""Resolve the current trend from the latest EMA values and crossovers."""
from __future__ import annotations

import datetime as dt
from typing import Optional, Sequence

import pandas as pd

from .models import CrossoverEvent, Trend, TrendState


def _to_utc_ts(ts: dt.datetime | pd.Timestamp) -> pd.Timestamp:
    t = pd.Timestamp(ts)
    return t.tz_localize("UTC") if t.tz is None else t.tz_convert("UTC")


def days_between(start: dt.datetime | pd.Timestamp, end: dt.datetime | pd.Timestamp) -> int:
    """Whole days from ``start`` to ``end``, floored."""
    return (_to_utc_ts(end) - _to_utc_ts(start)).days


def resolve_trend(
    ema_fast: pd.Series,
    ema_slow: pd.Series,
    crossovers: Sequence[CrossoverEvent],
    now: Optional[dt.datetime] = None,
) -> TrendState:
    """
    BULLISH when the latest fast EMA is strictly above the latest slow
    EMA, BEARISH otherwise (equal values are BEARISH), UNKNOWN when either
    series is empty.
    """
    last_cross = crossovers[-1] if crossovers else None
    days = None
    if last_cross is not None:
        days = days_between(last_cross.date, now or dt.datetime.now(dt.timezone.utc))

    fast = ema_fast.dropna()
    slow = ema_slow.dropna()
    if fast.empty or slow.empty:
        return TrendState(
            trend=Trend.UNKNOWN,
            last_crossover=last_cross,
            days_since_cross=days,
        )

    last_fast = float(fast.iloc[-1])
    last_slow = float(slow.iloc[-1])
    return TrendState(
        trend=Trend.BULLISH if last_fast > last_slow else Trend.BEARISH,
        fast_ema=last_fast,
        slow_ema=last_slow,
        last_crossover=last_cross,
        days_since_cross=days,
    )
