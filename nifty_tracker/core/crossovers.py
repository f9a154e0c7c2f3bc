"""
Detect fast/slow EMA crossovers.

The slow EMA starts ``slow - fast`` bars later than the fast one, so the
two series are joined on their date index before any comparison.  A
step from equal-or-below to strictly above is bullish, from
equal-or-above to strictly below is bearish; touching the other line
without passing through it is not an event.
"""
from __future__ import annotations

from typing import List

import pandas as pd

from .models import CrossoverEvent, CrossoverType


def _cross_up(fast: pd.Series, slow: pd.Series) -> pd.Series:
    """Return True where fast moves from <= slow to > slow."""
    return (fast.shift(1) <= slow.shift(1)) & (fast > slow)


def _cross_down(fast: pd.Series, slow: pd.Series) -> pd.Series:
    """Return True where fast moves from >= slow to < slow."""
    return (fast.shift(1) >= slow.shift(1)) & (fast < slow)


def align_emas(ema_fast: pd.Series, ema_slow: pd.Series) -> pd.DataFrame:
    """Join both EMA series on the dates they share, ascending."""
    aligned = pd.concat(
        [ema_fast.rename("fast"), ema_slow.rename("slow")], axis=1, join="inner"
    )
    return aligned.dropna().sort_index()


def detect_crossovers(
    ema_fast: pd.Series, ema_slow: pd.Series, bars: pd.DataFrame
) -> List[CrossoverEvent]:
    """
    Return crossover events ordered by date.  ``bars`` supplies the close
    price recorded on each event; it must share the EMA series' index.
    """
    aligned = align_emas(ema_fast, ema_slow)
    if len(aligned) < 2:
        return []

    up = _cross_up(aligned["fast"], aligned["slow"])
    down = _cross_down(aligned["fast"], aligned["slow"])
    close = bars["close"] if "close" in bars else pd.Series(dtype="float64")

    events: List[CrossoverEvent] = []
    for ts, row in aligned[up | down].iterrows():
        price = close.get(ts)
        events.append(
            CrossoverEvent(
                date=ts,
                type=CrossoverType.BULLISH_CROSS if up.loc[ts] else CrossoverType.BEARISH_CROSS,
                price=float("nan") if price is None else float(price),
                fast_ema=float(row["fast"]),
                slow_ema=float(row["slow"]),
            )
        )
    return events
