"""Small numeric helpers shared by the indicator functions."""
from __future__ import annotations

import logging
from typing import Optional, Sequence, Union

import pandas as pd

logger = logging.getLogger("series")

OHLCV_COLUMNS = ["open", "high", "low", "close", "volume"]

Values = Union[pd.Series, Sequence[Optional[float]]]


def check_period(period: int) -> None:
    if period < 1:
        raise ValueError(f"period must be >= 1, got {period}")


def drop_nulls(values: Values) -> pd.Series:
    """Return ``values`` as a float Series with missing entries removed."""
    s = values if isinstance(values, pd.Series) else pd.Series(list(values), dtype="float64")
    return s.dropna().astype(float)


def clean_bars(bars: pd.DataFrame) -> pd.DataFrame:
    """
    Drop bars without a close price, collapse duplicate dates (last one
    wins) and sort ascending.  Bars with a bad close are filtered rather
    than failing the whole computation.
    """
    if bars.empty:
        return pd.DataFrame(columns=OHLCV_COLUMNS)
    out = bars.dropna(subset=["close"])
    out = out[~out.index.duplicated(keep="last")].sort_index()
    dropped = len(bars) - len(out)
    if dropped:
        logger.debug("Dropped %d malformed/duplicate bars", dropped)
    return out


def closes(bars: pd.DataFrame) -> pd.Series:
    return clean_bars(bars)["close"].astype(float)


def window_sum(values: Values, period: int) -> Optional[float]:
    check_period(period)
    s = drop_nulls(values)
    if len(s) < period:
        return None
    return float(s.iloc[-period:].sum())


def window_mean(values: Values, period: int) -> Optional[float]:
    total = window_sum(values, period)
    return None if total is None else total / period


def series_high(values: Values) -> Optional[float]:
    s = drop_nulls(values)
    return None if s.empty else float(s.max())


def series_low(values: Values) -> Optional[float]:
    s = drop_nulls(values)
    return None if s.empty else float(s.min())
