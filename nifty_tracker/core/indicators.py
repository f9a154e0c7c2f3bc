"""Moving averages and RSI over a closing-price series, in pandas.

Scalar indicators return ``None`` when there is not enough history;
``compute_indicators`` is the only place that swaps in the configured
fallback values.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import pandas as pd

from ..config import FALLBACK_QUOTE, Thresholds
from .models import IndicatorBundle
from .series import check_period, closes, drop_nulls, window_mean

logger = logging.getLogger("indicators")


def simple_moving_average(prices: pd.Series, period: int) -> Optional[float]:
    """Average of the last ``period`` prices, or None if there are fewer."""
    return window_mean(prices, period)


def exponential_moving_average(prices: pd.Series, period: int) -> pd.Series:
    """
    SMA-seeded EMA.  The first value (at the ``period``-th price) is the
    mean of the first ``period`` prices; after that
    ``ema = price * k + prev * (1 - k)`` with ``k = 2 / (period + 1)``.

    Returns ``len(prices) - period + 1`` values indexed like the prices
    they belong to, or an empty Series when there are too few prices.
    """
    check_period(period)
    prices = drop_nulls(prices)
    if len(prices) < period:
        return pd.Series([], dtype="float64", index=prices.index[:0])

    k = 2.0 / (period + 1)
    values = prices.to_numpy(dtype=float)
    out = np.empty(len(values) - period + 1)
    out[0] = values[:period].mean()
    for i, price in enumerate(values[period:], start=1):
        # incremental form: a constant input stays exactly constant
        out[i] = out[i - 1] + k * (price - out[i - 1])
    return pd.Series(out, index=prices.index[period - 1:])


def relative_strength_index(prices: pd.Series, period: int = 14) -> Optional[float]:
    """
    RSI over the last ``period`` price changes.

    Gains and losses are both divided by the fixed ``period`` rather than
    by how many of each occurred.  A window with no losses (including a
    completely flat one) is 100.  Returns None when fewer than
    ``period + 1`` prices are available.
    """
    check_period(period)
    prices = drop_nulls(prices)
    if len(prices) < period + 1:
        return None
    delta = prices.diff().iloc[-period:]
    avg_gain = delta[delta > 0].sum() / period
    avg_loss = -delta[delta < 0].sum() / period
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return float(100 - (100 / (1 + rs)))


def compute_indicators(bars: pd.DataFrame, thresholds: Thresholds) -> IndicatorBundle:
    """
    Compute the long SMA, RSI and both EMA series for a bar frame.
    Short histories never raise: scalars fall back to the configured
    defaults and the EMA series come back empty.
    """
    close = closes(bars)

    sma_long = simple_moving_average(close, thresholds.sma_long)
    if sma_long is None:
        logger.info(
            "Only %d closes for SMA%d; using fallback %.2f",
            len(close), thresholds.sma_long, FALLBACK_QUOTE["dma_200"],
        )
        sma_long = FALLBACK_QUOTE["dma_200"]

    rsi = relative_strength_index(close, thresholds.rsi_period)
    if rsi is None:
        logger.info(
            "Only %d closes for RSI%d; using fallback %.2f",
            len(close), thresholds.rsi_period, FALLBACK_QUOTE["rsi"],
        )
        rsi = FALLBACK_QUOTE["rsi"]

    return IndicatorBundle(
        sma_long=float(sma_long),
        rsi=float(rsi),
        ema_fast=exponential_moving_average(close, thresholds.ema_fast),
        ema_slow=exponential_moving_average(close, thresholds.ema_slow),
    )
