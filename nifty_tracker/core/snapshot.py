"""Assemble a fully populated Quote Snapshot from whatever data is at hand."""
from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Mapping, Optional

import pandas as pd

from ..config import FALLBACK_QUOTE, Thresholds
from .models import IndicatorBundle, QuoteSnapshot
from .series import clean_bars, series_high, series_low

logger = logging.getLogger("snapshot")


def _first(*candidates: Any) -> Optional[float]:
    """First candidate that is a positive real number (not None/NaN/zero)."""
    for c in candidates:
        if c is None:
            continue
        try:
            v = float(c)
        except (TypeError, ValueError):
            continue
        if not pd.isna(v) and v > 0:
            return v
    return None


def _last(s: pd.Series, back: int = 1) -> Optional[float]:
    s = s.dropna()
    return float(s.iloc[-back]) if len(s) >= back else None


def fallback_snapshot(now: Optional[dt.datetime] = None) -> QuoteSnapshot:
    return QuoteSnapshot(
        **FALLBACK_QUOTE,
        last_updated=now or dt.datetime.now(dt.timezone.utc),
    )


def build_quote_snapshot(
    quote: Optional[Mapping[str, Any]],
    bars: pd.DataFrame,
    indicators: IndicatorBundle,
    thresholds: Thresholds,
    now: Optional[dt.datetime] = None,
) -> QuoteSnapshot:
    """
    Merge the live quote, the bar history and the computed indicators.
    Each field takes the first available of: quote value, value derived
    from the bars, fallback constant.
    """
    quote = quote or {}
    bars = clean_bars(bars)
    close = bars["close"] if "close" in bars else pd.Series(dtype="float64")
    opens = bars["open"] if "open" in bars else pd.Series(dtype="float64")
    highs = bars["high"] if "high" in bars else pd.Series(dtype="float64")
    lows = bars["low"] if "low" in bars else pd.Series(dtype="float64")

    fields = {
        "current_price": _first(quote.get("current_price"), _last(close)),
        "previous_close": _first(quote.get("previous_close"), _last(close, 2)),
        "open": _first(quote.get("open"), quote.get("regularMarketOpen"), _last(opens)),
        "high_52w": _first(series_high(highs), quote.get("high_52w"), quote.get("fiftyTwoWeekHigh")),
        "low_52w": _first(series_low(lows), quote.get("low_52w"), quote.get("fiftyTwoWeekLow")),
        "all_time_high": thresholds.all_time_high,
        "pe_ratio": thresholds.pe_ratio,
        "rsi": indicators.rsi,
        "dma_200": indicators.sma_long,
    }
    missing = [k for k, v in fields.items() if v is None]
    if missing:
        logger.info("Snapshot fields %s unavailable; using fallbacks", ", ".join(missing))
    for k in missing:
        fields[k] = FALLBACK_QUOTE[k]

    return QuoteSnapshot(
        **fields,
        last_updated=now or dt.datetime.now(dt.timezone.utc),
    )
