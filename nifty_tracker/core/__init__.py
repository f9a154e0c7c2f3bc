"""Core of the Nifty tracker.

This package computes moving averages, RSI and EMA crossovers from a
daily bar history, resolves the current trend and turns it, together
with the live quote and the configured thresholds, into value, momentum
and combined investment signals.  The engine functions are side‑effect
free and deterministic when given the same inputs; fetching, caching and
scheduling live in ``ohlc_fetcher``, ``cache`` and ``refresh``.
"""

from .indicators import (
    simple_moving_average,
    exponential_moving_average,
    relative_strength_index,
    compute_indicators,
)
from .crossovers import align_emas, detect_crossovers
from .trend import resolve_trend
from .rules import (
    evaluate_value,
    evaluate_momentum,
    combine,
    synthesize_signal,
)
from .snapshot import build_quote_snapshot, fallback_snapshot
from .ohlc_fetcher import MarketDataSource, SourceUnavailable, YahooChartSource
from .cache import SnapshotCache
from .refresh import RefreshScheduler, refresh_once
from .models import (
    CrossoverEvent,
    CrossoverType,
    IndicatorBundle,
    QuoteSnapshot,
    Signal,
    SignalResult,
    Summary,
    Trend,
    TrendState,
)

__all__ = [
    "simple_moving_average",
    "exponential_moving_average",
    "relative_strength_index",
    "compute_indicators",
    "align_emas",
    "detect_crossovers",
    "resolve_trend",
    "evaluate_value",
    "evaluate_momentum",
    "combine",
    "synthesize_signal",
    "build_quote_snapshot",
    "fallback_snapshot",
    "MarketDataSource",
    "SourceUnavailable",
    "YahooChartSource",
    "SnapshotCache",
    "RefreshScheduler",
    "refresh_once",
    "CrossoverEvent",
    "CrossoverType",
    "IndicatorBundle",
    "QuoteSnapshot",
    "Signal",
    "SignalResult",
    "Summary",
    "Trend",
    "TrendState",
]
