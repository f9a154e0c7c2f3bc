"""Value types produced by the engine.

Every type here is immutable and built fresh on each refresh; nothing is
stored on the engine itself.
"""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

import pandas as pd


class CrossoverType(str, Enum):
    BULLISH_CROSS = "BULLISH_CROSS"
    BEARISH_CROSS = "BEARISH_CROSS"


class Trend(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    UNKNOWN = "UNKNOWN"


class Signal(str, Enum):
    STRONG_BUY = "STRONG BUY"
    BUY = "BUY"
    WAIT = "WAIT"
    AVOID = "AVOID"


@dataclass(frozen=True)
class CrossoverEvent:
    date: pd.Timestamp
    type: CrossoverType
    price: float
    fast_ema: float
    slow_ema: float


@dataclass(frozen=True)
class TrendState:
    trend: Trend
    fast_ema: Optional[float] = None
    slow_ema: Optional[float] = None
    last_crossover: Optional[CrossoverEvent] = None
    days_since_cross: Optional[int] = None


@dataclass(frozen=True)
class IndicatorBundle:
    """Output of ``compute_indicators``.  EMA series are indexed by bar date."""
    sma_long: float
    rsi: float
    ema_fast: pd.Series
    ema_slow: pd.Series


@dataclass(frozen=True)
class QuoteSnapshot:
    current_price: float
    previous_close: float
    open: float
    high_52w: float
    low_52w: float
    all_time_high: float
    pe_ratio: float
    rsi: float
    dma_200: float
    last_updated: dt.datetime

    @property
    def change(self) -> float:
        return self.current_price - self.previous_close

    @property
    def change_pct(self) -> float:
        if not self.previous_close:
            return 0.0
        return self.change / self.previous_close * 100

    @property
    def correction_pct(self) -> float:
        """Signed distance from the all-time high; negative below the peak."""
        return (self.current_price - self.all_time_high) / self.all_time_high * 100

    @property
    def upside_pct(self) -> float:
        if not self.current_price:
            return 0.0
        return (self.all_time_high - self.current_price) / self.current_price * 100

    @property
    def above_dma(self) -> bool:
        return self.current_price > self.dma_200


@dataclass(frozen=True)
class StrategySignal:
    signal: Signal
    conditions: Dict[str, bool]
    description: str
    trend: Optional[Trend] = None


@dataclass(frozen=True)
class CombinedSignal:
    signal: Signal
    description: str


@dataclass(frozen=True)
class SignalResult:
    value: StrategySignal
    momentum: StrategySignal
    combined: CombinedSignal


@dataclass(frozen=True)
class Summary:
    """Everything one refresh cycle publishes, in one value."""
    quote: QuoteSnapshot
    trend: TrendState
    signal: SignalResult
    crossovers: list = field(default_factory=list)
    source: str = "live"
    # some input came from a cache entry older than its freshness window
    stale: bool = False
