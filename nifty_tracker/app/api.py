"""
FastAPI application exposing the tracker's bar history, indicators,
crossovers, trend and investment signal.  Every request recomputes from
the market-data source; the summary endpoints fall back to cached or
built-in data instead of failing when the source is down.
"""
from __future__ import annotations
import logging
import datetime as dt
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

import pandas as pd
from .. import config
from ..config import Thresholds
from ..core import (
    MarketDataSource,
    SnapshotCache,
    SourceUnavailable,
    YahooChartSource,
    compute_indicators,
    detect_crossovers,
    refresh_once,
    resolve_trend,
)
from ..core.cache import crossover_to_dict, signal_to_dict, summary_to_dict, trend_to_dict
from ..core.series import clean_bars

logger = logging.getLogger("tracker_api")
app = FastAPI(title="Nifty Tracker API")


# ----------------------------------------------------------------------
# Models
# ----------------------------------------------------------------------
class OHLCResponse(BaseModel):
    date: dt.datetime
    open: Optional[float]
    high: Optional[float]
    low: Optional[float]
    close: float
    volume: Optional[float]


class IndicatorsResponse(BaseModel):
    sma_long: float = Field(..., description="Long-window SMA (DMA baseline)")
    rsi: float
    ema_fast: Dict[str, float] = Field(..., description="Fast EMA keyed by ISO bar date")
    ema_slow: Dict[str, float] = Field(..., description="Slow EMA keyed by ISO bar date")


class CrossoverResponse(BaseModel):
    date: dt.datetime
    type: str
    price: Optional[float]
    fast_ema: float
    slow_ema: float


class TrendResponse(BaseModel):
    trend: str
    fast_ema: Optional[float]
    slow_ema: Optional[float]
    last_crossover: Optional[CrossoverResponse]
    days_since_cross: Optional[int]


# ----------------------------------------------------------------------
# Dependencies
# ----------------------------------------------------------------------
def get_source() -> MarketDataSource:
    return YahooChartSource()


@lru_cache(maxsize=1)
def get_cache() -> SnapshotCache:
    return SnapshotCache()


def get_thresholds() -> Thresholds:
    return Thresholds.from_env()


async def _load_bars(source: MarketDataSource, symbol: str, lookback_days: int) -> pd.DataFrame:
    try:
        bars = await source.get_historical_bars(symbol, lookback_days)
    except SourceUnavailable as e:
        raise HTTPException(status_code=502, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    bars = clean_bars(bars)
    if bars.empty:
        raise HTTPException(404, detail="No bars returned for the given symbol/lookback")
    return bars


def _series_dict(s: pd.Series) -> Dict[str, float]:
    return {pd.Timestamp(ts).isoformat(): float(v) for ts, v in s.items()}


# ----------------------------------------------------------------------
# Endpoints
# ----------------------------------------------------------------------
@app.get("/data/ohlc", response_model=List[OHLCResponse])
async def get_ohlc(
    symbol: str = Query(config.SYMBOL, description="Index symbol, e.g. ^NSEI"),
    lookback_days: int = Query(config.HISTORY_LOOKBACK_DAYS, ge=1, le=1827),
    source: MarketDataSource = Depends(get_source),
) -> List[OHLCResponse]:
    """Return cleaned daily OHLCV bars."""
    df = await _load_bars(source, symbol, lookback_days)
    return [
        OHLCResponse(
            date=idx.to_pydatetime(),
            open=None if pd.isna(row.open) else row.open,
            high=None if pd.isna(row.high) else row.high,
            low=None if pd.isna(row.low) else row.low,
            close=row.close,
            volume=None if pd.isna(row.volume) else row.volume,
        )
        for idx, row in df.iterrows()
    ]


@app.get("/indicators", response_model=IndicatorsResponse)
async def get_indicators(
    symbol: str = Query(config.SYMBOL),
    lookback_days: int = Query(config.HISTORY_LOOKBACK_DAYS, ge=1, le=1827),
    source: MarketDataSource = Depends(get_source),
    thresholds: Thresholds = Depends(get_thresholds),
):
    df = await _load_bars(source, symbol, lookback_days)
    bundle = compute_indicators(df, thresholds)
    return IndicatorsResponse(
        sma_long=bundle.sma_long,
        rsi=bundle.rsi,
        ema_fast=_series_dict(bundle.ema_fast),
        ema_slow=_series_dict(bundle.ema_slow),
    )


@app.get("/crossovers", response_model=List[CrossoverResponse])
async def get_crossovers(
    symbol: str = Query(config.SYMBOL),
    lookback_days: int = Query(config.HISTORY_LOOKBACK_DAYS, ge=1, le=1827),
    source: MarketDataSource = Depends(get_source),
    thresholds: Thresholds = Depends(get_thresholds),
):
    df = await _load_bars(source, symbol, lookback_days)
    bundle = compute_indicators(df, thresholds)
    events = detect_crossovers(bundle.ema_fast, bundle.ema_slow, df)
    return [crossover_to_dict(e) for e in events]


@app.get("/trend", response_model=TrendResponse)
async def get_trend(
    symbol: str = Query(config.SYMBOL),
    lookback_days: int = Query(config.HISTORY_LOOKBACK_DAYS, ge=1, le=1827),
    source: MarketDataSource = Depends(get_source),
    thresholds: Thresholds = Depends(get_thresholds),
):
    df = await _load_bars(source, symbol, lookback_days)
    bundle = compute_indicators(df, thresholds)
    events = detect_crossovers(bundle.ema_fast, bundle.ema_slow, df)
    return trend_to_dict(resolve_trend(bundle.ema_fast, bundle.ema_slow, events))


@app.get("/summary")
async def get_summary(
    symbol: str = Query(config.SYMBOL),
    source: MarketDataSource = Depends(get_source),
    cache: SnapshotCache = Depends(get_cache),
    thresholds: Thresholds = Depends(get_thresholds),
) -> Dict[str, Any]:
    """
    Quote snapshot, trend, signal and crossovers in one payload.  Never
    fails because the source is down: ``source`` in the response says
    whether the data is live, cached or the built-in fallback.
    """
    try:
        summary = await refresh_once(source, cache, thresholds, symbol=symbol)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return summary_to_dict(summary)


@app.get("/signal")
async def get_signal(
    symbol: str = Query(config.SYMBOL),
    source: MarketDataSource = Depends(get_source),
    cache: SnapshotCache = Depends(get_cache),
    thresholds: Thresholds = Depends(get_thresholds),
) -> Dict[str, Any]:
    try:
        summary = await refresh_once(source, cache, thresholds, symbol=symbol)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return signal_to_dict(summary.signal)
