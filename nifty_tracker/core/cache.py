"""
Persistent cache for the last computed quote, bar history and EMAs.

Each entry is stored as ``{data, timestamp (epoch ms), version}`` under a
logical name.  Entries written under a different schema version are
never returned.  Entries older than the caller's freshness window are
returned flagged ``is_stale`` so a caller can prefer recomputation but
still fall back to them when nothing fresher exists.
"""
from __future__ import annotations

import dataclasses
import datetime as dt
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import pandas as pd
from sqlalchemy import BigInteger, Column, String, Text, create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base

from .. import config
from .models import (
    CrossoverEvent,
    IndicatorBundle,
    QuoteSnapshot,
    SignalResult,
    StrategySignal,
    Summary,
    TrendState,
)
from .series import OHLCV_COLUMNS

logger = logging.getLogger("cache")

QUOTE_KEY = "quote"
BARS_KEY = "bars"
EMA_KEY = "ema"

MAX_AGE = {
    QUOTE_KEY: config.QUOTE_MAX_AGE,
    BARS_KEY: config.BARS_MAX_AGE,
    EMA_KEY: config.EMA_MAX_AGE,
}

Base = declarative_base()


class CacheEntry(Base):
    __tablename__ = "cache_entries"
    name = Column(String, primary_key=True)
    payload = Column(Text, nullable=False)
    timestamp = Column(BigInteger, nullable=False)  # epoch millis
    version = Column(String, nullable=False)


@dataclass(frozen=True)
class CachedEntry:
    data: Any
    timestamp: int
    version: str
    is_stale: bool


def _now_ms() -> int:
    return int(time.time() * 1000)


class SnapshotCache:
    def __init__(
        self,
        url_or_engine: str | Engine = config.CACHE_DATABASE_URL,
        version: str = config.CACHE_VERSION,
        clock: Callable[[], int] = _now_ms,
    ):
        if isinstance(url_or_engine, Engine):
            self.engine = url_or_engine
        else:
            self.engine = create_engine(url_or_engine, future=True)
        self.version = version
        self.clock = clock
        Base.metadata.create_all(self.engine)

    def put(self, name: str, data: Any) -> CachedEntry:
        ts = self.clock()
        payload = json.dumps(data)
        with Session(self.engine) as session:
            session.merge(CacheEntry(name=name, payload=payload, timestamp=ts, version=self.version))
            session.commit()
        return CachedEntry(data=data, timestamp=ts, version=self.version, is_stale=False)

    def get(self, name: str, max_age: Optional[dt.timedelta] = None) -> Optional[CachedEntry]:
        """
        Return the entry for ``name`` or None when absent or written under
        another schema version.  ``max_age`` defaults to the window
        configured for known names; unknown names never go stale.
        """
        with Session(self.engine) as session:
            row = session.execute(
                select(CacheEntry).where(CacheEntry.name == name)
            ).scalar_one_or_none()
            if row is None:
                return None
            if row.version != self.version:
                logger.info("Ignoring cache entry %r with version %s (want %s)", name, row.version, self.version)
                return None
            payload, ts, version = row.payload, row.timestamp, row.version

        window = max_age if max_age is not None else MAX_AGE.get(name)
        age_ms = self.clock() - ts
        stale = window is not None and age_ms > window.total_seconds() * 1000
        return CachedEntry(data=json.loads(payload), timestamp=ts, version=version, is_stale=stale)


# ──────────────────────────────────────────────────────────────────────────────
# Codecs
# ──────────────────────────────────────────────────────────────────────────────

def quote_to_dict(quote: QuoteSnapshot) -> Dict[str, Any]:
    d = dataclasses.asdict(quote)
    d["last_updated"] = quote.last_updated.isoformat()
    return d


def quote_from_dict(d: Dict[str, Any]) -> QuoteSnapshot:
    d = dict(d)
    d["last_updated"] = dt.datetime.fromisoformat(d["last_updated"])
    return QuoteSnapshot(**d)


def _num(v: Any) -> Optional[float]:
    return None if pd.isna(v) else float(v)


def bars_to_records(bars: pd.DataFrame) -> List[Dict[str, Any]]:
    return [
        {"date": pd.Timestamp(ts).isoformat(), **{c: _num(row[c]) for c in OHLCV_COLUMNS}}
        for ts, row in bars.iterrows()
    ]


def bars_from_records(records: List[Dict[str, Any]]) -> pd.DataFrame:
    if not records:
        return pd.DataFrame(columns=OHLCV_COLUMNS)
    df = pd.DataFrame.from_records(records)
    df["date"] = pd.to_datetime(df["date"], utc=True)
    df = df.set_index("date")
    return df[OHLCV_COLUMNS].astype(float)


def _series_to_pairs(s: pd.Series) -> List[List[Any]]:
    return [[pd.Timestamp(ts).isoformat(), float(v)] for ts, v in s.items()]


def _series_from_pairs(pairs: List[List[Any]]) -> pd.Series:
    if not pairs:
        return pd.Series([], dtype="float64", index=pd.DatetimeIndex([], tz="UTC"))
    idx = pd.to_datetime([p[0] for p in pairs], utc=True)
    return pd.Series([float(p[1]) for p in pairs], index=idx)


def ema_bundle_to_dict(bundle: IndicatorBundle) -> Dict[str, Any]:
    return {
        "sma_long": bundle.sma_long,
        "rsi": bundle.rsi,
        "ema_fast": _series_to_pairs(bundle.ema_fast),
        "ema_slow": _series_to_pairs(bundle.ema_slow),
    }


def ema_bundle_from_dict(d: Dict[str, Any]) -> IndicatorBundle:
    return IndicatorBundle(
        sma_long=float(d["sma_long"]),
        rsi=float(d["rsi"]),
        ema_fast=_series_from_pairs(d["ema_fast"]),
        ema_slow=_series_from_pairs(d["ema_slow"]),
    )


def crossover_to_dict(event: CrossoverEvent) -> Dict[str, Any]:
    return {
        "date": pd.Timestamp(event.date).isoformat(),
        "type": event.type.value,
        "price": _num(event.price),
        "fast_ema": event.fast_ema,
        "slow_ema": event.slow_ema,
    }


def trend_to_dict(trend: TrendState) -> Dict[str, Any]:
    return {
        "trend": trend.trend.value,
        "fast_ema": trend.fast_ema,
        "slow_ema": trend.slow_ema,
        "last_crossover": crossover_to_dict(trend.last_crossover) if trend.last_crossover else None,
        "days_since_cross": trend.days_since_cross,
    }


def signal_to_dict(result: SignalResult) -> Dict[str, Any]:
    def strategy(s: StrategySignal) -> Dict[str, Any]:
        d = {"signal": s.signal.value, "conditions": dict(s.conditions), "description": s.description}
        if s.trend is not None:
            d["trend"] = s.trend.value
        return d

    return {
        "value": strategy(result.value),
        "momentum": strategy(result.momentum),
        "combined": {"signal": result.combined.signal.value, "description": result.combined.description},
    }


def summary_to_dict(summary: Summary) -> Dict[str, Any]:
    """JSON-ready form of a refresh result, as published and served."""
    q = summary.quote
    return {
        "quote": {
            **quote_to_dict(q),
            "change": q.change,
            "change_pct": q.change_pct,
            "correction_pct": q.correction_pct,
            "upside_pct": q.upside_pct,
            "above_dma": q.above_dma,
        },
        "trend": trend_to_dict(summary.trend),
        "signal": signal_to_dict(summary.signal),
        "crossovers": [crossover_to_dict(c) for c in summary.crossovers],
        "source": summary.source,
        "stale": summary.stale,
    }
