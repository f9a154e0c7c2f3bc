"""
One refresh cycle, and the scheduler that repeats it.

A cycle fetches the quote and the bar history concurrently, falls back to
cached (possibly stale) data and then to the built-in fallback snapshot
when the source is down, runs the engine synchronously and returns one
``Summary``.  The scheduler repeats cycles on a short period during market
hours and a long one otherwise; when a new cycle is started while an
older one is still running the older one is cancelled and only the newest
result is published.
"""
from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Any, Awaitable, Callable, Optional

import pandas as pd
import pytz

from .. import config
from ..config import Thresholds
from .cache import (
    BARS_KEY,
    EMA_KEY,
    QUOTE_KEY,
    SnapshotCache,
    bars_from_records,
    bars_to_records,
    ema_bundle_from_dict,
    ema_bundle_to_dict,
    quote_from_dict,
    quote_to_dict,
)
from .crossovers import detect_crossovers
from .indicators import compute_indicators
from .models import Summary
from .ohlc_fetcher import MarketDataSource, SourceUnavailable
from .rules import synthesize_signal
from .series import clean_bars
from .snapshot import build_quote_snapshot, fallback_snapshot
from .trend import resolve_trend

logger = logging.getLogger("refresh")


def _unwrap(result: Any, what: str) -> Any:
    """Return a gathered result, or None if the source was unavailable."""
    if isinstance(result, SourceUnavailable):
        logger.warning("%s unavailable: %s", what, result)
        return None
    if isinstance(result, BaseException):
        raise result
    return result


def summarize(
    quote, bars: pd.DataFrame, indicators, thresholds: Thresholds, source: str, now=None, stale: bool = False
) -> Summary:
    snapshot = build_quote_snapshot(quote, bars, indicators, thresholds, now=now)
    crossovers = detect_crossovers(indicators.ema_fast, indicators.ema_slow, bars)
    trend = resolve_trend(indicators.ema_fast, indicators.ema_slow, crossovers, now=now)
    return Summary(
        quote=snapshot,
        trend=trend,
        signal=synthesize_signal(snapshot, trend, thresholds),
        crossovers=crossovers,
        source=source,
        stale=stale,
    )


async def refresh_once(
    source: MarketDataSource,
    cache: Optional[SnapshotCache],
    thresholds: Thresholds,
    symbol: str = config.SYMBOL,
    lookback_days: int = config.HISTORY_LOOKBACK_DAYS,
    now: Optional[dt.datetime] = None,
) -> Summary:
    now = now or dt.datetime.now(dt.timezone.utc)
    quote_res, bars_res = await asyncio.gather(
        source.get_quote_snapshot(symbol),
        source.get_historical_bars(symbol, lookback_days),
        return_exceptions=True,
    )
    quote = _unwrap(quote_res, "Quote")
    live_bars = _unwrap(bars_res, "Historical bars")
    bars = clean_bars(live_bars) if live_bars is not None else None
    live_ok = bars is not None and not bars.empty

    if quote is not None or live_ok:
        stale = False
        if not live_ok:
            cached = cache.get(BARS_KEY) if cache else None
            if cached is not None:
                bars = bars_from_records(cached.data)
                stale = cached.is_stale
                if stale:
                    logger.info("Live quote with stale cached bars (written %d)", cached.timestamp)
            else:
                bars = clean_bars(pd.DataFrame())
        indicators = compute_indicators(bars, thresholds)
        summary = summarize(quote, bars, indicators, thresholds, "live", now=now, stale=stale)
        if cache is not None:
            if live_ok:
                cache.put(BARS_KEY, bars_to_records(bars))
                cache.put(EMA_KEY, ema_bundle_to_dict(indicators))
            cache.put(QUOTE_KEY, quote_to_dict(summary.quote))
        return summary

    # Source down entirely: resume from whatever was cached, stale or not.
    if cache is not None:
        cached_bars = cache.get(BARS_KEY)
        cached_ema = cache.get(EMA_KEY)
        cached_quote = cache.get(QUOTE_KEY)
        stale = any(e is not None and e.is_stale for e in (cached_bars, cached_ema, cached_quote))
        if cached_bars is not None or cached_ema is not None:
            bars = bars_from_records(cached_bars.data) if cached_bars else clean_bars(pd.DataFrame())
            indicators = (
                ema_bundle_from_dict(cached_ema.data) if cached_ema
                else compute_indicators(bars, thresholds)
            )
            prior = cached_quote.data if cached_quote else None
            logger.info("Serving cached data (bars=%s ema=%s quote=%s stale=%s)",
                        cached_bars is not None, cached_ema is not None, cached_quote is not None, stale)
            return summarize(prior, bars, indicators, thresholds, "cache", now=now, stale=stale)
        if cached_quote is not None:
            snapshot = quote_from_dict(cached_quote.data)
            return _summary_for_snapshot(snapshot, thresholds, "cache", now, stale=stale)

    logger.warning("No live or cached data; using fallback snapshot")
    return _summary_for_snapshot(fallback_snapshot(now), thresholds, "fallback", now)


def _summary_for_snapshot(snapshot, thresholds: Thresholds, source: str, now, stale: bool = False) -> Summary:
    empty = pd.Series([], dtype="float64")
    trend = resolve_trend(empty, empty, [], now=now)
    return Summary(
        quote=snapshot,
        trend=trend,
        signal=synthesize_signal(snapshot, trend, thresholds),
        crossovers=[],
        source=source,
        stale=stale,
    )


# ──────────────────────────────────────────────────────────────────────────────
# Scheduling
# ──────────────────────────────────────────────────────────────────────────────

def _local(now: dt.datetime, tz_name: str) -> dt.datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt.timezone.utc)
    return now.astimezone(pytz.timezone(tz_name))


def is_market_hours(now: dt.datetime, tz_name: str = config.MARKET_TIMEZONE) -> bool:
    """Weekdays between the open and the close (both minutes inclusive)."""
    local = _local(now, tz_name)
    if local.weekday() >= 5:
        return False
    minute = local.time().replace(second=0, microsecond=0)
    return config.MARKET_OPEN <= minute <= config.MARKET_CLOSE


def seconds_until_open(now: dt.datetime, tz_name: str = config.MARKET_TIMEZONE) -> float:
    tz = pytz.timezone(tz_name)
    local = _local(now, tz_name)
    day = local.date()
    for _ in range(8):
        if day.weekday() < 5:
            opening = tz.localize(dt.datetime.combine(day, config.MARKET_OPEN))
            if opening > local:
                return (opening - local).total_seconds()
        day += dt.timedelta(days=1)
    return float(config.IDLE_REFRESH_SECS)


def refresh_interval(now: dt.datetime) -> float:
    """Seconds to wait before the next cycle."""
    if is_market_hours(now):
        return float(config.MARKET_REFRESH_SECS)
    return max(1.0, min(float(config.IDLE_REFRESH_SECS), seconds_until_open(now)))


class RefreshScheduler:
    """
    Repeats ``run`` and hands each result to ``publish``.

    ``trigger()`` starts a cycle immediately, cancelling one already in
    flight.  A cycle publishes only if it is still the newest one when it
    finishes.
    """

    def __init__(
        self,
        run: Callable[[], Awaitable[Any]],
        publish: Callable[[Any], None],
        interval_for: Callable[[dt.datetime], float] = refresh_interval,
    ):
        self.run = run
        self.publish = publish
        self.interval_for = interval_for
        self.last_result: Any = None
        self._generation = 0
        self._current: Optional[asyncio.Task] = None
        self._wake: Optional[asyncio.Event] = None
        self._stopped = False

    async def _cycle(self, generation: int) -> Any:
        result = await self.run()
        if generation != self._generation:
            logger.debug("Discarding result of superseded refresh %d", generation)
            return result
        self.last_result = result
        self.publish(result)
        return result

    def trigger(self) -> asyncio.Task:
        if self._current is not None and not self._current.done():
            self._current.cancel()
        self._generation += 1
        self._current = asyncio.ensure_future(self._cycle(self._generation))
        self._current.add_done_callback(self._log_outcome)
        return self._current

    @staticmethod
    def _log_outcome(task: asyncio.Task) -> None:
        if task.cancelled():
            logger.debug("Refresh cancelled")
        elif task.exception() is not None:
            logger.error("Refresh failed: %r", task.exception())

    def refresh_now(self) -> None:
        """Wake the loop so the next cycle starts without waiting."""
        if self._wake is not None:
            self._wake.set()

    async def run_forever(self) -> None:
        self._wake = asyncio.Event()
        while not self._stopped:
            self._wake.clear()
            task = self.trigger()
            await asyncio.wait({task})

            if self._stopped:
                break
            delay = self.interval_for(dt.datetime.now(dt.timezone.utc))
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        self._stopped = True
        if self._current is not None and not self._current.done():
            self._current.cancel()
        self.refresh_now()
