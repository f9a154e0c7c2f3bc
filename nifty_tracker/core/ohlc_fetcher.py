# core/ohlc_fetcher.py
"""Fetch the live quote and daily OHLCV history for an index.

Data comes from Yahoo Finance's public chart endpoint (unauthenticated).
Anything that goes wrong on the way (transport error, non-2xx status,
payload without the expected shape) surfaces as ``SourceUnavailable``;
callers decide what to fall back to.

All timestamps are UTC (datetime64[ns, UTC]). Prices/volumes are floats.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol

import httpx
import pandas as pd

from .. import config
from .series import OHLCV_COLUMNS

# ──────────────────────────────────────────────────────────────────────────────
# Logging
# ──────────────────────────────────────────────────────────────────────────────

logger = logging.getLogger("ohlc_fetcher")
if not logger.handlers:
    _h = logging.StreamHandler()
    _h.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
    logger.addHandler(_h)
logger.setLevel(config.LOG_LEVEL)

_DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
}

# smallest Yahoo range covering the requested number of calendar days
_RANGES = [(31, "1mo"), (92, "3mo"), (183, "6mo"), (366, "1y"), (731, "2y"), (1827, "5y")]


class SourceUnavailable(RuntimeError):
    """The market-data source could not be reached or returned garbage."""


class MarketDataSource(Protocol):
    async def get_quote_snapshot(self, symbol: str) -> Dict[str, Optional[float]]:
        ...

    async def get_historical_bars(self, symbol: str, lookback_days: int) -> pd.DataFrame:
        ...


# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────

def lookback_to_range(lookback_days: int) -> str:
    if lookback_days < 1:
        raise ValueError("lookback_days must be >= 1")
    for max_days, name in _RANGES:
        if lookback_days <= max_days:
            return name
    return "max"


def _check_symbol(symbol: str) -> str:
    if not symbol or not symbol.strip():
        raise ValueError("symbol must be non-empty")
    return symbol.strip()


def _chart_result(payload: Any) -> Dict[str, Any]:
    try:
        chart = payload["chart"]
        if chart.get("error"):
            raise SourceUnavailable(f"Yahoo chart error: {chart['error']}")
        result = chart["result"][0]
    except (KeyError, IndexError, TypeError, AttributeError) as e:
        raise SourceUnavailable(f"Malformed chart payload: {e!r}") from e
    if not isinstance(result, dict):
        raise SourceUnavailable("Malformed chart payload: result is not an object")
    return result


def parse_quote(payload: Any) -> Dict[str, Optional[float]]:
    """Map the chart ``meta`` block onto quote snapshot field names."""
    meta = _chart_result(payload).get("meta")
    if not isinstance(meta, dict):
        raise SourceUnavailable("Malformed chart payload: missing meta")
    return {
        "current_price": meta.get("regularMarketPrice"),
        "previous_close": meta.get("previousClose", meta.get("chartPreviousClose")),
        "open": meta.get("regularMarketOpen"),
        "high_52w": meta.get("fiftyTwoWeekHigh"),
        "low_52w": meta.get("fiftyTwoWeekLow"),
    }


def parse_bars(payload: Any) -> pd.DataFrame:
    """
    Build an OHLCV frame from the chart ``timestamp`` and
    ``indicators.quote[0]`` arrays.  Null entries are kept as NaN; bars
    without a close are filtered later by the engine.
    """
    result = _chart_result(payload)
    timestamps = result.get("timestamp") or []
    try:
        quote = result["indicators"]["quote"][0]
    except (KeyError, IndexError, TypeError) as e:
        raise SourceUnavailable(f"Malformed chart payload: {e!r}") from e
    if not timestamps:
        return pd.DataFrame(columns=OHLCV_COLUMNS)

    cols = {}
    for col in OHLCV_COLUMNS:
        values = quote.get(col) or [None] * len(timestamps)
        if len(values) != len(timestamps):
            raise SourceUnavailable(f"Chart column {col!r} has {len(values)} values for {len(timestamps)} timestamps")
        cols[col] = values
    df = pd.DataFrame(cols, index=pd.to_datetime(timestamps, unit="s", utc=True))
    df.index.name = "date"
    return df.astype(float)


# ──────────────────────────────────────────────────────────────────────────────
# Yahoo chart source
# ──────────────────────────────────────────────────────────────────────────────

class YahooChartSource:
    def __init__(
        self,
        base_url: str = config.YAHOO_BASE_URL,
        timeout: float = config.YAHOO_TIMEOUT_SECS,
        max_retries: int = config.YAHOO_MAX_RETRIES,
        backoff_base: float = config.YAHOO_BACKOFF_BASE_SECS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base
        self._client = client

    async def _get_json(self, client: httpx.AsyncClient, symbol: str, params: dict) -> Any:
        url = f"{self.base_url}/v8/finance/chart/{symbol}"
        for attempt in range(1, self.max_retries + 1):
            try:
                resp = await client.get(url, params=params, headers=_DEFAULT_HEADERS, timeout=self.timeout)
            except httpx.HTTPError as e:
                raise SourceUnavailable(f"Yahoo request failed: {e!r}") from e
            status = resp.status_code

            if status == 429 or 500 <= status < 600:
                if attempt == self.max_retries:
                    raise SourceUnavailable(f"Yahoo error {status}: rate limited/temporary error")
                delay = self.backoff_base * (2 ** (attempt - 1))
                logger.warning("Yahoo %s on attempt %s (backoff %.2fs)", status, attempt, delay)
                await asyncio.sleep(delay)
                continue

            if status >= 400:
                raise SourceUnavailable(f"Yahoo error {status}: {resp.text[:200]}")

            try:
                return resp.json()
            except ValueError as e:
                raise SourceUnavailable("Yahoo returned a non-JSON body") from e

        raise SourceUnavailable("Yahoo request failed after retries.")

    async def _chart(self, symbol: str, params: dict) -> Any:
        if self._client is not None:
            return await self._get_json(self._client, symbol, params)
        async with httpx.AsyncClient() as client:
            return await self._get_json(client, symbol, params)

    async def get_quote_snapshot(self, symbol: str) -> Dict[str, Optional[float]]:
        symbol = _check_symbol(symbol)
        payload = await self._chart(symbol, {"interval": "1d", "range": "5d"})
        quote = parse_quote(payload)
        logger.debug("Quote %s: %s", symbol, quote)
        return quote

    async def get_historical_bars(self, symbol: str, lookback_days: int) -> pd.DataFrame:
        symbol = _check_symbol(symbol)
        rng = lookback_to_range(lookback_days)
        payload = await self._chart(symbol, {"interval": "1d", "range": rng})
        df = parse_bars(payload)
        if not df.empty:
            cutoff = df.index.max() - pd.Timedelta(days=lookback_days)
            df = df.loc[df.index > cutoff]
        logger.debug("Fetched %d daily bars for %s (range=%s)", len(df), symbol, rng)
        return df
