"""Process-wide configuration for the Nifty tracker.

Values are read from the environment once at import time.  Signal
thresholds live in the frozen :class:`Thresholds` dataclass so the engine
can be handed an explicit, read-only copy on every call.
"""
from __future__ import annotations

import datetime as dt
import os
from dataclasses import dataclass, fields
from typing import Optional

# ──────────────────────────────────────────────────────────────────────────────
# Env helpers (strip quotes/whitespace so .env "KEY=value " doesn't break things)
# ──────────────────────────────────────────────────────────────────────────────

def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v is None:
        return default
    v = v.strip()
    if (v.startswith('"') and v.endswith('"')) or (v.startswith("'") and v.endswith("'")):
        v = v[1:-1].strip()
    return v or default


def _env_int(name: str, default: int) -> int:
    return int(_env(name, str(default)) or default)


def _env_float(name: str, default: float) -> float:
    return float(_env(name, str(default)) or default)


# ──────────────────────────────────────────────────────────────────────────────
# Data source / cache / publishing
# ──────────────────────────────────────────────────────────────────────────────

SYMBOL = _env("NIFTY_SYMBOL", "^NSEI") or "^NSEI"
YAHOO_BASE_URL = (_env("YAHOO_BASE_URL", "https://query1.finance.yahoo.com") or "").rstrip("/")
YAHOO_TIMEOUT_SECS = _env_float("YAHOO_TIMEOUT_SECS", 10.0)
YAHOO_MAX_RETRIES = _env_int("YAHOO_MAX_RETRIES", 3)
YAHOO_BACKOFF_BASE_SECS = _env_float("YAHOO_BACKOFF_BASE_SECS", 1.5)
HISTORY_LOOKBACK_DAYS = _env_int("HISTORY_LOOKBACK_DAYS", 365)

CACHE_DATABASE_URL = _env("CACHE_DATABASE_URL", "sqlite:///nifty_cache.db")
CACHE_VERSION = _env("CACHE_VERSION", "v2.0") or "v2.0"
QUOTE_MAX_AGE = dt.timedelta(seconds=_env_int("QUOTE_MAX_AGE_SECS", 600))
BARS_MAX_AGE = dt.timedelta(seconds=_env_int("BARS_MAX_AGE_SECS", 3600))
EMA_MAX_AGE = dt.timedelta(seconds=_env_int("EMA_MAX_AGE_SECS", 3600))

MARKET_REFRESH_SECS = _env_int("MARKET_REFRESH_SECS", 30)
IDLE_REFRESH_SECS = _env_int("IDLE_REFRESH_SECS", 300)
MARKET_TIMEZONE = _env("MARKET_TIMEZONE", "Asia/Kolkata") or "Asia/Kolkata"
MARKET_OPEN = dt.time(9, 15)
MARKET_CLOSE = dt.time(15, 30)

MQTT_BROKER = _env("MQTT_BROKER", "localhost") or "localhost"
MQTT_PORT = _env_int("MQTT_PORT", 1883)

LOG_LEVEL = (_env("NIFTY_LOG_LEVEL", "INFO") or "INFO").upper()

# Shown whenever nothing better is available; PE and the all-time high are
# not published by the quote source at all.
FALLBACK_QUOTE = {
    "current_price": 24741.00,
    "previous_close": 24734.30,
    "open": 24818.85,
    "high_52w": 26277.35,
    "low_52w": 21743.65,
    "all_time_high": 26277.35,
    "pe_ratio": 21.73,
    "rsi": 53.21,
    "dma_200": 24631.0,
}


# ──────────────────────────────────────────────────────────────────────────────
# Thresholds
# ──────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Thresholds:
    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0
    pe_attractive: float = 21.0
    pe_expensive: float = 25.0
    correction_threshold: float = 10.0
    all_time_high: float = 26277.35
    pe_ratio: float = FALLBACK_QUOTE["pe_ratio"]
    ema_fast: int = 20
    ema_slow: int = 50
    rsi_period: int = 14
    sma_long: int = 200
    fresh_cross_days: int = 10
    recent_cross_days: int = 30

    def __post_init__(self) -> None:
        for name in ("ema_fast", "ema_slow", "rsi_period", "sma_long"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1")
        if self.ema_fast >= self.ema_slow:
            raise ValueError("ema_fast must be shorter than ema_slow")
        if self.all_time_high <= 0:
            raise ValueError("all_time_high must be positive")
        if self.fresh_cross_days > self.recent_cross_days:
            raise ValueError("fresh_cross_days must not exceed recent_cross_days")

    @classmethod
    def from_env(cls) -> "Thresholds":
        """Build thresholds from defaults overlaid with upper-cased env vars."""
        overrides = {}
        for f in fields(cls):
            raw = _env(f.name.upper())
            if raw is None:
                continue
            overrides[f.name] = int(raw) if f.type in (int, "int") else float(raw)
        return cls(**overrides)
