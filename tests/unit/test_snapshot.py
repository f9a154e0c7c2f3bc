import datetime as dt

import pandas as pd

from nifty_tracker.config import FALLBACK_QUOTE, Thresholds
from nifty_tracker.core import (
    QuoteSnapshot,
    Summary,
    Trend,
    TrendState,
    build_quote_snapshot,
    compute_indicators,
    fallback_snapshot,
    synthesize_signal,
)
from nifty_tracker.core.cache import summary_to_dict
from nifty_tracker.core.models import IndicatorBundle

NOW = dt.datetime(2024, 6, 3, 10, 0, tzinfo=dt.timezone.utc)
EMPTY = pd.Series([], dtype="float64")


def _bundle(sma=24000.0, rsi=45.0):
    return IndicatorBundle(sma_long=sma, rsi=rsi, ema_fast=EMPTY, ema_slow=EMPTY)


def test_fallback_snapshot_matches_constants():
    snap = fallback_snapshot(NOW)
    assert snap.current_price == 24741.00
    assert snap.pe_ratio == 21.73
    assert snap.last_updated == NOW
    assert snap.change == snap.current_price - snap.previous_close


def test_quote_values_take_precedence(make_bars):
    bars = make_bars([100.0, 110.0, 120.0])
    quote = {"current_price": 125.0, "previous_close": 119.0, "open": 121.0}
    snap = build_quote_snapshot(quote, bars, _bundle(), Thresholds(), NOW)
    assert (snap.current_price, snap.previous_close, snap.open) == (125.0, 119.0, 121.0)
    # 52-week range always comes from the bars when they exist
    assert snap.high_52w == 121.0
    assert snap.low_52w == 99.0
    assert snap.rsi == 45.0
    assert snap.dma_200 == 24000.0


def test_bars_fill_missing_quote_fields(make_bars):
    bars = make_bars([100.0, 110.0, 120.0])
    snap = build_quote_snapshot(None, bars, _bundle(), Thresholds(), NOW)
    assert snap.current_price == 120.0
    assert snap.previous_close == 110.0
    assert snap.open == 120.0


def test_quote_52w_used_without_bars():
    quote = {"current_price": 100.0, "fiftyTwoWeekHigh": 130.0, "fiftyTwoWeekLow": 80.0}
    snap = build_quote_snapshot(quote, pd.DataFrame(), _bundle(), Thresholds(), NOW)
    assert (snap.high_52w, snap.low_52w) == (130.0, 80.0)
    assert snap.previous_close == FALLBACK_QUOTE["previous_close"]


def test_nan_quote_values_are_skipped(make_bars):
    quote = {"current_price": float("nan"), "open": None, "regularMarketOpen": 101.5}
    snap = build_quote_snapshot(quote, make_bars([100.0, 102.0]), _bundle(), Thresholds(), NOW)
    assert snap.current_price == 102.0
    assert snap.open == 101.5


def test_pe_and_all_time_high_come_from_thresholds(make_bars):
    th = Thresholds(all_time_high=30000.0, pe_ratio=19.5)
    snap = build_quote_snapshot({}, make_bars([100.0]), _bundle(), th, NOW)
    assert snap.all_time_high == 30000.0
    assert snap.pe_ratio == 19.5


def test_snapshot_from_computed_indicators(make_bars):
    bars = make_bars([float(x) for x in range(1, 251)])
    snap = build_quote_snapshot({}, bars, compute_indicators(bars, Thresholds()), Thresholds(), NOW)
    assert snap.current_price == 250.0
    assert snap.dma_200 == sum(range(51, 251)) / 200
    assert snap.above_dma


def test_zero_prices_are_treated_as_missing(make_bars):
    quote = {"current_price": 0, "previous_close": 0.0, "open": -1.0}
    snap = build_quote_snapshot(quote, make_bars([100.0, 110.0]), _bundle(), Thresholds(), NOW)
    assert snap.current_price == 110.0
    assert snap.previous_close == 100.0
    assert snap.open == 110.0


def test_derived_percentages_survive_zero_divisors():
    snap = fallback_snapshot(NOW)
    zeroed = QuoteSnapshot(**{**snap.__dict__, "current_price": 0.0, "previous_close": 0.0})
    assert zeroed.change_pct == 0.0
    assert zeroed.upside_pct == 0.0
    trend = TrendState(Trend.UNKNOWN)
    summary = Summary(zeroed, trend, synthesize_signal(zeroed, trend, Thresholds()), [], "fallback")
    assert summary_to_dict(summary)["quote"]["change_pct"] == 0.0
