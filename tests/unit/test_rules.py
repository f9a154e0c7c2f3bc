import datetime as dt

import pandas as pd
import pytest

from nifty_tracker.config import Thresholds
from nifty_tracker.core import (
    CrossoverEvent,
    CrossoverType,
    QuoteSnapshot,
    Signal,
    Trend,
    TrendState,
    combine,
    evaluate_momentum,
    evaluate_value,
    synthesize_signal,
)
from nifty_tracker.core.models import StrategySignal

TH = Thresholds()


def _quote(price=24000.0, rsi=50.0, pe=22.0):
    return QuoteSnapshot(
        current_price=price,
        previous_close=price - 10,
        open=price - 5,
        high_52w=26277.35,
        low_52w=21743.65,
        all_time_high=TH.all_time_high,
        pe_ratio=pe,
        rsi=rsi,
        dma_200=24631.0,
        last_updated=dt.datetime(2024, 6, 3, 10, tzinfo=dt.timezone.utc),
    )


def _cross(kind=CrossoverType.BULLISH_CROSS):
    return CrossoverEvent(pd.Timestamp("2024-05-20", tz="UTC"), kind, 23000.0, 23010.0, 23000.0)


def _trend(trend=Trend.BULLISH, days=None, kind=CrossoverType.BULLISH_CROSS, fast=23500.0, slow=23400.0):
    return TrendState(
        trend=trend,
        fast_ema=fast,
        slow_ema=slow,
        last_crossover=_cross(kind) if days is not None else None,
        days_since_cross=days,
    )


def test_value_buy_needs_all_three_conditions():
    # 23000 is ~12.5% below the all-time high
    res = evaluate_value(_quote(price=23000.0, rsi=25.0, pe=20.0), TH)
    assert res.signal == Signal.BUY
    assert res.conditions == {"correction": True, "rsi": True, "pe": True}
    assert res.description.startswith("All value conditions met")


def test_value_waits_when_one_condition_fails():
    res = evaluate_value(_quote(price=23000.0, rsi=25.0, pe=22.0), TH)
    assert res.signal == Signal.WAIT
    assert res.conditions["pe"] is False
    assert "attractive PE" in res.description


def test_value_thresholds_are_strict_for_rsi_and_pe():
    res = evaluate_value(_quote(price=23000.0, rsi=30.0, pe=21.0), TH)
    assert res.conditions == {"correction": True, "rsi": False, "pe": False}
    assert res.description.startswith("Only correction")


def test_correction_boundary_is_inclusive():
    th = Thresholds(all_time_high=1000.0)
    quote = QuoteSnapshot(**{**_quote().__dict__, "current_price": 900.0, "all_time_high": 1000.0})
    assert evaluate_value(quote, th).conditions["correction"] is True
    quote = QuoteSnapshot(**{**quote.__dict__, "current_price": 900.5})
    assert evaluate_value(quote, th).conditions["correction"] is False


def test_no_value_conditions_met():
    res = evaluate_value(_quote(price=26000.0, rsi=60.0, pe=24.0), TH)
    assert not any(res.conditions.values())
    assert res.description.startswith("No value conditions met")


@pytest.mark.parametrize(
    "trend, expected",
    [(Trend.BULLISH, Signal.BUY), (Trend.BEARISH, Signal.AVOID), (Trend.UNKNOWN, Signal.WAIT)],
)
def test_momentum_signal_follows_trend(trend, expected):
    res = evaluate_momentum(_quote(), _trend(trend=trend), TH)
    assert res.signal == expected
    assert res.trend == trend


def test_recent_cross_requires_bullish_cross_under_30_days():
    q = _quote()
    assert evaluate_momentum(q, _trend(days=29), TH).conditions["recent_cross"] is True
    assert evaluate_momentum(q, _trend(days=30), TH).conditions["recent_cross"] is False
    bearish = _trend(trend=Trend.BEARISH, days=3, kind=CrossoverType.BEARISH_CROSS)
    assert evaluate_momentum(q, bearish, TH).conditions["recent_cross"] is False


def test_price_above_both_emas():
    q = _quote(price=24000.0)
    assert evaluate_momentum(q, _trend(fast=23900.0, slow=23800.0), TH).conditions["price_above_emas"]
    assert not evaluate_momentum(q, _trend(fast=24100.0, slow=23800.0), TH).conditions["price_above_emas"]
    unknown = TrendState(trend=Trend.UNKNOWN)
    assert not evaluate_momentum(q, unknown, TH).conditions["price_above_emas"]


@pytest.mark.parametrize(
    "days, fragment",
    [(0, "Fresh bullish"), (9, "Fresh bullish"), (10, "building"), (29, "building"), (30, "established")],
)
def test_momentum_description_buckets(days, fragment):
    assert fragment in evaluate_momentum(_quote(), _trend(days=days), TH).description


def test_momentum_description_without_crossover():
    desc = evaluate_momentum(_quote(), _trend(trend=Trend.BEARISH), TH).description
    assert "below" in desc and "no crossover" in desc
    assert "Not enough history" in evaluate_momentum(_quote(), TrendState(Trend.UNKNOWN), TH).description


def _s(signal):
    return StrategySignal(signal=signal, conditions={}, description="")


@pytest.mark.parametrize(
    "value, momentum, expected",
    [
        (Signal.BUY, Signal.BUY, Signal.STRONG_BUY),
        (Signal.BUY, Signal.WAIT, Signal.BUY),
        (Signal.WAIT, Signal.BUY, Signal.BUY),
        (Signal.WAIT, Signal.AVOID, Signal.AVOID),
        (Signal.WAIT, Signal.WAIT, Signal.WAIT),
    ],
)
def test_combined_signal(value, momentum, expected):
    assert combine(_s(value), _s(momentum)).signal == expected


def test_value_buy_beats_momentum_avoid():
    assert combine(_s(Signal.BUY), _s(Signal.AVOID)).signal == Signal.BUY


def test_synthesize_signal_end_to_end():
    quote = _quote(price=23000.0, rsi=25.0, pe=20.0)
    trend = _trend(trend=Trend.BEARISH, days=5, kind=CrossoverType.BEARISH_CROSS, fast=23100.0, slow=23300.0)
    res = synthesize_signal(quote, trend, TH)
    assert res.value.signal == Signal.BUY
    assert res.momentum.signal == Signal.AVOID
    assert res.combined.signal == Signal.BUY
    assert res.combined.signal.value == "BUY"


def test_thresholds_reject_bad_periods():
    with pytest.raises(ValueError):
        Thresholds(ema_fast=50, ema_slow=20)
    with pytest.raises(ValueError):
        Thresholds(rsi_period=0)


def test_thresholds_from_env(monkeypatch):
    monkeypatch.setenv("RSI_OVERSOLD", "25")
    monkeypatch.setenv("EMA_FAST", " '12' ")
    th = Thresholds.from_env()
    assert th.rsi_oversold == 25.0
    assert th.ema_fast == 12
    assert th.ema_slow == 50
