"""
Turn a quote and trend state into value, momentum and combined signals.

Value: a deep enough correction from the all-time high, an oversold RSI
and an attractive PE must all hold for BUY.  Momentum: BUY in a bullish
trend, AVOID in a bearish one, WAIT when the trend is unknown.  The
combined signal is STRONG BUY when both say BUY, BUY when either does,
AVOID when momentum says AVOID and WAIT otherwise, checked in that order.
"""
from __future__ import annotations

from typing import Dict

from ..config import Thresholds
from .models import (
    CombinedSignal,
    CrossoverType,
    QuoteSnapshot,
    Signal,
    SignalResult,
    StrategySignal,
    Trend,
    TrendState,
)

_VALUE_DESCRIPTIONS = {
    3: "All value conditions met: {correction:.1f}% off the high, RSI {rsi:.1f}, PE {pe:.1f}",
    2: "Two of three value conditions met ({missing} not yet)",
    1: "Only {met} looks attractive; valuation not compelling",
    0: "No value conditions met: {correction:.1f}% off the high, RSI {rsi:.1f}, PE {pe:.1f}",
}

_CONDITION_LABELS = {
    "correction": "correction",
    "rsi": "oversold RSI",
    "pe": "attractive PE",
}


def value_conditions(quote: QuoteSnapshot, thresholds: Thresholds) -> Dict[str, bool]:
    return {
        "correction": abs(quote.correction_pct) >= thresholds.correction_threshold,
        "rsi": quote.rsi < thresholds.rsi_oversold,
        "pe": quote.pe_ratio < thresholds.pe_attractive,
    }


def evaluate_value(quote: QuoteSnapshot, thresholds: Thresholds) -> StrategySignal:
    conditions = value_conditions(quote, thresholds)
    met = [_CONDITION_LABELS[k] for k, ok in conditions.items() if ok]
    missing = [_CONDITION_LABELS[k] for k, ok in conditions.items() if not ok]
    description = _VALUE_DESCRIPTIONS[len(met)].format(
        correction=abs(quote.correction_pct),
        rsi=quote.rsi,
        pe=quote.pe_ratio,
        met=", ".join(met),
        missing=", ".join(missing),
    )
    return StrategySignal(
        signal=Signal.BUY if all(conditions.values()) else Signal.WAIT,
        conditions=conditions,
        description=description,
    )


def momentum_conditions(
    quote: QuoteSnapshot, trend: TrendState, thresholds: Thresholds
) -> Dict[str, bool]:
    cross = trend.last_crossover
    recent_cross = (
        cross is not None
        and cross.type == CrossoverType.BULLISH_CROSS
        and trend.days_since_cross is not None
        and trend.days_since_cross < thresholds.recent_cross_days
    )
    above = (
        trend.fast_ema is not None
        and trend.slow_ema is not None
        and quote.current_price > trend.fast_ema
        and quote.current_price > trend.slow_ema
    )
    return {
        "bullish_trend": trend.trend == Trend.BULLISH,
        "recent_cross": recent_cross,
        "price_above_emas": above,
    }


def _momentum_description(trend: TrendState, thresholds: Thresholds) -> str:
    if trend.trend == Trend.UNKNOWN:
        return "Not enough history to establish a trend yet"

    cross = trend.last_crossover
    days = trend.days_since_cross
    if cross is None or days is None:
        if trend.trend == Trend.BULLISH:
            return "Fast EMA above slow EMA; no crossover in the available history"
        return "Fast EMA below slow EMA; no crossover in the available history"

    if trend.trend == Trend.BULLISH:
        if days < thresholds.fresh_cross_days:
            return f"Fresh bullish crossover {days} days ago; uptrend just starting"
        if days < thresholds.recent_cross_days:
            return f"Bullish crossover {days} days ago; uptrend building"
        return f"Uptrend established, last crossover {days} days ago"

    if days < thresholds.fresh_cross_days:
        return f"Fresh bearish crossover {days} days ago; downtrend just starting"
    if days < thresholds.recent_cross_days:
        return f"Bearish crossover {days} days ago; downtrend building"
    return f"Downtrend established, last crossover {days} days ago"


def evaluate_momentum(
    quote: QuoteSnapshot, trend: TrendState, thresholds: Thresholds
) -> StrategySignal:
    if trend.trend == Trend.BULLISH:
        signal = Signal.BUY
    elif trend.trend == Trend.BEARISH:
        signal = Signal.AVOID
    else:
        signal = Signal.WAIT
    return StrategySignal(
        signal=signal,
        conditions=momentum_conditions(quote, trend, thresholds),
        description=_momentum_description(trend, thresholds),
        trend=trend.trend,
    )


def combine(value: StrategySignal, momentum: StrategySignal) -> CombinedSignal:
    value_buy = value.signal == Signal.BUY
    momentum_buy = momentum.signal == Signal.BUY
    if value_buy and momentum_buy:
        return CombinedSignal(Signal.STRONG_BUY, "Valuation and momentum both favour buying")
    if value_buy:
        return CombinedSignal(Signal.BUY, "Valuation is attractive; momentum has not confirmed")
    if momentum_buy:
        return CombinedSignal(Signal.BUY, "Momentum is positive; valuation is not yet attractive")
    if momentum.signal == Signal.AVOID:
        return CombinedSignal(Signal.AVOID, "Bearish momentum; stay on the sidelines")
    return CombinedSignal(Signal.WAIT, "No clear signal; keep watching")


def synthesize_signal(
    quote: QuoteSnapshot, trend: TrendState, thresholds: Thresholds
) -> SignalResult:
    value = evaluate_value(quote, thresholds)
    momentum = evaluate_momentum(quote, trend, thresholds)
    return SignalResult(value=value, momentum=momentum, combined=combine(value, momentum))
