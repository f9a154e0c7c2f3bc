"""Daily Nifty index tracker: indicators, EMA crossovers and investment signals."""

__version__ = "2.0.0"
