import pandas as pd
import pytest

from nifty_tracker.core import SnapshotCache, SourceUnavailable


def _bars(closes, start="2024-01-01"):
    idx = pd.date_range(start, periods=len(closes), freq="D", tz="UTC", name="date")
    close = pd.Series(closes, index=idx, dtype="float64")
    return pd.DataFrame(
        {
            "open": close,
            "high": close + 1,
            "low": close - 1,
            "close": close,
            "volume": 1000.0,
        },
        index=idx,
    )


class FakeSource:
    """In-memory market-data source; ``None`` for a field means unavailable."""

    def __init__(self, quote=None, bars=None):
        self.quote = quote
        self.bars = bars
        self.calls = []

    async def get_quote_snapshot(self, symbol):
        self.calls.append(("quote", symbol))
        if self.quote is None:
            raise SourceUnavailable("quote down")
        return dict(self.quote)

    async def get_historical_bars(self, symbol, lookback_days):
        self.calls.append(("bars", symbol, lookback_days))
        if self.bars is None:
            raise SourceUnavailable("bars down")
        return self.bars.copy()


@pytest.fixture
def make_bars():
    return _bars


@pytest.fixture
def fake_source():
    return FakeSource


@pytest.fixture
def clock():
    """Mutable epoch-millis clock: ``clock.now`` can be moved by tests."""
    class _Clock:
        now = 1_700_000_000_000

        def __call__(self):
            return self.now

    return _Clock()


@pytest.fixture
def cache(tmp_path, clock):
    return SnapshotCache(f"sqlite:///{tmp_path / 'cache.db'}", version="v2.0", clock=clock)
