import asyncio
import math

import httpx
import pytest

from nifty_tracker.core import SourceUnavailable, YahooChartSource
from nifty_tracker.core.ohlc_fetcher import lookback_to_range, parse_bars, parse_quote

DAY = 86400
T0 = 1_717_372_800  # 2024-06-03 00:00 UTC


def _chart(closes, meta=None):
    n = len(closes)
    return {
        "chart": {
            "result": [
                {
                    "meta": meta or {"regularMarketPrice": 24500.0, "chartPreviousClose": 24400.0},
                    "timestamp": [T0 + i * DAY for i in range(n)],
                    "indicators": {
                        "quote": [
                            {
                                "open": closes,
                                "high": closes,
                                "low": closes,
                                "close": closes,
                                "volume": [1000] * n,
                            }
                        ]
                    },
                }
            ],
            "error": None,
        }
    }


def _source(handler, retries=3):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return YahooChartSource(base_url="https://yahoo.test", max_retries=retries, backoff_base=0, client=client)


def test_lookback_to_range():
    assert lookback_to_range(30) == "1mo"
    assert lookback_to_range(365) == "1y"
    assert lookback_to_range(400) == "2y"
    assert lookback_to_range(5000) == "max"
    with pytest.raises(ValueError):
        lookback_to_range(0)


def test_parse_quote_maps_meta_fields():
    quote = parse_quote(_chart([1.0], meta={"regularMarketPrice": 5.0, "previousClose": 4.0, "fiftyTwoWeekHigh": 9.0}))
    assert quote["current_price"] == 5.0
    assert quote["previous_close"] == 4.0
    assert quote["high_52w"] == 9.0
    assert quote["open"] is None


def test_parse_bars_keeps_null_close_as_nan():
    df = parse_bars(_chart([100.0, None, 102.0]))
    assert list(df.columns) == ["open", "high", "low", "close", "volume"]
    assert len(df) == 3
    assert math.isnan(df["close"].iloc[1])
    assert str(df.index.tz) == "UTC"


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"chart": {"result": [], "error": None}},
        {"chart": {"result": None, "error": {"code": "Not Found"}}},
        {"chart": {"result": [{"timestamp": [T0]}], "error": None}},
    ],
)
def test_malformed_payloads_are_source_errors(payload):
    with pytest.raises(SourceUnavailable):
        parse_bars(payload)


def test_mismatched_column_length():
    payload = _chart([1.0, 2.0])
    payload["chart"]["result"][0]["indicators"]["quote"][0]["close"] = [1.0]
    with pytest.raises(SourceUnavailable):
        parse_bars(payload)


def test_get_historical_bars_sends_range_and_clips():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=_chart([float(x) for x in range(40)]))

    df = asyncio.run(_source(handler).get_historical_bars("^NSEI", 10))
    assert seen[0].url.params["range"] == "1mo"
    assert seen[0].url.params["interval"] == "1d"
    assert seen[0].url.path.endswith("/v8/finance/chart/^NSEI")
    assert len(df) == 10
    assert df["close"].iloc[-1] == 39.0


def test_get_quote_snapshot():
    handler = lambda request: httpx.Response(200, json=_chart([1.0]))  # noqa: E731
    quote = asyncio.run(_source(handler).get_quote_snapshot("^NSEI"))
    assert quote["current_price"] == 24500.0
    assert quote["previous_close"] == 24400.0


def test_retries_server_errors_then_gives_up():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500, text="boom")

    with pytest.raises(SourceUnavailable):
        asyncio.run(_source(handler, retries=3).get_quote_snapshot("^NSEI"))
    assert len(calls) == 3


def test_recovers_after_rate_limit():
    responses = [httpx.Response(429), httpx.Response(200, json=_chart([1.0, 2.0]))]
    df = asyncio.run(_source(lambda request: responses.pop(0)).get_historical_bars("^NSEI", 30))
    assert df["close"].tolist() == [1.0, 2.0]


def test_client_error_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(404, text="no such symbol")

    with pytest.raises(SourceUnavailable):
        asyncio.run(_source(handler).get_historical_bars("NOPE", 30))
    assert len(calls) == 1


def test_transport_error_and_bad_json():
    def broken(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(SourceUnavailable):
        asyncio.run(_source(broken).get_quote_snapshot("^NSEI"))

    with pytest.raises(SourceUnavailable):
        asyncio.run(_source(lambda request: httpx.Response(200, text="<html>")).get_quote_snapshot("^NSEI"))


def test_empty_symbol_is_a_caller_error():
    with pytest.raises(ValueError):
        asyncio.run(_source(lambda request: httpx.Response(200, json={})).get_quote_snapshot("  "))
