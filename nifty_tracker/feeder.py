"""
Nifty summary feeder.

This service periodically refreshes the index quote, indicators and
signals and publishes each summary to the MQTT broker on the topic
``nifty/<symbol>/summary``.  Refreshes run every ``MARKET_REFRESH_SECS``
during market hours and every ``IDLE_REFRESH_SECS`` (or until the next
open, whichever is sooner) otherwise.

Environment variables:

* MQTT_BROKER: hostname or IP of the MQTT broker (default: localhost)
* MQTT_PORT: broker port (default: 1883)
* NIFTY_SYMBOL: Yahoo symbol to track (default: ^NSEI)
* CACHE_DATABASE_URL: SQLAlchemy URL of the summary cache

If the data source is down the last cached data, or failing that the
built-in fallback snapshot, is published instead.
"""
import asyncio
import json
import logging
import sys
import time
from typing import Any, Dict

import paho.mqtt.client as mqtt

from . import config
from .config import Thresholds
from .core import RefreshScheduler, SnapshotCache, Summary, YahooChartSource, refresh_once
from .core.cache import summary_to_dict

logger = logging.getLogger("feeder")
if not logger.handlers:
    _h = logging.StreamHandler()
    _h.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
    logger.addHandler(_h)
logger.setLevel(config.LOG_LEVEL)


def topic_for(symbol: str) -> str:
    return f"nifty/{symbol.lstrip('^').lower()}/summary"


def build_payload(summary: Summary, symbol: str = config.SYMBOL) -> Dict[str, Any]:
    payload = summary_to_dict(summary)
    payload["symbol"] = symbol
    return payload


class SummaryPublisher:
    """Publishes each summary it is called with; the MQTT client is injected."""

    def __init__(self, client, symbol: str = config.SYMBOL):
        self.client = client
        self.symbol = symbol
        self.topic = topic_for(symbol)

    def __call__(self, summary: Summary) -> None:
        payload = build_payload(summary, self.symbol)
        self.client.publish(self.topic, json.dumps(payload), retain=True)
        signal = payload["signal"]["combined"]["signal"]
        logger.info(
            "Published %s %.2f (%s, %s) to %s",
            payload["source"], summary.quote.current_price, signal,
            summary.trend.trend.value, self.topic,
        )


def make_scheduler(client, source=None, cache=None, thresholds=None) -> RefreshScheduler:
    source = source or YahooChartSource()
    cache = cache or SnapshotCache()
    thresholds = thresholds or Thresholds.from_env()

    async def run() -> Summary:
        return await refresh_once(source, cache, thresholds)

    return RefreshScheduler(run=run, publish=SummaryPublisher(client))


def main():
    client = mqtt.Client(client_id=f"nifty-feeder-{int(time.time())}",
                         callback_api_version=mqtt.CallbackAPIVersion.VERSION1)
    client.connect(config.MQTT_BROKER, config.MQTT_PORT)
    client.loop_start()
    logger.info("Connected to MQTT broker at %s:%s", config.MQTT_BROKER, config.MQTT_PORT)
    scheduler = make_scheduler(client)
    try:
        asyncio.run(scheduler.run_forever())
    finally:
        scheduler.stop()
        client.loop_stop()
        client.disconnect()


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        sys.exit(0)
