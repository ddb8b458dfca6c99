"""
Entry point for the live price monitor.

One :class:`PriceMonitor` runs per symbol, each fed by its own
:class:`BinanceKlineStream`.  All monitors run concurrently; if any of
them exits with an exception the others are cancelled and the process
terminates with a non-zero status.

Environment variables:

* ``SYMBOLS`` – comma separated symbols (default ``BTCUSDT,ETHUSDT,SOLUSDT``).
* ``DETECTOR_CONFIG`` – path to a detector configuration file (default:
  the bundled rapid-drop configuration).
* ``DATABASE_URL`` – SQLAlchemy async URL; events are only logged when unset.
* ``PROMETHEUS_PORT`` – expose metrics on this port when set.
* ``LOG_LEVEL`` – logging level (default ``INFO``).
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from typing import List, Optional

from .config import ConfigurationError, get_pattern
from .db_store import DropStore
from .market_data import BinanceKlineStream
from .metrics import start_metrics_server
from .monitor import PriceMonitor

DEFAULT_SYMBOLS = "BTCUSDT,ETHUSDT,SOLUSDT"

logger = logging.getLogger(__name__)


async def main() -> int:
    """Run all monitors and return the process exit status."""
    symbols: List[str] = [
        s.strip().upper() for s in os.getenv("SYMBOLS", DEFAULT_SYMBOLS).split(",") if s.strip()
    ]
    config_path = os.getenv("DETECTOR_CONFIG")
    try:
        configs = get_pattern("rapid-drop").load_configs(config_path).configs
    except ConfigurationError as exc:
        logger.error("%s", exc)
        return 2

    store: Optional[DropStore] = None
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        store = DropStore.from_uri(database_url)
        await store.init_db()
    else:
        logger.warning("DATABASE_URL not set; detected events will only be logged")
    start_metrics_server()

    tasks = [
        asyncio.create_task(
            PriceMonitor(symbol, configs, store).run(BinanceKlineStream(symbol).stream()),
            name=f"monitor-{symbol}",
        )
        for symbol in symbols
    ]
    logger.info("Price monitor started for %s", ", ".join(symbols))
    status = 0
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        for task in done:
            exc = task.exception()
            if exc:
                logger.error("Monitor task %s failed", task.get_name(), exc_info=exc)
                status = 1
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        # Cancelled monitors must finish unwinding before the engine is disposed
        await asyncio.gather(*tasks, return_exceptions=True)
        if store is not None:
            await store.close()
    logger.info("Price monitor exiting")
    return status


def run() -> None:
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
