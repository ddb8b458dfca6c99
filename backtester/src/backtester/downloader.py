"""Fill kline cache gaps from the Binance REST API."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import List

from patterns.models import Kline

from .binance_rest import BinanceRestClient
from .kline_cache import IncompleteDataError, KlineCache, day_bounds_ms

logger = logging.getLogger(__name__)


@dataclass
class DownloadReport:
    """Days cached by a download pass and days left missing."""

    cached: List[dt.date] = field(default_factory=list)
    skipped: List[dt.date] = field(default_factory=list)


async def download_symbol(
    client: BinanceRestClient,
    cache: KlineCache,
    symbol: str,
    start: dt.date | dt.datetime,
    end: dt.date | dt.datetime,
) -> DownloadReport:
    """Download and cache every day in ``[start, end]`` that is not cached yet.

    A day whose data comes back incomplete is logged and left missing so a
    later pass can retry it.  API errors propagate to the caller.
    """
    report = DownloadReport()
    missing = await cache.get_missing_days(symbol, start, end)
    if not missing:
        logger.info("%s: cache complete, no downloads needed", symbol)
        return report

    logger.info("%s: downloading %d missing day(s)", symbol, len(missing))
    for day in missing:
        day_start, day_end = day_bounds_ms(day)
        klines: List[Kline] = []
        async for batch in client.fetch_klines(symbol, day_start, day_end):
            klines.extend(batch)
        try:
            await cache.cache_day(symbol, day, klines)
        except IncompleteDataError as exc:
            logger.warning("%s", exc)
            report.skipped.append(day)
            continue
        report.cached.append(day)
        logger.info("  %s: %d klines cached", day.isoformat(), len(klines))
    return report
