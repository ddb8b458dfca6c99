"""
Backtest runner
===============

Replays one symbol's cached candles through several detector
configurations at once and collects the events each configuration finds
in a target range.

Events triggered close to the end of the range need up to
``max(record_after_seconds)`` of further data to finish recording, so the
replay loads past the range end by that many seconds.  Events that
*trigger* inside that extension belong to the next period and are
dropped; events that trigger inside the range keep their full recording.

Every candle becomes a :class:`PricePoint` (close price at open time) and
is fed to the detectors in configuration order, which keeps runs
reproducible.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import AsyncIterable, List, Sequence, Tuple

from patterns.models import BacktestConfigResult, DetectorConfig, Kline
from patterns.rapid_drop import RapidDropDetector

from .kline_cache import KlineCache

logger = logging.getLogger(__name__)


class NoDataError(RuntimeError):
    """No cached candles were available for the requested range."""


def trailing_seconds(configs: Sequence[DetectorConfig]) -> int:
    """Longest recording period among ``configs``."""
    return max((c.record_after_seconds for c in configs), default=0)


def _ms_to_datetime(ms: int) -> dt.datetime:
    return dt.datetime.fromtimestamp(ms / 1000, tz=dt.timezone.utc)


async def replay(
    batches: AsyncIterable[Tuple[dt.date, List[Kline]]],
    symbol: str,
    configs: Sequence[DetectorConfig],
    start_ms: int,
    end_ms: int,
    load_end_ms: int,
) -> List[BacktestConfigResult]:
    """Feed day batches through one detector per config.

    Candles outside ``[start_ms, load_end_ms]`` are ignored; only events
    whose trigger lies in ``[start_ms, end_ms]`` are kept.

    Raises:
        NoDataError: If ``batches`` produced no candle inside the load range.
    """
    symbol = symbol.upper()
    results = [BacktestConfigResult(config=config) for config in configs]

    def collector(result: BacktestConfigResult):
        def collect(event) -> None:
            if start_ms <= event.trigger_timestamp <= end_ms:
                result.events.append(event)

        return collect

    detectors = [RapidDropDetector(r.config, on_complete=collector(r)) for r in results]

    fed = 0
    async for day, klines in batches:
        processed = 0
        for kline in klines:
            if kline.open_time < start_ms:
                continue
            if kline.open_time > load_end_ms:
                break
            point = kline.to_price_point(symbol)
            for detector in detectors:
                detector.feed(point)
            processed += 1
        fed += processed
        logger.info(
            "  [%s] %d klines processed (%s)",
            day.isoformat(),
            processed,
            ", ".join(f"{r.config.label}: {len(r.events)}" for r in results),
        )

    if fed == 0:
        raise NoDataError(
            f"No cached data for {symbol} between {_ms_to_datetime(start_ms).isoformat()} "
            f"and {_ms_to_datetime(end_ms).isoformat()}"
        )

    for detector in detectors:
        event = detector.active_event
        if event is not None and start_ms <= event.trigger_timestamp <= end_ms:
            logger.warning(
                "%s %s: event at %s discarded, recording incomplete (%d points) when data ran out",
                symbol,
                detector.config.label,
                _ms_to_datetime(event.trigger_timestamp).isoformat(),
                len(event.prices_after),
            )
    return results


async def run_backtest(
    cache: KlineCache,
    symbol: str,
    start_ms: int,
    end_ms: int,
    configs: Sequence[DetectorConfig],
) -> List[BacktestConfigResult]:
    """Backtest ``configs`` on cached data for ``[start_ms, end_ms]``.

    Returns one result per config, in config order, with events in
    trigger order.
    """
    load_end_ms = end_ms + trailing_seconds(configs) * 1000
    batches = cache.load_klines(symbol, _ms_to_datetime(start_ms), _ms_to_datetime(load_end_ms))
    results = await replay(batches, symbol, configs, start_ms, end_ms, load_end_ms)
    logger.info(
        "%s: %d events found across %d configs",
        symbol.upper(),
        sum(len(r.events) for r in results),
        len(results),
    )
    return results
