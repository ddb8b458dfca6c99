"""
Live price monitor for one symbol.

The monitor fans every closed candle from the kline stream out to one
:class:`RapidDropDetector` per configuration, always in configuration
order, and persists each completed event.  A failure to persist an event
is logged and counted but does not stop the monitor.
"""

from __future__ import annotations

import logging
from typing import AsyncIterable, List, Optional, Sequence

from .db_store import DropStore
from .metrics import (
    active_recordings_gauge,
    events_counter,
    persist_failures_counter,
    price_points_counter,
)
from .models import DetectorConfig, DropEvent, PricePoint
from .rapid_drop import RapidDropDetector

logger = logging.getLogger(__name__)


class PriceMonitor:
    """Run a set of detectors over a live price stream."""

    def __init__(
        self,
        symbol: str,
        configs: Sequence[DetectorConfig],
        store: Optional[DropStore] = None,
    ) -> None:
        self.symbol = symbol.upper()
        self.configs = list(configs)
        self.store = store
        self.detectors: List[RapidDropDetector] = [
            RapidDropDetector(config) for config in self.configs
        ]

    async def process(self, point: PricePoint) -> List[DropEvent]:
        """Feed one point to every detector and handle completed events."""
        price_points_counter.labels(symbol=self.symbol).inc()
        completed: List[DropEvent] = []
        for detector in self.detectors:
            event = detector.feed(point)
            if event is not None:
                completed.append(event)
                events_counter.labels(
                    symbol=self.symbol, config=detector.config.metric_label
                ).inc()
                await self._handle_event(event)
        active_recordings_gauge.labels(symbol=self.symbol).set(
            sum(1 for d in self.detectors if d.is_recording)
        )
        return completed

    async def _handle_event(self, event: DropEvent) -> None:
        logger.info(
            "Rapid drop: %s -%.2f%% (%ds window), %d before + %d after points",
            event.symbol,
            event.drop_percent,
            event.window_seconds,
            len(event.prices_before),
            len(event.prices_after),
        )
        if self.store is None:
            return
        try:
            written = await self.store.save_event(event)
        except Exception:
            persist_failures_counter.labels(symbol=self.symbol).inc()
            logger.exception("Failed to persist event %s", event.id)
            return
        logger.info("Persisted event %s (%d price points)", event.id, written)

    async def run(self, points: AsyncIterable[PricePoint]) -> None:
        """Consume ``points`` until the stream ends."""
        logger.info(
            "Starting %s with %d detector configs (%s)",
            self.symbol,
            len(self.detectors),
            ", ".join(c.label for c in self.configs),
        )
        async for point in points:
            await self.process(point)
