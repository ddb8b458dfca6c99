"""Tests for the live price monitor."""

from __future__ import annotations

import asyncio
from typing import List

import pytest
from prometheus_client import REGISTRY

from patterns import monitor_main
from patterns.models import DetectorConfig, DropEvent, PricePoint
from patterns.monitor import PriceMonitor

FAST = DetectorConfig(window_seconds=60, drop_percent=2.0, record_after_seconds=2, cooldown_seconds=0)
SLOW = DetectorConfig(window_seconds=60, drop_percent=2.0, record_after_seconds=4, cooldown_seconds=0)


class FakeStore:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.saved: List[DropEvent] = []

    async def save_event(self, event: DropEvent) -> int:
        if self.fail:
            raise RuntimeError("database unavailable")
        self.saved.append(event)
        return len(event.prices_before) + len(event.prices_after)


def prices(symbol: str, values) -> List[PricePoint]:
    return [PricePoint(symbol, i * 1000, v) for i, v in enumerate(values)]


async def as_stream(points):
    for p in points:
        yield p


@pytest.mark.asyncio
async def test_monitor_persists_events_from_every_config() -> None:
    store = FakeStore()
    monitor = PriceMonitor("mona1usdt", [FAST, SLOW], store)
    await monitor.run(as_stream(prices("MONA1USDT", [100, 97, 99, 99, 99, 99])))

    assert [e.window_seconds for e in store.saved] == [60, 60]
    assert [len(e.prices_after) for e in store.saved] == [2, 4]
    assert REGISTRY.get_sample_value("drop_price_points_total", {"symbol": "MONA1USDT"}) == 6
    # Configs that differ only in recording period count in separate series
    assert FAST.label == SLOW.label
    for config in (FAST, SLOW):
        assert (
            REGISTRY.get_sample_value(
                "drop_events_total", {"symbol": "MONA1USDT", "config": config.metric_label}
            )
            == 1
        )


@pytest.mark.asyncio
async def test_events_complete_in_config_order() -> None:
    same = DetectorConfig(window_seconds=30, drop_percent=2.0, record_after_seconds=2, cooldown_seconds=0)
    monitor = PriceMonitor("MONA2USDT", [FAST, same])
    completed: List[DropEvent] = []
    for p in prices("MONA2USDT", [100, 97, 98, 98]):
        completed.extend(await monitor.process(p))
    assert [e.window_seconds for e in completed] == [60, 30]


@pytest.mark.asyncio
async def test_persist_failure_does_not_stop_monitor() -> None:
    store = FakeStore(fail=True)
    monitor = PriceMonitor("MONA3USDT", [FAST], store)
    completed: List[DropEvent] = []
    for p in prices("MONA3USDT", [100, 97, 99, 99, 99]):
        completed.extend(await monitor.process(p))
    assert len(completed) == 1
    assert (
        REGISTRY.get_sample_value(
            "drop_events_persist_failures_total", {"symbol": "MONA3USDT"}
        )
        == 1
    )


@pytest.mark.asyncio
async def test_active_recordings_gauge() -> None:
    monitor = PriceMonitor("MONA4USDT", [FAST, SLOW])
    for p in prices("MONA4USDT", [100, 97]):
        await monitor.process(p)
    assert REGISTRY.get_sample_value("drop_active_recordings", {"symbol": "MONA4USDT"}) == 2


@pytest.mark.asyncio
async def test_monitor_main_rejects_bad_config(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("DETECTOR_CONFIG", str(tmp_path / "missing.json"))
    assert await monitor_main.main() == 2


@pytest.mark.asyncio
async def test_monitor_main_runs_one_monitor_per_symbol(monkeypatch) -> None:
    started: List[str] = []

    class FakeStream:
        def __init__(self, symbol: str) -> None:
            self.symbol = symbol

        async def stream(self):
            started.append(self.symbol)
            yield PricePoint(self.symbol.upper(), 0, 100.0)

    monkeypatch.setenv("SYMBOLS", "mona5usdt, mona6usdt")
    monkeypatch.delenv("DETECTOR_CONFIG", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("PROMETHEUS_PORT", raising=False)
    monkeypatch.setattr(monitor_main, "BinanceKlineStream", FakeStream)

    assert await monitor_main.main() == 0
    assert sorted(started) == ["MONA5USDT", "MONA6USDT"]


@pytest.mark.asyncio
async def test_monitor_main_unwinds_monitors_before_closing_store(monkeypatch) -> None:
    order: List[str] = []

    class FakeDropStore:
        @classmethod
        def from_uri(cls, uri: str) -> "FakeDropStore":
            return cls()

        async def init_db(self) -> None:
            pass

        async def save_event(self, event: DropEvent) -> int:
            return 0

        async def close(self) -> None:
            order.append("store closed")

    class FakeStream:
        def __init__(self, symbol: str) -> None:
            self.symbol = symbol

        async def stream(self):
            if self.symbol == "MONA7USDT":
                yield PricePoint(self.symbol, 0, 100.0)
                raise RuntimeError("feed exploded")
            try:
                yield PricePoint(self.symbol, 0, 100.0)
                await asyncio.Event().wait()
            finally:
                order.append(f"{self.symbol} stopped")

    monkeypatch.setenv("SYMBOLS", "MONA7USDT,MONA8USDT")
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///unused.db")
    monkeypatch.delenv("DETECTOR_CONFIG", raising=False)
    monkeypatch.delenv("PROMETHEUS_PORT", raising=False)
    monkeypatch.setattr(monitor_main, "DropStore", FakeDropStore)
    monkeypatch.setattr(monitor_main, "BinanceKlineStream", FakeStream)

    assert await monitor_main.main() == 1
    assert order == ["MONA8USDT stopped", "store closed"]
