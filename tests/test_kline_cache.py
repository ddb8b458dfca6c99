"""Tests for the per-day kline cache."""

from __future__ import annotations

import datetime as dt

import pytest

from backtester.kline_cache import (
    MIN_KLINES_PER_DAY,
    IncompleteDataError,
    KlineCache,
    day_bounds_ms,
    days_between,
)
from tests.helpers.fake_streams import make_klines

DAY = dt.date(2025, 1, 2)


def day_klines(day: dt.date, count: int):
    start_ms, _ = day_bounds_ms(day)
    return make_klines(start_ms, [100.0 + (i % 7) * 0.25 for i in range(count)])


def test_days_between_is_inclusive() -> None:
    days = days_between(dt.date(2025, 1, 30), dt.date(2025, 2, 2))
    assert days == [
        dt.date(2025, 1, 30),
        dt.date(2025, 1, 31),
        dt.date(2025, 2, 1),
        dt.date(2025, 2, 2),
    ]


def test_days_between_uses_utc_for_datetimes() -> None:
    tz = dt.timezone(dt.timedelta(hours=5))
    start = dt.datetime(2025, 1, 2, 3, 0, tzinfo=tz)  # 2025-01-01 22:00 UTC
    assert days_between(start, dt.date(2025, 1, 2)) == [dt.date(2025, 1, 1), dt.date(2025, 1, 2)]


def test_day_bounds_ms() -> None:
    start_ms, end_ms = day_bounds_ms(dt.date(2025, 1, 1))
    assert start_ms == 1_735_689_600_000
    assert end_ms == start_ms + 86_400_000 - 1


@pytest.mark.asyncio
async def test_day_missing_until_cached(tmp_path) -> None:
    cache = KlineCache(tmp_path)
    assert await cache.get_missing_days("btcusdt", DAY, DAY) == [DAY]

    path = await cache.cache_day("btcusdt", DAY, day_klines(DAY, MIN_KLINES_PER_DAY))
    assert path == tmp_path / "BTCUSDT" / "2025-01-02.csv"
    assert await cache.get_missing_days("BTCUSDT", DAY, DAY) == []
    assert await cache.is_complete("BTCUSDT", DAY)


@pytest.mark.asyncio
async def test_incomplete_day_fails_and_stays_missing(tmp_path) -> None:
    cache = KlineCache(tmp_path)
    with pytest.raises(IncompleteDataError) as excinfo:
        await cache.cache_day("BTCUSDT", DAY, day_klines(DAY, MIN_KLINES_PER_DAY - 1))
    assert excinfo.value.count == MIN_KLINES_PER_DAY - 1
    assert not cache.day_path("BTCUSDT", DAY).exists()
    assert await cache.get_missing_days("BTCUSDT", DAY, DAY) == [DAY]


@pytest.mark.asyncio
async def test_short_file_counts_as_missing(tmp_path) -> None:
    cache = KlineCache(tmp_path)
    path = cache.day_path("BTCUSDT", DAY)
    path.parent.mkdir(parents=True)
    path.write_text("1735776000000,1,1,1,1,1\n" * 100)
    assert await cache.get_missing_days("BTCUSDT", DAY, DAY) == [DAY]


@pytest.mark.asyncio
async def test_cache_write_leaves_no_temp_file(tmp_path) -> None:
    cache = KlineCache(tmp_path)
    await cache.cache_day("BTCUSDT", DAY, day_klines(DAY, MIN_KLINES_PER_DAY))
    assert sorted(p.name for p in (tmp_path / "BTCUSDT").iterdir()) == ["2025-01-02.csv"]


@pytest.mark.asyncio
async def test_load_round_trips_and_skips_absent_days(tmp_path) -> None:
    cache = KlineCache(tmp_path)
    klines = day_klines(DAY, MIN_KLINES_PER_DAY)
    await cache.cache_day("BTCUSDT", DAY, klines)

    loaded = [
        batch
        async for batch in cache.load_klines("BTCUSDT", dt.date(2025, 1, 1), dt.date(2025, 1, 3))
    ]
    assert [day for day, _ in loaded] == [DAY]
    assert loaded[0][1] == klines

    # The generator can be re-created and replayed
    again = [batch async for batch in cache.load_klines("BTCUSDT", DAY, DAY)]
    assert again[0][1] == klines


def test_cache_dir_from_environment(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("KLINE_CACHE_DIR", str(tmp_path / "klines"))
    cache = KlineCache()
    assert cache.day_path("ethusdt", DAY) == tmp_path / "klines" / "ETHUSDT" / "2025-01-02.csv"
