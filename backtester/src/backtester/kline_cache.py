"""
On-disk cache of one-second klines, one CSV file per symbol and UTC day.

Layout: ``<data_dir>/<SYMBOL>/<YYYY-MM-DD>.csv`` with newline-terminated
rows ``openTime,open,high,low,close,volume`` and no header.

A day counts as cached only when its file holds at least
``86400 - 60`` rows; up to a minute of missing candles is tolerated for
exchange gaps.  Days are written to a temporary file that is then renamed
into place, so an interrupted download never leaves a partial file that
could pass for a complete one.

File I/O runs via ``asyncio.to_thread`` to avoid blocking the event loop.
"""

from __future__ import annotations

import asyncio
import csv
import datetime as dt
import os
from pathlib import Path
from typing import AsyncIterator, List, Optional, Sequence, Tuple

from patterns.models import Kline

EXPECTED_KLINES_PER_DAY = 86_400
# Candles a day may be missing and still count as complete.
MISSING_TOLERANCE = 60
MIN_KLINES_PER_DAY = EXPECTED_KLINES_PER_DAY - MISSING_TOLERANCE


class IncompleteDataError(ValueError):
    """A day's candles fall short of the completeness threshold."""

    def __init__(self, symbol: str, day: dt.date, count: int) -> None:
        super().__init__(
            f"Incomplete data for {symbol} {day.isoformat()}: got {count} klines, "
            f"expected ~{EXPECTED_KLINES_PER_DAY}"
        )
        self.symbol = symbol
        self.day = day
        self.count = count


def _as_date(value: dt.date | dt.datetime) -> dt.date:
    if isinstance(value, dt.datetime):
        if value.tzinfo is not None:
            value = value.astimezone(dt.timezone.utc)
        return value.date()
    return value


def days_between(start: dt.date | dt.datetime, end: dt.date | dt.datetime) -> List[dt.date]:
    """Every UTC calendar day from ``start`` to ``end`` inclusive."""
    current = _as_date(start)
    last = _as_date(end)
    days: List[dt.date] = []
    while current <= last:
        days.append(current)
        current += dt.timedelta(days=1)
    return days


def day_bounds_ms(day: dt.date) -> Tuple[int, int]:
    """First and last millisecond of ``day`` in UTC."""
    start = dt.datetime(day.year, day.month, day.day, tzinfo=dt.timezone.utc)
    start_ms = int(start.timestamp() * 1000)
    return start_ms, start_ms + 86_400_000 - 1


class KlineCache:
    """Per-symbol, per-day kline storage."""

    def __init__(self, data_dir: Optional[str | Path] = None) -> None:
        self.data_dir = Path(data_dir or os.getenv("KLINE_CACHE_DIR", "data/klines"))

    def day_path(self, symbol: str, day: dt.date) -> Path:
        return self.data_dir / symbol.upper() / f"{day.isoformat()}.csv"

    def _count_rows(self, path: Path) -> int:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return sum(1 for line in f if line.strip())
        except FileNotFoundError:
            return 0

    async def is_complete(self, symbol: str, day: dt.date) -> bool:
        count = await asyncio.to_thread(self._count_rows, self.day_path(symbol, day))
        return count >= MIN_KLINES_PER_DAY

    async def get_missing_days(
        self, symbol: str, start: dt.date | dt.datetime, end: dt.date | dt.datetime
    ) -> List[dt.date]:
        """Days in ``[start, end]`` without a complete cache file, in order."""
        missing: List[dt.date] = []
        for day in days_between(start, end):
            if not await self.is_complete(symbol, day):
                missing.append(day)
        return missing

    def _write_day(self, path: Path, klines: Sequence[Kline]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f, lineterminator="\n")
            for k in klines:
                writer.writerow(
                    (k.open_time, repr(k.open), repr(k.high), repr(k.low), repr(k.close), repr(k.volume))
                )
        os.replace(tmp_path, path)

    async def cache_day(self, symbol: str, day: dt.date, klines: Sequence[Kline]) -> Path:
        """Atomically store a complete day of klines.

        Raises:
            IncompleteDataError: If fewer than ``MIN_KLINES_PER_DAY`` klines are given.
        """
        if len(klines) < MIN_KLINES_PER_DAY:
            raise IncompleteDataError(symbol, day, len(klines))
        path = self.day_path(symbol, day)
        await asyncio.to_thread(self._write_day, path, klines)
        return path

    def _read_day(self, path: Path) -> List[Kline]:
        with open(path, "r", encoding="utf-8", newline="") as f:
            return [
                Kline(
                    open_time=int(row[0]),
                    open=float(row[1]),
                    high=float(row[2]),
                    low=float(row[3]),
                    close=float(row[4]),
                    volume=float(row[5]),
                )
                for row in csv.reader(f)
                if row
            ]

    async def load_klines(
        self, symbol: str, start: dt.date | dt.datetime, end: dt.date | dt.datetime
    ) -> AsyncIterator[Tuple[dt.date, List[Kline]]]:
        """Yield ``(day, klines)`` for each cached day in ``[start, end]``.

        Days without a cache file are skipped.  The cache is never
        modified, so the generator can be re-created and replayed.
        """
        for day in days_between(start, end):
            path = self.day_path(symbol, day)
            if not path.exists():
                continue
            klines = await asyncio.to_thread(self._read_day, path)
            yield day, klines
