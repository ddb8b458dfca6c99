"""
Backtester CLI entry point.

Three commands:

* ``download`` – fill the kline cache for a date range.
* ``run`` – download what is missing (range plus the longest recording
  period), then backtest every configuration on each symbol, one UTC day
  at a time, and persist each day's runs.  Runs that already exist for a
  symbol, day and configuration are skipped.
* ``analyze`` – combine persisted daily runs per configuration and print
  them ranked by expectancy.

Dates given on the command line override the ``from``/``to`` defaults of
the configuration file.

Environment variables:

* ``DATABASE_URL`` – SQLAlchemy async URL of the results database.
* ``KLINE_CACHE_DIR`` – kline cache directory (default ``data/klines``).
* ``BINANCE_REST_URL`` – REST base URL (default ``https://api.binance.com``).
* ``LOG_LEVEL`` – logging level (default ``INFO``).

Example usage:

    python -m backtester.backtester_main run --from 2025-01-01 --to 2025-01-07 --symbol BTCUSDT
"""

from __future__ import annotations

import argparse
import asyncio
import datetime as dt
import logging
import os
import sys
import time
from typing import List, Optional, Sequence

import aiohttp

from patterns.config import ConfigurationError, get_pattern
from patterns.db_store import DropStore
from patterns.models import BacktestConfigResult, DetectorConfig, DropEvent
from patterns.outcomes import recovery_at, summarize

from .analyze import DEFAULT_FEE_PERCENT, combine_daily_summaries, format_table
from .binance_rest import BinanceRestClient
from .downloader import download_symbol
from .kline_cache import KlineCache, day_bounds_ms, days_between
from .runner import NoDataError, run_backtest, trailing_seconds

DEFAULT_SYMBOLS = ["BTCUSDT", "ETHUSDT", "SOLUSDT"]
RECOVERY_INTERVALS = (60, 120, 300, 600)

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Backtest rapid-drop detectors on historical klines")
    sub = parser.add_subparsers(dest="command", required=True)

    download = sub.add_parser("download", help="Fill the kline cache")
    download.add_argument("--from", dest="date_from", required=True, help="First day (YYYY-MM-DD)")
    download.add_argument("--to", dest="date_to", required=True, help="Last day (YYYY-MM-DD)")
    download.add_argument("--symbol", help="Single symbol (default: BTCUSDT, ETHUSDT, SOLUSDT)")

    run = sub.add_parser("run", help="Run backtests and persist the results")
    run.add_argument("--config", help="Path to a detector configuration file")
    run.add_argument("--from", dest="date_from", help="First day (YYYY-MM-DD)")
    run.add_argument("--to", dest="date_to", help="Last day (YYYY-MM-DD)")
    run.add_argument("--symbol", help="Single symbol (default: BTCUSDT, ETHUSDT, SOLUSDT)")
    run.add_argument("--pattern", default="rapid-drop", help="Pattern to backtest")
    run.add_argument("--no-persist", action="store_true", help="Do not write results to the database")
    run.add_argument("--dry-run", action="store_true", help="Only download data, do not analyze")

    analyze = sub.add_parser("analyze", help="Rank configurations across persisted days")
    analyze.add_argument("--symbol", help="Restrict to one symbol")
    analyze.add_argument("--fee", type=float, default=DEFAULT_FEE_PERCENT, help="Fee percent per side")
    analyze.add_argument("--record-after", type=int, help="Only runs with this recording period (seconds)")
    return parser.parse_args(argv)


def parse_day(value: Optional[str | dt.date], name: str) -> dt.date:
    if value is None:
        raise ConfigurationError(
            f"--{name} is required (either on the command line or in the config file)"
        )
    if isinstance(value, dt.date):
        return value
    try:
        return dt.date.fromisoformat(value)
    except ValueError:
        raise ConfigurationError(f"Invalid --{name} date {value!r}, expected YYYY-MM-DD") from None


def resolve_symbols(symbol: Optional[str]) -> List[str]:
    return [symbol.upper()] if symbol else list(DEFAULT_SYMBOLS)


def require_database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if not url:
        raise ConfigurationError("DATABASE_URL is not set")
    return url


def log_event_summaries(result: BacktestConfigResult) -> None:
    """Log a short report per event: trigger, further drawdown and recovery."""
    if not result.events:
        return
    logger.info("  Config %s (%d events):", result.config.label, len(result.events))
    for index, event in enumerate(result.events, start=1):
        logger.info("    Event %d: %s", index, describe_event(event))


def describe_event(event: DropEvent) -> str:
    trigger_time = dt.datetime.fromtimestamp(event.trigger_timestamp / 1000, tz=dt.timezone.utc)
    drawdown = (event.trigger_price - event.lowest_price) / event.trigger_price * 100
    delay = (event.lowest_price_timestamp - event.trigger_timestamp) / 1000
    parts = [
        f"drop -{event.drop_percent:.1f}% at {event.trigger_price:.2f} ({trigger_time:%H:%M:%S} UTC)",
        f"further drawdown -{drawdown:.2f}% (low {event.lowest_price:.2f} after {delay:.0f}s)",
    ]
    recovery = []
    for seconds in RECOVERY_INTERVALS:
        change = recovery_at(event, seconds)
        if change is not None:
            recovery.append(f"{'+' if change >= 0 else ''}{change:.2f}% after {seconds // 60}min")
    if recovery:
        parts.append("recovery " + ", ".join(recovery))
    return "; ".join(parts)


async def persist_day(
    store: DropStore,
    symbol: str,
    start_ms: int,
    end_ms: int,
    results: Sequence[BacktestConfigResult],
) -> int:
    """Persist each result independently; return how many runs were written."""
    written = 0
    for result in results:
        try:
            run_id = await store.save_run(symbol, start_ms, end_ms, result, summarize(result.events))
        except Exception:
            logger.exception("Failed to persist run %s %s", symbol, result.config.label)
            continue
        if run_id is not None:
            written += 1
    return written


async def pending_configs(
    store: Optional[DropStore],
    symbol: str,
    start_ms: int,
    end_ms: int,
    configs: Sequence[DetectorConfig],
) -> List[DetectorConfig]:
    if store is None:
        return list(configs)
    pending = []
    for config in configs:
        if await store.run_exists(symbol, start_ms, end_ms, config):
            logger.info("  Skipped %s: already persisted", config.label)
        else:
            pending.append(config)
    return pending


async def download_command(args: argparse.Namespace) -> int:
    start = parse_day(args.date_from, "from")
    end = parse_day(args.date_to, "to")
    cache = KlineCache()
    async with aiohttp.ClientSession() as session:
        client = BinanceRestClient(session=session)
        for symbol in resolve_symbols(args.symbol):
            logger.info("Downloading %s...", symbol)
            await download_symbol(client, cache, symbol, start, end)
    return 0


async def run_command(args: argparse.Namespace) -> int:
    pattern = get_pattern(args.pattern)
    config_file = pattern.load_configs(args.config)
    configs = config_file.configs
    start = parse_day(args.date_from or config_file.date_from, "from")
    end = parse_day(args.date_to or config_file.date_to, "to")
    if end < start:
        raise ConfigurationError(f"--to {end} is before --from {start}")
    symbols = resolve_symbols(args.symbol)
    store = None if args.no_persist or args.dry_run else DropStore.from_uri(require_database_url())
    trailing = trailing_seconds(configs)
    days = days_between(start, end)
    logger.info(
        "Backtest [%s]: %s | %d day(s) from %s to %s (%d config(s))",
        pattern.name,
        ", ".join(symbols),
        len(days),
        start,
        end,
        len(configs),
    )

    cache = KlineCache()
    load_end = dt.datetime.fromtimestamp(
        (day_bounds_ms(end)[1] + trailing * 1000) / 1000, tz=dt.timezone.utc
    )
    async with aiohttp.ClientSession() as session:
        client = BinanceRestClient(session=session)
        for symbol in symbols:
            logger.info("Downloading %s...", symbol)
            await download_symbol(client, cache, symbol, start, load_end)
    if args.dry_run:
        logger.info("Dry run: data cached, no analysis performed")
        return 0

    analyzed = 0
    skipped = 0
    try:
        if store is not None:
            await store.init_db()
        for symbol in symbols:
            for day in days:
                start_ms, end_ms = day_bounds_ms(day)
                todo = await pending_configs(store, symbol, start_ms, end_ms, configs)
                if not todo:
                    skipped += 1
                    continue
                logger.info("Analyzing %s %s [%s]...", symbol, day.isoformat(), pattern.name)
                try:
                    results = await run_backtest(cache, symbol, start_ms, end_ms, todo)
                except NoDataError as exc:
                    logger.warning("%s", exc)
                    continue
                analyzed += 1
                for result in results:
                    log_event_summaries(result)
                if store is not None:
                    await persist_day(store, symbol, start_ms, end_ms, results)
    finally:
        if store is not None:
            await store.close()
    if analyzed == 0 and skipped == 0:
        logger.warning("No data: no cached day was analyzed in the requested range")
    return 0


async def analyze_command(args: argparse.Namespace) -> int:
    store = DropStore.from_uri(require_database_url())
    try:
        rows = await store.fetch_run_summaries(
            symbol=args.symbol.upper() if args.symbol else None,
            record_after_seconds=args.record_after,
        )
    finally:
        await store.close()
    if not rows:
        print("No data found. Run the backtester first.")
        return 0
    analyses = combine_daily_summaries(rows, fee_percent=args.fee)
    label = args.symbol.upper() if args.symbol else "ALL"
    print(f"\nAnalysis: {label} | Fee: {args.fee}% per side | {len(rows)} day-rows\n")
    print(format_table(analyses, fee_percent=args.fee))
    return 0


COMMANDS = {
    "download": download_command,
    "run": run_command,
    "analyze": analyze_command,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    args = parse_args(argv)
    started = time.perf_counter()
    try:
        status = asyncio.run(COMMANDS[args.command](args))
    except ConfigurationError as exc:
        logger.error("%s", exc)
        return 2
    except Exception:
        logger.exception("Fatal error")
        return 1
    logger.info("%s complete in %.1fs", args.command.capitalize(), time.perf_counter() - started)
    return status


if __name__ == "__main__":
    sys.exit(main())
