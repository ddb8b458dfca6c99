"""
Domain models shared by the live monitor and the backtester.

Price samples and candles are small frozen dataclasses because millions
of them flow through a single backtest.  Detector configurations arrive
from JSON files and are validated with Pydantic so that a malformed file
fails before any network or disk I/O happens.  All timestamps are epoch
milliseconds (UTC).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class PricePoint:
    """A single price observation for one symbol."""

    symbol: str
    timestamp: int
    price: float


@dataclass(frozen=True)
class Kline:
    """One OHLCV candle as stored in the kline cache."""

    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    def to_price_point(self, symbol: str) -> PricePoint:
        """Derive the price sample fed to detectors (close price at open time)."""
        return PricePoint(symbol=symbol, timestamp=self.open_time, price=self.close)


class DetectorConfig(BaseModel):
    """Parameters of one rapid-drop detector.

    Field names follow the JSON config files (``windowSeconds``,
    ``dropPercent`` ...); snake_case names are accepted as well.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    window_seconds: int = Field(60, alias="windowSeconds", gt=0)
    drop_percent: float = Field(2.0, alias="dropPercent", gt=0)
    record_after_seconds: int = Field(120, alias="recordAfterSeconds", ge=0)
    cooldown_seconds: int = Field(300, alias="cooldownSeconds", ge=0)

    @property
    def key(self) -> Tuple[int, float, int, int]:
        return (
            self.window_seconds,
            self.drop_percent,
            self.record_after_seconds,
            self.cooldown_seconds,
        )

    @property
    def label(self) -> str:
        return f"{self.window_seconds}s/{self.drop_percent:g}%"

    @property
    def metric_label(self) -> str:
        """Unique per configuration, unlike ``label``."""
        return (
            f"{self.window_seconds}s/{self.drop_percent:g}%/"
            f"{self.record_after_seconds}s/{self.cooldown_seconds}s"
        )


@dataclass
class DropEvent:
    """A detected rapid drop and the prices recorded around it.

    The owning detector mutates the event while it is recording (appending
    to ``prices_after`` and tracking the lowest price).  Once handed to the
    caller the event is complete and must not be modified.
    """

    symbol: str
    trigger_price: float
    trigger_timestamp: int
    window_high: float
    drop_percent: float
    config_drop_percent: float
    lowest_price: float
    lowest_price_timestamp: int
    window_seconds: int
    prices_before: List[PricePoint] = field(default_factory=list)
    prices_after: List[PricePoint] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass
class BacktestConfigResult:
    """Events collected for one detector configuration in a backtest run."""

    config: DetectorConfig
    events: List[DropEvent] = field(default_factory=list)


@dataclass(frozen=True)
class EventOutcome:
    """Profitability figures of a single event, derived from ``prices_after``."""

    max_profit_percent: float
    max_drawdown_percent: float
    time_to_breakeven_seconds: Optional[float]
    time_to_max_profit_seconds: float
    end_result_percent: float


@dataclass(frozen=True)
class OutcomeSummary:
    """Aggregate outcome statistics for one configuration.

    Statistics are ``None`` when no event had a computable outcome.
    Breakeven times only cover events that reached breakeven.
    """

    event_count: int = 0
    profitable_count: int = 0
    win_rate: Optional[float] = None
    avg_max_profit: Optional[float] = None
    median_max_profit: Optional[float] = None
    avg_max_drawdown: Optional[float] = None
    median_max_drawdown: Optional[float] = None
    max_max_drawdown: Optional[float] = None
    avg_time_to_breakeven: Optional[float] = None
    median_time_to_breakeven: Optional[float] = None
    avg_time_to_max_profit: Optional[float] = None
    avg_end_result: Optional[float] = None
