"""
Shared core for the rapid-drop pattern system.

This package holds the domain models, the drop detector state machine,
outcome statistics and the relational store used by both the live price
monitor (``patterns.monitor_main``) and the backtester.
"""

from .models import (  # noqa: F401
    BacktestConfigResult,
    DetectorConfig,
    DropEvent,
    EventOutcome,
    Kline,
    OutcomeSummary,
    PricePoint,
)
from .outcomes import compute_outcome, summarize  # noqa: F401
from .rapid_drop import RapidDropDetector, advance  # noqa: F401
