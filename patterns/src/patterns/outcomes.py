"""
Outcome metrics for completed drop events.

An outcome answers "what if we had bought at the trigger price": the best
and worst excursion over the recorded period, how long it took to get back
above the entry, and where the price ended.  ``summarize`` turns the
outcomes of one configuration into averages and medians suitable for the
run summary that is persisted alongside the events.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

import numpy as np

from .models import DropEvent, EventOutcome, OutcomeSummary


def compute_outcome(event: DropEvent) -> Optional[EventOutcome]:
    """Scan ``event.prices_after`` once and derive its outcome.

    Returns ``None`` when nothing was recorded after the trigger.
    """
    if not event.prices_after:
        return None
    entry = event.trigger_price
    max_profit = 0.0
    max_drawdown = 0.0
    time_to_max_profit = 0.0
    time_to_breakeven: Optional[float] = None
    for point in event.prices_after:
        change = (point.price - entry) / entry * 100
        elapsed = (point.timestamp - event.trigger_timestamp) / 1000
        if change > max_profit:
            max_profit = change
            time_to_max_profit = elapsed
        if -change > max_drawdown:
            max_drawdown = -change
        if time_to_breakeven is None and point.price > entry:
            time_to_breakeven = elapsed
    last = event.prices_after[-1]
    return EventOutcome(
        max_profit_percent=max_profit,
        max_drawdown_percent=max_drawdown,
        time_to_breakeven_seconds=time_to_breakeven,
        time_to_max_profit_seconds=time_to_max_profit,
        end_result_percent=(last.price - entry) / entry * 100,
    )


def recovery_at(event: DropEvent, seconds: int) -> Optional[float]:
    """Percent change from the trigger at the recorded point closest to ``seconds`` after it."""
    if not event.prices_after:
        return None
    target = event.trigger_timestamp + seconds * 1000
    closest = min(event.prices_after, key=lambda p: abs(p.timestamp - target))
    return (closest.price - event.trigger_price) / event.trigger_price * 100


def _mean(values: List[float]) -> Optional[float]:
    return float(np.mean(values)) if values else None


def _median(values: List[float]) -> Optional[float]:
    return float(np.median(values)) if values else None


def summarize(events: Iterable[DropEvent]) -> OutcomeSummary:
    """Aggregate the outcomes of ``events``.

    Events without a computable outcome are ignored entirely.
    """
    outcomes = [o for o in (compute_outcome(e) for e in events) if o is not None]
    if not outcomes:
        return OutcomeSummary()
    profits = [o.max_profit_percent for o in outcomes]
    drawdowns = [o.max_drawdown_percent for o in outcomes]
    breakevens = [
        o.time_to_breakeven_seconds
        for o in outcomes
        if o.time_to_breakeven_seconds is not None
    ]
    return OutcomeSummary(
        event_count=len(outcomes),
        profitable_count=len(breakevens),
        win_rate=len(breakevens) / len(outcomes),
        avg_max_profit=_mean(profits),
        median_max_profit=_median(profits),
        avg_max_drawdown=_mean(drawdowns),
        median_max_drawdown=_median(drawdowns),
        max_max_drawdown=max(drawdowns),
        avg_time_to_breakeven=_mean(breakevens),
        median_time_to_breakeven=_median(breakevens),
        avg_time_to_max_profit=_mean([o.time_to_max_profit_seconds for o in outcomes]),
        avg_end_result=_mean([o.end_result_percent for o in outcomes]),
    )
