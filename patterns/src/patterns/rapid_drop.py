"""Rapid-drop pattern detector
=============================

The detector watches a rolling time window of prices for one symbol.
When the latest price sits at least ``drop_percent`` below the highest
price in the window, it triggers: a :class:`DropEvent` is created with a
snapshot of the window and the detector starts recording every following
price into the event.  Once ``record_after_seconds`` have elapsed since the
trigger the event is emitted and the detector goes back to idle.

State lives in an explicit :class:`DetectorState` record whose ``phase`` is
either :class:`Idle` or :class:`Recording`; :func:`advance` is the single
transition function.  :class:`RapidDropDetector` wraps the two for callers
that just want ``feed(point)``.

Rules
-----

* The window keeps only points with ``timestamp > latest - window_seconds``.
* No trigger can happen while recording, so events never overlap.
* A new trigger additionally requires more than ``cooldown_seconds`` since
  the previous trigger (not since the previous completion).  Before the
  first trigger there is no cooldown.
* Input is not validated; prices are assumed positive and timestamps
  non-decreasing.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Optional, Tuple, Union

from .models import DetectorConfig, DropEvent, PricePoint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Idle:
    """No event is being recorded."""


@dataclass(frozen=True)
class Recording:
    """An event is being recorded until ``end_timestamp``."""

    event: DropEvent
    end_timestamp: int
    window_high: float


Phase = Union[Idle, Recording]


@dataclass
class DetectorState:
    """Everything one detector owns.

    ``window`` holds the rolling window oldest-first; ``window_max`` is a
    monotonic deque over the same points whose head is the window high.
    """

    window: Deque[PricePoint] = field(default_factory=deque)
    window_max: Deque[PricePoint] = field(default_factory=deque)
    last_trigger_timestamp: Optional[int] = None
    phase: Phase = field(default_factory=Idle)


def _push(state: DetectorState, point: PricePoint, window_seconds: int) -> None:
    cutoff = point.timestamp - window_seconds * 1000
    window = state.window
    while window and window[0].timestamp <= cutoff:
        window.popleft()
    window.append(point)

    window_max = state.window_max
    while window_max and window_max[0].timestamp <= cutoff:
        window_max.popleft()
    while window_max and window_max[-1].price <= point.price:
        window_max.pop()
    window_max.append(point)


def advance(
    state: DetectorState, point: PricePoint, config: DetectorConfig
) -> Tuple[DetectorState, Optional[DropEvent]]:
    """Apply one price point to ``state``.

    The state is updated in place and returned together with the event that
    completed on this point, if any.  Nothing else is touched, so the
    function can be driven directly in tests without time or I/O.
    """
    _push(state, point, config.window_seconds)

    phase = state.phase
    if isinstance(phase, Recording):
        event = phase.event
        event.prices_after.append(point)
        current_drop = (phase.window_high - point.price) / phase.window_high * 100
        if current_drop > event.drop_percent:
            event.drop_percent = current_drop
        if point.price < event.lowest_price:
            event.lowest_price = point.price
            event.lowest_price_timestamp = point.timestamp
        if point.timestamp >= phase.end_timestamp:
            state.phase = Idle()
            logger.debug(
                "Recording complete for %s: %d points, max drop %.2f%%",
                event.symbol,
                len(event.prices_after),
                event.drop_percent,
            )
            return state, event
        return state, None

    if len(state.window) < 2:
        return state, None

    window_high = state.window_max[0].price
    drop_percent = (window_high - point.price) / window_high * 100
    if drop_percent < config.drop_percent:
        return state, None
    last = state.last_trigger_timestamp
    if last is not None and point.timestamp - last <= config.cooldown_seconds * 1000:
        return state, None

    state.last_trigger_timestamp = point.timestamp
    event = DropEvent(
        symbol=point.symbol,
        trigger_price=point.price,
        trigger_timestamp=point.timestamp,
        window_high=window_high,
        drop_percent=drop_percent,
        config_drop_percent=config.drop_percent,
        lowest_price=point.price,
        lowest_price_timestamp=point.timestamp,
        window_seconds=config.window_seconds,
        prices_before=list(state.window),
    )
    state.phase = Recording(
        event=event,
        end_timestamp=point.timestamp + config.record_after_seconds * 1000,
        window_high=window_high,
    )
    logger.debug(
        "Drop detected on %s: -%.2f%% in %ds (%.2f -> %.2f), recording %ds",
        point.symbol,
        drop_percent,
        config.window_seconds,
        window_high,
        point.price,
        config.record_after_seconds,
    )
    return state, None


class RapidDropDetector:
    """Stateful wrapper around :func:`advance` for a single configuration.

    Args:
        config: Detector parameters.
        on_complete: Optional callback invoked with each completed event,
            after which the event belongs to the callback.
    """

    def __init__(
        self,
        config: Optional[DetectorConfig] = None,
        on_complete: Optional[Callable[[DropEvent], None]] = None,
    ) -> None:
        self.config = config or DetectorConfig()
        self.on_complete = on_complete
        self.state = DetectorState()

    def feed(self, point: PricePoint) -> Optional[DropEvent]:
        """Process one point and return the event it completed, if any."""
        self.state, completed = advance(self.state, point, self.config)
        if completed is not None and self.on_complete is not None:
            self.on_complete(completed)
        return completed

    @property
    def is_recording(self) -> bool:
        return isinstance(self.state.phase, Recording)

    @property
    def active_event(self) -> Optional[DropEvent]:
        phase = self.state.phase
        return phase.event if isinstance(phase, Recording) else None

    @property
    def window(self) -> Tuple[PricePoint, ...]:
        return tuple(self.state.window)
