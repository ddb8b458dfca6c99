"""
Live market data from the Binance one-second kline stream.

:class:`BinanceKlineStream` connects to ``<symbol>@kline_1s`` and yields a
:class:`PricePoint` for every *closed* candle (close price, candle open
time).  Candles that are still forming are ignored so that the live path
produces exactly the points a historical replay of the same period would.

The stream reconnects forever.  Failed connection attempts are retried with
tenacity using exponential backoff plus up to a second of jitter, capped at
60 seconds.  A connection that delivered data before dropping starts a fresh
retry schedule, so the backoff resets.

Usage:

    stream = BinanceKlineStream("BTCUSDT")
    async for point in stream.stream():
        ...
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import websockets
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    wait_exponential,
    wait_random,
)

from .models import PricePoint

logger = logging.getLogger(__name__)

DEFAULT_WS_URL = "wss://stream.binance.com:9443/ws"
MAX_RECONNECT_DELAY = 60.0
CONNECTION_ERRORS = (OSError, websockets.WebSocketException)


class StreamClosedError(ConnectionError):
    """The server ended the stream without an error frame."""


def parse_kline_message(message: Any) -> Optional[PricePoint]:
    """Convert a raw kline message into a price point.

    Returns ``None`` for candles that are not closed yet.

    Raises:
        ValueError: If the message is not a kline payload.
    """
    data = json.loads(message) if isinstance(message, (str, bytes)) else message
    try:
        kline = data["k"]
        if not kline["x"]:
            return None
        return PricePoint(
            symbol=str(data.get("s") or kline["s"]).upper(),
            timestamp=int(kline["t"]),
            price=float(kline["c"]),
        )
    except (KeyError, TypeError) as exc:
        raise ValueError(f"Not a kline message: {exc}") from exc


class BinanceKlineStream:
    """Reconnecting stream of closed 1s klines for one symbol."""

    def __init__(
        self,
        symbol: str,
        ws_url: Optional[str] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.symbol = symbol.lower()
        base = ws_url or os.getenv("BINANCE_WS_URL", DEFAULT_WS_URL)
        self.url = f"{base.rstrip('/')}/{self.symbol}@kline_1s"
        self._sleep = sleep
        self._running = False

    def stop(self) -> None:
        """Stop after the current connection ends."""
        self._running = False

    def _log_reconnect(self, retry_state: RetryCallState) -> None:
        logger.warning(
            "WebSocket connection error on %s: %s; reconnecting in %.1fs",
            self.url,
            retry_state.outcome.exception(),
            retry_state.next_action.sleep,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            wait=wait_exponential(multiplier=1, max=MAX_RECONNECT_DELAY) + wait_random(0, 1),
            retry=retry_if_exception_type(CONNECTION_ERRORS),
            before_sleep=self._log_reconnect,
            sleep=self._sleep,
        )

    def _parse(self, message: Any) -> Optional[PricePoint]:
        try:
            return parse_kline_message(message)
        except ValueError as exc:
            logger.debug("Ignoring message on %s: %s", self.url, exc)
            return None

    async def stream(self) -> AsyncIterator[PricePoint]:
        """Yield closed-candle price points until :meth:`stop` is called."""
        self._running = True
        while self._running:
            delivered = False
            async for attempt in self._retrying():
                with attempt:
                    try:
                        logger.info("Connecting to %s", self.url)
                        async with websockets.connect(self.url) as ws:
                            async for message in ws:
                                point = self._parse(message)
                                if point is None:
                                    continue
                                delivered = True
                                yield point
                                if not self._running:
                                    return
                        raise StreamClosedError(f"WebSocket {self.url} closed")
                    except CONNECTION_ERRORS as exc:
                        if not delivered:
                            raise
                        logger.warning("WebSocket %s dropped: %s", self.url, exc)
