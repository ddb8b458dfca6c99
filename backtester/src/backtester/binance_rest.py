"""
Binance REST client for historical one-second klines.

:meth:`BinanceRestClient.fetch_klines` pages through ``/api/v3/klines``
1000 candles at a time, starting each page one millisecond after the
previous page's last close time, and stops when the range is exhausted or
a short page signals the end of the data.  Between pages it sleeps a fixed
delay to stay under the exchange's request weight limits.

Throttling responses (HTTP 429 and 503) are retried with exponential
backoff and random jitter: 2s, 4s, 8s and so on, each plus up to one
second.  After five attempts :class:`RetriesExhaustedError` is raised.  Any
other error status fails immediately with :class:`BinanceAPIError`.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import aiohttp
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from patterns.models import Kline

logger = logging.getLogger(__name__)

MAX_RETRIES = 5
PAGE_LIMIT = 1000
BATCH_DELAY_SECONDS = 0.5
THROTTLE_STATUSES = frozenset({429, 503})


class BinanceAPIError(RuntimeError):
    """Non-retryable error response from the REST API."""

    def __init__(self, status: int, message: str = "") -> None:
        super().__init__(f"Binance API error {status}: {message}")
        self.status = status


class ThrottledError(BinanceAPIError):
    """The API asked us to slow down (429/503)."""


class RetriesExhaustedError(BinanceAPIError):
    """A throttled request kept failing after every retry."""


class BinanceRestClient:
    """Asynchronous kline client with retry on throttling."""

    BASE_URL = "https://api.binance.com"
    KLINES_PATH = "/api/v3/klines"

    def __init__(
        self,
        base_url: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        *,
        batch_delay: float = BATCH_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Construct the client.

        Args:
            base_url: REST base URL; defaults to ``BINANCE_REST_URL`` or the
                public Binance endpoint.
            session: Optional shared ``aiohttp`` session.  When omitted a
                session is opened per request.
            batch_delay: Seconds to wait between successful pages.
            sleep: Coroutine used for every wait (pages and retries).
        """
        self.base_url = base_url or os.getenv("BINANCE_REST_URL", self.BASE_URL)
        self.session = session
        self.batch_delay = batch_delay
        self._sleep = sleep

    @staticmethod
    async def _handle_response_errors(resp: aiohttp.ClientResponse) -> None:
        if resp.status < 400:
            return
        text = await resp.text()
        truncated = text[:200] if text else ""
        if resp.status in THROTTLE_STATUSES:
            logger.warning("Rate limited (%s): %s", resp.status, truncated)
            raise ThrottledError(resp.status, truncated)
        logger.error("REST API error %s: %s", resp.status, truncated)
        raise BinanceAPIError(resp.status, truncated)

    async def _send(self, session: Any, path: str, params: Dict[str, Any]) -> Any:
        url = f"{self.base_url}{path}"
        async with session.get(url, params=params) as resp:
            await self._handle_response_errors(resp)
            return await resp.json()

    async def _request(self, path: str, params: Dict[str, Any]) -> Any:
        if self.session is not None:
            return await self._send(self.session, path, params)
        async with aiohttp.ClientSession() as session:
            return await self._send(session, path, params)

    async def get(self, path: str, params: Dict[str, Any]) -> Any:
        """GET ``path``, retrying throttled responses with backoff."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(MAX_RETRIES),
            wait=wait_exponential(multiplier=2) + wait_random(0, 1),
            retry=retry_if_exception_type(ThrottledError),
            sleep=self._sleep,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._request(path, params)
        except RetryError as exc:
            last = exc.last_attempt.exception()
            status = last.status if isinstance(last, BinanceAPIError) else 0
            raise RetriesExhaustedError(
                status, f"still throttled after {MAX_RETRIES} attempts"
            ) from exc

    async def fetch_klines(
        self,
        symbol: str,
        start_time: int,
        end_time: int,
        limit: int = PAGE_LIMIT,
    ) -> AsyncIterator[List[Kline]]:
        """Yield pages of 1s klines covering ``[start_time, end_time]`` (epoch ms)."""
        current = start_time
        while current < end_time:
            params = {
                "symbol": symbol.upper(),
                "interval": "1s",
                "startTime": current,
                "endTime": end_time,
                "limit": limit,
            }
            data = await self.get(self.KLINES_PATH, params)
            if not data:
                break
            yield [
                Kline(
                    open_time=int(k[0]),
                    open=float(k[1]),
                    high=float(k[2]),
                    low=float(k[3]),
                    close=float(k[4]),
                    volume=float(k[5]),
                )
                for k in data
            ]
            current = int(data[-1][6]) + 1
            if len(data) < limit:
                break
            await self._sleep(self.batch_delay)
