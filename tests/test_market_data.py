"""Tests for the Binance kline stream.

``websockets.connect`` is monkeypatched with ``DummyWebSocket`` so the
tests run offline.
"""

from __future__ import annotations

from typing import List

import pytest

from patterns import market_data
from patterns.market_data import BinanceKlineStream, parse_kline_message
from tests.helpers.fake_streams import DummyWebSocket, kline_message


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def test_parse_closed_kline() -> None:
    point = parse_kline_message(kline_message("btcusdt", 1_000, 42.5))
    assert point.symbol == "BTCUSDT"
    assert point.timestamp == 1_000
    assert point.price == 42.5


def test_parse_ignores_open_kline() -> None:
    assert parse_kline_message(kline_message("BTCUSDT", 1_000, 42.5, closed=False)) is None


def test_parse_rejects_other_messages() -> None:
    with pytest.raises(ValueError):
        parse_kline_message('{"result": null, "id": 1}')


def test_stream_url(monkeypatch) -> None:
    monkeypatch.delenv("BINANCE_WS_URL", raising=False)
    assert BinanceKlineStream("BTCUSDT").url == "wss://stream.binance.com:9443/ws/btcusdt@kline_1s"
    assert BinanceKlineStream("ethusdt", ws_url="ws://localhost/ws/").url == (
        "ws://localhost/ws/ethusdt@kline_1s"
    )


@pytest.mark.asyncio
async def test_stream_yields_closed_candles_only(monkeypatch) -> None:
    messages = [
        kline_message("BTCUSDT", 0, 100.0, closed=False),
        kline_message("BTCUSDT", 0, 101.0),
        "not json at all {",
        {"e": "trade", "p": "1"},
        kline_message("BTCUSDT", 1000, 102.0),
    ]
    connects: List[str] = []

    def fake_connect(url):
        connects.append(url)
        return DummyWebSocket(list(messages))

    monkeypatch.setattr(market_data.websockets, "connect", fake_connect)
    stream = BinanceKlineStream("BTCUSDT", sleep=RecordingSleep())

    points = []
    async for point in stream.stream():
        points.append(point)
        if len(points) == 2:
            stream.stop()
    assert [(p.timestamp, p.price) for p in points] == [(0, 101.0), (1000, 102.0)]
    assert connects == [stream.url]


@pytest.mark.asyncio
async def test_stream_reconnects_with_backoff(monkeypatch) -> None:
    attempts = {"count": 0}

    def fake_connect(url):
        attempts["count"] += 1
        if attempts["count"] <= 2:
            raise OSError("connection refused")
        return DummyWebSocket([kline_message("BTCUSDT", 5000, 99.0)])

    monkeypatch.setattr(market_data.websockets, "connect", fake_connect)
    sleep = RecordingSleep()
    stream = BinanceKlineStream("BTCUSDT", sleep=sleep)

    async for point in stream.stream():
        assert point.price == 99.0
        stream.stop()
    assert attempts["count"] == 3
    assert len(sleep.calls) == 2
    assert 1.0 <= sleep.calls[0] < 2.0
    assert 2.0 <= sleep.calls[1] < 3.0


@pytest.mark.asyncio
async def test_backoff_is_capped(monkeypatch) -> None:
    attempts = {"count": 0}

    def fake_connect(url):
        attempts["count"] += 1
        if attempts["count"] <= 10:
            raise OSError("network unreachable")
        return DummyWebSocket([kline_message("BTCUSDT", 0, 99.0)])

    monkeypatch.setattr(market_data.websockets, "connect", fake_connect)
    sleep = RecordingSleep()
    stream = BinanceKlineStream("BTCUSDT", sleep=sleep)

    async for _ in stream.stream():
        stream.stop()
    assert len(sleep.calls) == 10
    assert max(sleep.calls) < market_data.MAX_RECONNECT_DELAY + 1
    assert sleep.calls[-1] >= market_data.MAX_RECONNECT_DELAY


@pytest.mark.asyncio
async def test_backoff_resets_after_connection_delivered_data(monkeypatch) -> None:
    connections = [
        DummyWebSocket([kline_message("BTCUSDT", 0, 100.0)]),
        OSError("connection reset"),
        OSError("connection reset"),
        DummyWebSocket([kline_message("BTCUSDT", 1000, 101.0)]),
        OSError("connection reset"),
        DummyWebSocket([kline_message("BTCUSDT", 2000, 102.0)]),
    ]

    def fake_connect(url):
        conn = connections.pop(0)
        if isinstance(conn, Exception):
            raise conn
        return conn

    monkeypatch.setattr(market_data.websockets, "connect", fake_connect)
    sleep = RecordingSleep()
    stream = BinanceKlineStream("BTCUSDT", sleep=sleep)

    prices = []
    async for point in stream.stream():
        prices.append(point.price)
        if len(prices) == 3:
            stream.stop()
    assert prices == [100.0, 101.0, 102.0]
    # Two failures back off 1s then 2s; after data arrived the schedule starts at 1s again
    assert len(sleep.calls) == 3
    assert 1.0 <= sleep.calls[0] < 2.0
    assert 2.0 <= sleep.calls[1] < 3.0
    assert 1.0 <= sleep.calls[2] < 2.0
