"""Streaming reference-price feeds over public websockets.

Each feed runs a ``websocket.WebSocketApp`` in a daemon thread with reconnect
backoff and keeps only the latest price per symbol. The trading loop pulls
values through ``latest()``; it never sees callback state mid-update.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional

import websocket

logger = logging.getLogger("updownStrategy.exchange.price_feeds")

OKX_PUBLIC_WS = "wss://ws.okx.com:8443/ws/v5/public"
BINANCE_STREAM_WS = "wss://stream.binance.com:9443/stream"


class FeedState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(slots=True, frozen=True)
class PriceTick:
    symbol: str
    price: float
    received_at: float


class StreamingPriceFeed(ABC):
    """Base class owning the connection state machine and the latest ticks."""

    name = "feed"

    def __init__(self, symbols: Iterable[str], *, max_age: float = 5.0) -> None:
        self.symbols = [symbol for symbol in symbols if symbol]
        self.max_age = max_age
        self._lock = threading.Lock()
        self._ticks: dict[str, PriceTick] = {}
        self._state = FeedState.DISCONNECTED
        self._ws: Optional[websocket.WebSocketApp] = None
        self._thread: Optional[threading.Thread] = None
        self._should_stop = threading.Event()

    @property
    def state(self) -> FeedState:
        with self._lock:
            return self._state

    def _set_state(self, state: FeedState) -> None:
        with self._lock:
            previous = self._state
            self._state = state
        if previous != state:
            logger.info("%s feed %s -> %s", self.name, previous.value, state.value)

    @property
    @abstractmethod
    def url(self) -> str:
        """Websocket endpoint."""

    @abstractmethod
    def _subscribe(self, ws: websocket.WebSocketApp) -> None:
        """Send subscription frames after the socket opens."""

    @abstractmethod
    def _parse(self, payload: Any) -> list[tuple[str, float]]:
        """Extract ``(symbol, price)`` pairs from one decoded message."""

    def update(self, symbol: str, price: float, *, now: Optional[float] = None) -> None:
        if price <= 0:
            return
        tick = PriceTick(symbol=symbol.upper(), price=price, received_at=time.time() if now is None else now)
        with self._lock:
            self._ticks[tick.symbol] = tick

    def latest(self, symbol: str, *, now: Optional[float] = None) -> Optional[float]:
        """Latest price for ``symbol`` when it is fresher than ``max_age`` seconds."""

        current = time.time() if now is None else now
        with self._lock:
            tick = self._ticks.get(symbol.upper())
        if tick is None or current - tick.received_at > self.max_age:
            return None
        return tick.price

    def _on_open(self, ws: websocket.WebSocketApp) -> None:
        self._set_state(FeedState.CONNECTED)
        self._subscribe(ws)

    def _on_message(self, ws: websocket.WebSocketApp, message: str) -> None:  # noqa: ARG002
        try:
            payload = json.loads(message)
        except ValueError:
            return
        for symbol, price in self._parse(payload):
            self.update(symbol, price)

    def _on_error(self, ws: websocket.WebSocketApp, error: Exception) -> None:  # noqa: ARG002
        logger.warning("%s feed error: %s", self.name, error)

    def _on_close(self, ws: websocket.WebSocketApp, status_code: Any, msg: Any) -> None:  # noqa: ARG002
        self._set_state(FeedState.DISCONNECTED)

    def start(self) -> None:
        if not self.symbols:
            logger.info("%s feed has no symbols; not starting", self.name)
            return
        if self._thread and self._thread.is_alive():
            return
        self._should_stop.clear()

        def _run() -> None:
            backoff = 1
            while not self._should_stop.is_set():
                self._set_state(FeedState.CONNECTING)
                self._ws = websocket.WebSocketApp(
                    self.url,
                    on_open=self._on_open,
                    on_message=self._on_message,
                    on_error=self._on_error,
                    on_close=self._on_close,
                )
                try:
                    self._ws.run_forever(ping_interval=20, ping_timeout=10)
                    backoff = 1
                except Exception as exc:  # noqa: BLE001
                    logger.exception("%s feed crashed: %s", self.name, exc)
                self._set_state(FeedState.DISCONNECTED)
                if self._should_stop.wait(backoff):
                    break
                backoff = min(60, backoff * 2)

        self._thread = threading.Thread(target=_run, name=f"{self.name}Feed", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._should_stop.set()
        if self._ws is not None:
            try:
                self._ws.close()
            except Exception as exc:  # noqa: BLE001
                logger.debug("%s feed close failed: %s", self.name, exc)
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        self._thread = None
        self._set_state(FeedState.DISCONNECTED)


class OkxTickerFeed(StreamingPriceFeed):
    """Primary source: OKX spot tickers (``BTC-USDT`` style instIds)."""

    name = "okx"

    @property
    def url(self) -> str:
        return OKX_PUBLIC_WS

    def _subscribe(self, ws: websocket.WebSocketApp) -> None:
        args = [{"channel": "tickers", "instId": symbol} for symbol in self.symbols]
        ws.send(json.dumps({"op": "subscribe", "args": args}))

    def _parse(self, payload: Any) -> list[tuple[str, float]]:
        if not isinstance(payload, dict):
            return []
        if payload.get("event") == "error":
            logger.warning("OKX subscription error: %s", payload.get("msg"))
            return []
        ticks: list[tuple[str, float]] = []
        for row in payload.get("data") or []:
            if not isinstance(row, dict):
                continue
            try:
                ticks.append((str(row["instId"]), float(row["last"])))
            except (KeyError, TypeError, ValueError):
                continue
        return ticks


class BinanceTradeFeed(StreamingPriceFeed):
    """Secondary source: Binance aggTrade combined stream (``btcusdt`` symbols)."""

    name = "binance"

    @property
    def url(self) -> str:
        streams = "/".join(f"{symbol.lower()}@aggTrade" for symbol in self.symbols)
        return f"{BINANCE_STREAM_WS}?streams={streams}"

    def _subscribe(self, ws: websocket.WebSocketApp) -> None:  # noqa: ARG002
        # streams are selected in the URL
        return None

    def _parse(self, payload: Any) -> list[tuple[str, float]]:
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            return []
        try:
            return [(str(data["s"]), float(data["p"]))]
        except (KeyError, TypeError, ValueError):
            return []
