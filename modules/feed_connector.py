"""
feed_connector.py
-----------------
Persistent WebSocket session to the trade feed.

The connection lifecycle is an explicit state machine::

    DISCONNECTED → CONNECTING → CONNECTED → DISCONNECTED
                      │                         │
                      └──► DISCONNECTED ──► RECONNECT_PENDING ──► CONNECTING
    any ──► CLOSING ──► DISCONNECTED        (intentional, never reconnects)
    CONNECTING / CONNECTED ──► FAILED       (auth / policy rejection, fatal)

Abnormal closes and failed connects schedule exactly one reconnect after a
fixed delay. Raw frames are queued by a listener task and handed to the
trade handler by a single consumer task, so ticks are processed in arrival
order.
"""
from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Union

import websockets
from pydantic import ValidationError

from models.trade import TradeTick

TickCallback = Callable[[TradeTick], Union[Awaitable[None], None]]

# HTTP statuses at handshake and close codes that mean "you are not allowed"
AUTH_REJECT_STATUSES = {401, 403}
FATAL_CLOSE_CODES = {1003, 1008}


class FeedState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECT_PENDING = "reconnect_pending"
    CLOSING = "closing"
    FAILED = "failed"


_TRANSITIONS: Dict[FeedState, Set[FeedState]] = {
    FeedState.DISCONNECTED: {FeedState.CONNECTING, FeedState.RECONNECT_PENDING, FeedState.CLOSING},
    FeedState.CONNECTING: {FeedState.CONNECTED, FeedState.DISCONNECTED, FeedState.FAILED, FeedState.CLOSING},
    FeedState.CONNECTED: {FeedState.DISCONNECTED, FeedState.FAILED, FeedState.CLOSING},
    FeedState.RECONNECT_PENDING: {FeedState.CONNECTING, FeedState.CLOSING},
    FeedState.CLOSING: {FeedState.DISCONNECTED},
    FeedState.FAILED: {FeedState.CONNECTING, FeedState.CLOSING},
}


class FeedAuthError(Exception):
    """The feed refused us (HTTP 401/403 or close code 1008/1003)."""


class IllegalTransition(RuntimeError):
    pass


def _handshake_status(exc: BaseException) -> Optional[int]:
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    if status is None:
        status = getattr(exc, "status_code", None)
    return status


class FeedConnector:
    def __init__(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        logger: Optional[logging.Logger] = None,
        *,
        reconnect_delay: float = 5.0,
        shutdown_grace: float = 5.0,
        max_queue: int = 10_000,
        connect_fn: Optional[Callable[..., Awaitable[Any]]] = None,
    ) -> None:
        self.url = url
        self.headers = headers
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self.reconnect_delay = reconnect_delay
        self.shutdown_grace = shutdown_grace
        self._connect_fn = connect_fn or websockets.connect

        self.state = FeedState.DISCONNECTED
        self.fatal_error: Optional[FeedAuthError] = None
        self._failed = asyncio.Event()

        self.ws: Any = None
        self.queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue(maxsize=max_queue)
        self._handlers: List[TickCallback] = []

        self._subscribe_all = False
        self._tickers: Set[str] = set()

        self._listener_task: Optional[asyncio.Task] = None
        self._consumer_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------ #
    # State machine
    # ------------------------------------------------------------------ #
    def _transition(self, new: FeedState) -> None:
        if new not in _TRANSITIONS[self.state]:
            raise IllegalTransition(f"{self.state.value} → {new.value}")
        self.logger.debug("Feed state %s → %s", self.state.value, new.value)
        self.state = new

    @property
    def is_connected(self) -> bool:
        return self.state is FeedState.CONNECTED

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    async def wait_failed(self) -> FeedAuthError:
        await self._failed.wait()
        return self.fatal_error

    def _fail(self, message: str) -> FeedAuthError:
        self._transition(FeedState.FAILED)
        self.fatal_error = FeedAuthError(message)
        self.logger.error("❌ %s", message)
        self.logger.error("   This usually means authentication is required. Check API_KEY.")
        self._failed.set()
        return self.fatal_error

    # ------------------------------------------------------------------ #
    # Connect / disconnect
    # ------------------------------------------------------------------ #
    async def connect(self) -> bool:
        """
        Open the session. Returns True when connected, False when the attempt
        failed and a reconnect has been scheduled. Raises FeedAuthError when
        the feed rejects our credentials.
        """
        if self.state is FeedState.CONNECTED:
            return True
        if self._reconnect_task is not None and self._reconnect_task is not asyncio.current_task():
            self._reconnect_task.cancel()
        self._reconnect_task = None

        self._transition(FeedState.CONNECTING)
        try:
            ws = await self._connect_fn(self.url, additional_headers=self.headers)
        except Exception as exc:
            if self.state is not FeedState.CONNECTING:
                return False
            status = _handshake_status(exc)
            if status in AUTH_REJECT_STATUSES:
                raise self._fail(f"WebSocket handshake rejected: HTTP {status}") from exc
            self.logger.error("❌ WebSocket connect failed: %s", exc)
            self._transition(FeedState.DISCONNECTED)
            self._schedule_reconnect()
            return False

        if self.state is not FeedState.CONNECTING:
            # disconnect() raced the handshake
            await ws.close()
            return False

        self.ws = ws
        self._transition(FeedState.CONNECTED)
        self.logger.info("✅ Connected to feed %s", self.url)

        loop = asyncio.get_running_loop()
        if self._consumer_task is None or self._consumer_task.done():
            self._consumer_task = loop.create_task(self._consume())
        self._listener_task = loop.create_task(self._listen(ws))
        await self._resubscribe()
        return True

    async def disconnect(self) -> None:
        """Intentional shutdown: close the socket, never reconnect."""
        if self.state is FeedState.CLOSING:
            return
        self._transition(FeedState.CLOSING)

        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

        if self.ws is not None:
            try:
                await self.ws.close()
            except Exception as exc:
                self.logger.debug("Error while closing socket: %s", exc)

        if self._listener_task is not None:
            self._listener_task.cancel()
            await asyncio.gather(self._listener_task, return_exceptions=True)
            self._listener_task = None

        if self._consumer_task is not None:
            dropped = self._drop_pending()
            if dropped:
                self.logger.info("Dropped %d unprocessed trade frame(s) on shutdown", dropped)
            self.queue.put_nowait(None)
            # the tick in flight gets the grace period, then the consumer is cancelled
            done, _ = await asyncio.wait({self._consumer_task}, timeout=self.shutdown_grace)
            if not done:
                self.logger.warning("Trade handler still busy after %.1fs, cancelling", self.shutdown_grace)
                self._consumer_task.cancel()
            await asyncio.gather(self._consumer_task, return_exceptions=True)
            self._consumer_task = None
            self._drop_pending()

        self.ws = None
        self._transition(FeedState.DISCONNECTED)
        self.logger.info("🔌 Feed connection closed intentionally")

    def _drop_pending(self) -> int:
        dropped = 0
        while True:
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                return dropped
            dropped += 1

    def _schedule_reconnect(self) -> None:
        if self.reconnect_pending:
            return
        if self.state is not FeedState.DISCONNECTED:
            return
        self._transition(FeedState.RECONNECT_PENDING)
        self.logger.info("🔄 Reconnecting in %.0f seconds...", self.reconnect_delay)
        self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect_after())

    async def _reconnect_after(self) -> None:
        await asyncio.sleep(self.reconnect_delay)
        try:
            await self.connect()
        except FeedAuthError:
            pass  # recorded in fatal_error / wait_failed()

    # ------------------------------------------------------------------ #
    # Subscriptions
    # ------------------------------------------------------------------ #
    async def subscribe_all(self) -> None:
        self._subscribe_all = True
        await self._send({"type": "subscribe", "channel": "trades", "all": True})
        self.logger.info("📡 Subscribed to all trades")

    async def subscribe(self, tickers: Iterable[str]) -> None:
        tickers = list(tickers)
        self._tickers.update(tickers)
        await self._send({"type": "subscribe", "channel": "trades", "tickers": tickers})
        self.logger.info("📡 Subscribed to %d ticker(s): %s", len(tickers), ", ".join(tickers))

    async def unsubscribe_all(self) -> None:
        self._subscribe_all = False
        self._tickers.clear()
        await self._send({"type": "unsubscribe", "channel": "trades", "all": True})

    async def unsubscribe(self, tickers: Iterable[str]) -> None:
        tickers = list(tickers)
        self._tickers.difference_update(tickers)
        await self._send({"type": "unsubscribe", "channel": "trades", "tickers": tickers})

    async def _resubscribe(self) -> None:
        if self._subscribe_all:
            await self._send({"type": "subscribe", "channel": "trades", "all": True})
        elif self._tickers:
            await self._send({"type": "subscribe", "channel": "trades", "tickers": sorted(self._tickers)})

    async def _send(self, message: Dict[str, Any]) -> None:
        """Send when connected; otherwise the request is replayed on connect."""
        if not self.is_connected or self.ws is None:
            self.logger.debug("Not connected, deferring %s", message)
            return
        try:
            await self.ws.send(json.dumps(message))
        except Exception as exc:
            self.logger.error("❌ Failed to send %s: %s", message.get("type"), exc)

    # ------------------------------------------------------------------ #
    # Inbound
    # ------------------------------------------------------------------ #
    def on_trade(self, handler: TickCallback) -> None:
        self._handlers.append(handler)

    async def _listen(self, ws: Any) -> None:
        code: Optional[int] = None
        reason = ""
        try:
            async for raw in ws:
                await self.queue.put(raw)
            code = getattr(ws, "close_code", None)
            reason = getattr(ws, "close_reason", "") or ""
        except websockets.exceptions.ConnectionClosed as exc:
            if exc.rcvd is not None:
                code, reason = exc.rcvd.code, exc.rcvd.reason
        except asyncio.CancelledError:
            raise
        except Exception:
            self.logger.exception("Listen loop crashed")
        self._on_closed(code, reason)

    def _on_closed(self, code: Optional[int], reason: str) -> None:
        if self.state is not FeedState.CONNECTED:
            return  # CLOSING: disconnect() owns the transition
        self.ws = None
        if code in FATAL_CLOSE_CODES:
            self._fail(f"WebSocket closed by server (code: {code}): {reason or 'policy violation or authentication required'}")
            return
        self.logger.warning("🔌 WebSocket connection closed (code: %s)%s", code or "unknown", f": {reason}" if reason else "")
        self._transition(FeedState.DISCONNECTED)
        self._schedule_reconnect()

    async def _consume(self) -> None:
        while True:
            raw = await self.queue.get()
            if raw is None:
                break
            if self.state is FeedState.CLOSING:
                continue
            try:
                await self._dispatch(raw)
            except Exception as exc:
                self.logger.exception("Trade handler crashed: %s", exc)

    async def _dispatch(self, raw: Union[str, bytes]) -> None:
        try:
            msg = json.loads(raw)
        except (TypeError, ValueError):
            self.logger.warning("Malformed feed payload: %r", raw)
            return
        if not isinstance(msg, dict) or msg.get("channel") != "trades" or msg.get("type") != "trade":
            return

        try:
            tick = TradeTick.model_validate(msg)
        except ValidationError as exc:
            self.logger.warning("❌ Invalid trade payload skipped: %s", exc.errors()[0].get("msg"))
            return

        for handler in self._handlers:
            res = handler(tick)
            if asyncio.iscoroutine(res):
                await res
