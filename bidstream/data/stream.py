"""
Real-time event stream from the marketplace server.

One persistent WebSocket to `/ws` on the origin host carries server-push
notifications as JSON envelopes: {"type": "new-bid", "data": {...}}.

Connection lifecycle:
    DISCONNECTED -> CONNECTING -> OPEN
    OPEN -> (unexpected close) -> reconnect in 3s
    CONNECTING -> (attempt failed) -> retry in 5s
    OPEN -> (clean server close / disconnect()) -> DISCONNECTED, terminal

Automatic and manual reconnects both go through `_open()`. Intentional
closes detach the transport before closing it, so the close is never
mistaken for a connection loss and never schedules a reconnect.
"""

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional
from urllib.parse import urlparse

import aiohttp

from config.settings import (
    ORIGIN,
    STREAM_PATH,
    RECONNECT_DELAY,
    RETRY_DELAY,
    STREAM_HEARTBEAT,
)
from bidstream.errors import StreamConnectionError

logger = logging.getLogger(__name__)

# Topics pushed by the server
NEW_BID = "new-bid"
NEW_AUCTION = "new-auction"


class StreamState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


def build_stream_url(origin: str, path: str = STREAM_PATH) -> str:
    """wss:// for a secure origin, ws:// otherwise."""
    parsed = urlparse(origin if "://" in origin else f"http://{origin}")
    scheme = "wss" if parsed.scheme in ("https", "wss") else "ws"
    return f"{scheme}://{parsed.netloc}{path}"


@dataclass(eq=False)
class Subscription:
    """A handler registered for one topic. Compared by identity."""
    topic: str
    handler: Callable[[Any], Any]
    active: bool = True


class EventStreamClient:
    """
    Publish/subscribe client over a single auto-reconnecting WebSocket.

    Usage:
        stream = EventStreamClient(origin="https://bidcoin.example")
        unsubscribe = stream.subscribe("new-bid", on_bid)
        await stream.connect()
        await stream.send("ping", {})
        ...
        unsubscribe()
        await stream.disconnect()
    """

    def __init__(
        self,
        origin: str = ORIGIN,
        session: Optional[aiohttp.ClientSession] = None,
        reconnect_delay: float = RECONNECT_DELAY,
        retry_delay: float = RETRY_DELAY,
        heartbeat: Optional[float] = STREAM_HEARTBEAT,
        url: Optional[str] = None,
    ):
        self.url = url or build_stream_url(origin)
        self.reconnect_delay = reconnect_delay
        self.retry_delay = retry_delay
        self.heartbeat = heartbeat

        self.state = StreamState.DISCONNECTED
        self.error: Optional[StreamConnectionError] = None
        self.messages_received: int = 0
        self.connect_count: int = 0
        self.close_count: int = 0
        self.reconnect_count: int = 0

        self._session = session
        self._owns_session = session is None
        self._handlers: dict[str, list[Subscription]] = {}
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader: Optional[asyncio.Task] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._handler_tasks: set[asyncio.Task] = set()
        self._opened = asyncio.Event()
        self._terminal = False

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    @property
    def is_connected(self) -> bool:
        return self.state == StreamState.OPEN

    @property
    def is_terminal(self) -> bool:
        return self._terminal

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    # ================================================================
    # Subscriptions
    # ================================================================

    def subscribe(self, topic: str, handler: Callable[[Any], Any]) -> Callable[[], None]:
        """
        Register a handler for a topic.

        Returns:
            A function that removes exactly this registration
        """
        sub = Subscription(topic=topic, handler=handler)
        self._handlers.setdefault(topic, []).append(sub)

        def unsubscribe():
            sub.active = False
            subs = self._handlers.get(topic)
            if subs and sub in subs:
                subs.remove(sub)
                if not subs:
                    del self._handlers[topic]

        return unsubscribe

    def subscriber_count(self, topic: str) -> int:
        return len(self._handlers.get(topic, ()))

    # ================================================================
    # Connection lifecycle
    # ================================================================

    async def connect(self):
        """Start connecting. Returns immediately; see wait_until_open()."""
        if self._terminal:
            logger.warning("Stream was disconnected; create a new client to reconnect")
            return
        if self._ws is not None or (self._connect_task and not self._connect_task.done()):
            return
        logger.info(f"Stream connecting to {self.url}")
        self._start_attempt()

    async def wait_until_open(self, timeout: Optional[float] = None) -> bool:
        """Block until the stream is OPEN. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._opened.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def reconnect(self) -> bool:
        """
        Tear down the current transport and connect again right away,
        bypassing any scheduled reconnect.

        Returns:
            True if the new connection is OPEN
        """
        if self._terminal:
            logger.warning("Reconnect ignored: stream was disconnected")
            return False

        self._cancel_reconnect_timer()
        await self._cancel_connect_task()
        await self._close_transport()

        self.reconnect_count += 1
        logger.info("Stream reconnecting (forced)")
        task = self._start_attempt()
        await asyncio.wait({task})
        return self.state == StreamState.OPEN

    async def disconnect(self):
        """Close for good. No reconnect is scheduled after this returns."""
        self._terminal = True
        self._cancel_reconnect_timer()
        await self._cancel_connect_task()
        await self._close_transport()
        self.state = StreamState.DISCONNECTED

        for task in list(self._handler_tasks):
            task.cancel()

        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None
        logger.info("Stream disconnected")

    def _start_attempt(self) -> asyncio.Task:
        self._cancel_reconnect_timer()
        if self._connect_task and not self._connect_task.done():
            self._connect_task.cancel()
        self._connect_task = asyncio.ensure_future(self._open())
        return self._connect_task

    async def _open(self) -> bool:
        """The single connection routine used by every (re)connect path."""
        self.state = StreamState.CONNECTING
        try:
            ws = await self.session.ws_connect(self.url, heartbeat=self.heartbeat)
        except Exception as e:
            self.error = StreamConnectionError(f"Stream connection failed: {e}")
            self.state = StreamState.DISCONNECTED
            logger.error(f"{self.error} - retrying in {self.retry_delay}s")
            self._schedule_reconnect(self.retry_delay)
            return False

        if self._terminal:
            await ws.close()
            return False

        self._ws = ws
        self.state = StreamState.OPEN
        self.error = None
        self.connect_count += 1
        self._opened.set()
        self._reader = asyncio.ensure_future(self._read_loop(ws))
        logger.info("Stream connected")
        return True

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse):
        """Read one transport until it closes. Messages in arrival order."""
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_message(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    self.error = StreamConnectionError(f"Stream error: {ws.exception()}")
                    logger.error(str(self.error))
                    break
        except Exception as e:
            self.error = StreamConnectionError(f"Stream read failed: {e}")
            logger.error(str(self.error))

        await self._on_transport_closed(ws)

    async def _on_transport_closed(self, ws: aiohttp.ClientWebSocketResponse):
        if ws is not self._ws:
            # Detached by reconnect()/disconnect(): intentional close
            return

        close_code = ws.close_code
        self._ws = None
        self._reader = None
        self._opened.clear()
        self.close_count += 1
        if not ws.closed:
            await ws.close()

        if close_code == aiohttp.WSCloseCode.OK:
            logger.info("Stream closed cleanly by server")
            self._terminal = True
            self.state = StreamState.DISCONNECTED
            return

        self.state = StreamState.DISCONNECTED
        logger.info(f"Stream lost (code={close_code}) - reconnecting in {self.reconnect_delay}s")
        self._schedule_reconnect(self.reconnect_delay)

    async def _close_transport(self):
        """Detach, then close. Ordering suppresses auto-reconnect."""
        ws, self._ws = self._ws, None
        reader, self._reader = self._reader, None
        self._opened.clear()

        if ws is not None:
            self.state = StreamState.CLOSING
            if not ws.closed:
                await ws.close()
            self.close_count += 1

        if reader is not None and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

    async def _cancel_connect_task(self):
        task, self._connect_task = self._connect_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _schedule_reconnect(self, delay: float):
        """At most one pending timer; a new schedule replaces the old one."""
        self._cancel_reconnect_timer()
        if self._terminal:
            return
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(delay, self._fire_reconnect)

    def _cancel_reconnect_timer(self):
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _fire_reconnect(self):
        self._reconnect_handle = None
        if self._terminal:
            return
        self.reconnect_count += 1
        logger.info("Stream reconnecting...")
        self._start_attempt()

    # ================================================================
    # Messages
    # ================================================================

    async def send(self, msg_type: str, data: Any = None) -> bool:
        """
        Send a tagged message now.

        Returns:
            False if the stream is not OPEN (nothing is queued) or the
            transport failed mid-send
        """
        ws = self._ws
        if self.state != StreamState.OPEN or ws is None or ws.closed:
            return False

        payload = json.dumps({"type": msg_type, "data": data})
        try:
            await ws.send_str(payload)
            return True
        except (ConnectionError, aiohttp.ClientError, RuntimeError) as e:
            logger.warning(f"Stream send failed ({msg_type}): {e}")
            return False

    def _handle_message(self, raw: str):
        """Parse an envelope and dispatch it. Malformed input is dropped."""
        try:
            message = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.debug(f"Stream parse error: {e}")
            return

        if not isinstance(message, dict) or not isinstance(message.get('type'), str):
            logger.debug(f"Stream message without type dropped: {raw[:80]}")
            return

        self.messages_received += 1
        self._dispatch(message['type'], message.get('data'))

    def _dispatch(self, topic: str, data: Any):
        for sub in list(self._handlers.get(topic, ())):
            if not sub.active:
                continue
            try:
                result = sub.handler(data)
            except Exception:
                logger.exception(f"Stream handler for '{topic}' failed")
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._handler_tasks.add(task)
                task.add_done_callback(self._handler_done)

    def _handler_done(self, task: asyncio.Task):
        self._handler_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Async stream handler failed: {task.exception()}")

    def status(self) -> dict:
        return {
            'url': self.url,
            'state': self.state.value,
            'error': str(self.error) if self.error else None,
            'messages_received': self.messages_received,
            'connect_count': self.connect_count,
            'close_count': self.close_count,
            'reconnect_count': self.reconnect_count,
            'reconnect_pending': self.reconnect_pending,
            'topics': {t: len(s) for t, s in self._handlers.items()},
        }
