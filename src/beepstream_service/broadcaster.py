"""Live-connection registry that fans out events to WebSocket clients.

Each connection owns a bounded outbox drained by its own writer task, so
broadcasting never waits on a slow or dead peer. Registration, removal and
snapshotting of the live set happen under one lock; delivery iterates a
snapshot so a disconnect mid-broadcast cannot disturb iteration.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import threading
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from .config import ServiceConfig
from .errors import ChannelError
from .models import SERVER_EVENT_TYPES, Event

logger = logging.getLogger(__name__)

SendText = Callable[[str], Awaitable[None]]


class ClientConnection:
    """A single live client: an outbox queue plus the task that drains it."""

    def __init__(
        self,
        send_text: SendText,
        *,
        max_queue_size: int = 128,
        label: Optional[str] = None,
        on_failure: Optional[Callable[["ClientConnection"], Any]] = None,
    ) -> None:
        if max_queue_size <= 0:
            raise ValueError("max_queue_size must be positive")
        self.id = uuid.uuid4().hex[:12]
        self.label = label or self.id
        self.alive = True
        self._send_text = send_text
        self._queue: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=max_queue_size)
        self._on_failure = on_failure
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._writer: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"ClientConnection({self.label!r}, alive={self.alive})"

    def start(self) -> None:
        """Start the writer task on the running event loop."""
        self._loop = asyncio.get_running_loop()
        self._writer = self._loop.create_task(self._drain(), name=f"beepstream-ws-{self.id}")

    def enqueue(self, text: str) -> bool:
        """Queue text for delivery.

        Safe to call from any thread; delivery is marshalled onto the loop
        that owns the connection.

        Returns:
            False if the connection is dead and should be unregistered.
        """
        loop = self._loop
        if not self.alive or loop is None:
            return False

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            self._enqueue_nowait(text)
            return True

        try:
            loop.call_soon_threadsafe(self._enqueue_nowait, text)
        except RuntimeError:
            # Owning loop already closed.
            self.alive = False
            return False
        return True

    def _enqueue_nowait(self, text: Optional[str]) -> None:
        try:
            self._queue.put_nowait(text)
        except asyncio.QueueFull:
            try:
                dropped = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                dropped = None
            logger.warning(
                "Outbox full for connection %s; dropped oldest event (%d bytes)",
                self.label,
                len(dropped or ""),
            )
            try:
                self._queue.put_nowait(text)
            except asyncio.QueueFull:
                pass

    async def send(self, text: str) -> None:
        try:
            await self._send_text(text)
        except Exception as exc:
            raise ChannelError(f"send to {self.label} failed: {exc}") from exc

    async def _drain(self) -> None:
        while True:
            text = await self._queue.get()
            if text is None:
                return
            try:
                await self.send(text)
            except ChannelError as exc:
                self._fail(exc)
                return

    def _fail(self, exc: ChannelError) -> None:
        if not self.alive:
            return
        self.alive = False
        logger.warning("Removing dead live connection: %s", exc)
        if self._on_failure is not None:
            self._on_failure(self)

    async def close(self) -> None:
        """Stop the writer task. Queued but unsent events are discarded."""
        self.alive = False
        writer = self._writer
        if writer is None or writer.done():
            return
        writer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await writer


class EventBroadcaster:
    """Guarded registry of live connections with best-effort fan-out."""

    def __init__(self, *, max_queue_size: int = 128) -> None:
        if max_queue_size <= 0:
            raise ValueError("max_queue_size must be positive")
        self._max_queue_size = max_queue_size
        self._connections: Set[ClientConnection] = set()
        self._lock = threading.Lock()

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def open_connection(self, send_text: SendText, *, label: Optional[str] = None) -> ClientConnection:
        """Create, start and register a connection. Must run on the event loop."""
        conn = ClientConnection(
            send_text,
            max_queue_size=self._max_queue_size,
            label=label,
            on_failure=self.unregister,
        )
        conn.start()
        self.register(conn)
        return conn

    def register(self, conn: ClientConnection) -> None:
        with self._lock:
            self._connections.add(conn)
            total = len(self._connections)
        logger.info("Live client connected: %s (%d connected)", conn.label, total)

    def unregister(self, conn: ClientConnection) -> bool:
        """Remove a connection. Idempotent.

        Returns:
            True if the connection was registered before this call.
        """
        with self._lock:
            if conn not in self._connections:
                return False
            self._connections.discard(conn)
            total = len(self._connections)
        logger.info("Live client disconnected: %s (%d connected)", conn.label, total)
        return True

    def snapshot(self) -> List[ClientConnection]:
        with self._lock:
            return list(self._connections)

    def broadcast(self, event: Union[Event, Dict[str, Any]]) -> int:
        """Queue an event for every live connection.

        Returns:
            Number of connections the event was queued for.
        """
        text = event.to_json() if isinstance(event, Event) else json.dumps(event)
        return self._fan_out(text, exclude=None)

    def relay(self, origin: ClientConnection, raw_text: str) -> int:
        """Forward a peer's control message verbatim to every other connection.

        There is no schema or authorization on relayed payloads; this is a
        trust boundary suitable only for a single trusted deployment. Payloads
        that are not JSON, or that claim a server event type, are dropped.

        Returns:
            Number of peers the message was queued for.
        """
        try:
            payload = json.loads(raw_text)
        except ValueError:
            logger.warning("Ignoring non-JSON message from %s", origin.label)
            return 0

        if isinstance(payload, dict) and payload.get("type") in SERVER_EVENT_TYPES:
            logger.warning(
                "Ignoring %s from %s: server events cannot be relayed",
                payload.get("type"),
                origin.label,
            )
            return 0

        delivered = self._fan_out(raw_text, exclude=origin)
        logger.info("Relayed control message from %s to %d peer(s)", origin.label, delivered)
        return delivered

    def _fan_out(self, text: str, exclude: Optional[ClientConnection]) -> int:
        delivered = 0
        for conn in self.snapshot():
            if conn is exclude:
                continue
            if conn.enqueue(text):
                delivered += 1
            else:
                self.unregister(conn)
        return delivered

    async def close_all(self) -> None:
        for conn in self.snapshot():
            self.unregister(conn)
            await conn.close()


_broadcaster: EventBroadcaster | None = None
_broadcaster_lock = threading.Lock()


def get_broadcaster() -> EventBroadcaster:
    global _broadcaster
    with _broadcaster_lock:
        if _broadcaster is None:
            _broadcaster = EventBroadcaster(max_queue_size=ServiceConfig.from_env().outbox_size)
        return _broadcaster


def reset_for_tests() -> None:
    global _broadcaster
    with _broadcaster_lock:
        _broadcaster = None
