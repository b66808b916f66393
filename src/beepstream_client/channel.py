"""WebSocket client for the daemon's /ws live channel.

Runs in a background thread, reconnects with capped exponential backoff,
and exposes a binary connected flag for the dashboard indicator.
"""

from __future__ import annotations

import json
import logging
import random
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import websocket

logger = logging.getLogger(__name__)

KILL_SWITCH = "KILL_SWITCH"

MessageCallback = Callable[[Dict[str, Any]], Any]
StateCallback = Callable[[bool], Any]


def kill_switch_payload(action: str = "STOP") -> Dict[str, Any]:
    return {
        "type": KILL_SWITCH,
        "action": action,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class LiveChannel:
    """Receives server events and relays control messages to peers."""

    def __init__(
        self,
        url: str,
        on_message: MessageCallback,
        *,
        on_state: Optional[StateCallback] = None,
        ws_factory: Optional[Callable[[str], Any]] = None,
        connect_timeout: float = 10.0,
        backoff_initial_seconds: float = 0.5,
        backoff_max_seconds: float = 30.0,
        random_fn: Callable[[], float] = random.random,
    ) -> None:
        self.url = url
        self._on_message = on_message
        self._on_state = on_state
        self._ws_factory = ws_factory or self._default_ws_factory
        self._connect_timeout = connect_timeout
        self._backoff_initial = max(0.05, backoff_initial_seconds)
        self._backoff_max = max(self._backoff_initial, backoff_max_seconds)
        self._random_fn = random_fn

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._ws: Optional[Any] = None
        self._ws_lock = threading.Lock()
        self._connected = False
        self.reconnect_count = 0

    def _default_ws_factory(self, url: str) -> Any:
        return websocket.create_connection(url, timeout=self._connect_timeout)

    @property
    def connected(self) -> bool:
        return self._connected

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="beepstream-channel", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        with self._ws_lock:
            ws = self._ws
        if ws is not None:
            try:
                ws.close()
            except (websocket.WebSocketException, OSError):
                pass
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=self._connect_timeout + 1.0)

    def send(self, payload: Dict[str, Any]) -> bool:
        """Send a JSON payload. Returns False when disconnected or the write fails."""
        with self._ws_lock:
            ws = self._ws
            if ws is None or not self._connected:
                return False
            try:
                ws.send(json.dumps(payload))
            except (websocket.WebSocketException, OSError) as exc:
                logger.warning("Live channel send failed: %s", exc)
                return False
        return True

    def send_kill_switch(self, action: str = "STOP") -> bool:
        """Relay a kill-switch signal to every other connected client."""
        sent = self.send(kill_switch_payload(action))
        if sent:
            logger.info("Kill switch %s sent", action)
        else:
            logger.warning("Kill switch not sent: live channel disconnected")
        return sent

    def compute_backoff_seconds(self, attempt: int) -> float:
        base = min(self._backoff_max, self._backoff_initial * (2.0 ** max(0, attempt)))
        jitter = self._random_fn() * 0.25 * base
        return max(0.05, base + jitter)

    def _set_connected(self, value: bool) -> None:
        if self._connected == value:
            return
        self._connected = value
        logger.info("Live channel %s (%s)", "connected" if value else "disconnected", self.url)
        if self._on_state is not None:
            try:
                self._on_state(value)
            except Exception:
                logger.exception("Channel state callback failed")

    def _run(self) -> None:
        attempt = 0
        while not self._stop.is_set():
            try:
                ws = self._ws_factory(self.url)
            except (websocket.WebSocketException, OSError) as exc:
                logger.warning("Live channel connect to %s failed: %s", self.url, exc)
                self._stop.wait(self.compute_backoff_seconds(attempt))
                attempt += 1
                continue

            with self._ws_lock:
                self._ws = ws
            self._set_connected(True)
            attempt = 0
            try:
                self._receive_loop(ws)
            except (websocket.WebSocketException, OSError) as exc:
                if not self._stop.is_set():
                    logger.warning("Live channel dropped: %s", exc)
            finally:
                with self._ws_lock:
                    self._ws = None
                try:
                    ws.close()
                except (websocket.WebSocketException, OSError):
                    pass
                self._set_connected(False)

            if not self._stop.is_set():
                self.reconnect_count += 1
                self._stop.wait(self.compute_backoff_seconds(attempt))

    def _receive_loop(self, ws: Any) -> None:
        while not self._stop.is_set():
            try:
                raw = ws.recv()
            except websocket.WebSocketTimeoutException:
                continue
            if not raw:
                # Server closed the connection.
                return
            self._dispatch(raw)

    def _dispatch(self, raw: Any) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring non-JSON message on live channel")
            return
        if not isinstance(message, dict):
            logger.debug("Ignoring non-object message on live channel")
            return
        try:
            self._on_message(message)
        except Exception:
            logger.exception("Live channel message handler failed")
