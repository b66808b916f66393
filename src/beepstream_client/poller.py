"""Periodic GET /api/logs poll, the consistency backstop for the live channel."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[List[Dict[str, Any]], float], Any]


class SnapshotPoller:
    """Fetches the active log list on a fixed interval in a background thread."""

    def __init__(
        self,
        url: str,
        on_snapshot: SnapshotCallback,
        *,
        interval: float = 5.0,
        timeout: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        client: Optional[httpx.Client] = None,
    ) -> None:
        """Initialize the poller.

        Args:
            url: Full URL of the active logs endpoint
            on_snapshot: Called with (logs, requested_at) after each successful poll
            interval: Seconds between polls
            timeout: Per-request timeout in seconds
            clock: Clock for requested_at; must match the reconciler's
            client: Optional pre-built httpx client (tests)
        """
        self.url = url
        self.interval = interval
        self._on_snapshot = on_snapshot
        self._clock = clock
        self._client = client or httpx.Client(timeout=timeout)
        self._owns_client = client is None
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_error: Optional[str] = None

    def fetch(self) -> List[Dict[str, Any]]:
        resp = self._client.get(self.url)
        resp.raise_for_status()
        body = resp.json()
        if not isinstance(body, dict) or not body.get("success"):
            raise ValueError(f"unexpected response body from {self.url}")
        logs = body.get("logs")
        if not isinstance(logs, list):
            raise ValueError("response is missing the logs list")
        return logs

    def poll_once(self) -> bool:
        """Run one poll. Failures are logged and reported as False."""
        requested_at = self._clock()
        try:
            logs = self.fetch()
        except (httpx.HTTPError, ValueError) as exc:
            self.last_error = str(exc)
            logger.warning("Polling %s failed: %s", self.url, exc)
            return False

        self.last_error = None
        self._on_snapshot(logs, requested_at)
        return True

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopped.clear()
        self._thread = threading.Thread(target=self._run, name="beepstream-poller", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stopped.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=self.interval + 1.0)
        if self._owns_client:
            self._client.close()

    def _run(self) -> None:
        while not self._stopped.is_set():
            try:
                self.poll_once()
            except Exception:
                logger.exception("Snapshot handler failed; polling continues")
            self._stopped.wait(self.interval)
