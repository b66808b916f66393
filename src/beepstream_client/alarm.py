"""Repeating audible/visual alarm with synchronous cancellation.

The alarm owns at most one timer thread. `start()` while active is a no-op,
and once `stop()` returns no further tone fires: every tick re-checks its
cancellation flag under the same lock `stop()` takes before firing.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from .errors import AlarmError
from .tones import Tone

logger = logging.getLogger(__name__)


class _AlarmHandle:
    """Timer state for one Alerting episode."""

    def __init__(self) -> None:
        self.cancelled = threading.Event()
        self.thread: Optional[threading.Thread] = None
        self.ticks = 0


class RepeatingAlarm:
    """Fires a tone immediately, then every `period` seconds until stopped.

    If the tone raises (failure to initialize or mid-loop), the failure is
    logged and the alarm drops back to idle instead of leaving a half-started
    loop behind.
    """

    def __init__(self, tone: Tone, period: float = 1.0, *, name: str = "beepstream-alarm") -> None:
        if period <= 0:
            raise ValueError("period must be positive")
        self._tone = tone
        self._period = period
        self._name = name
        self._lock = threading.Lock()
        self._handle: Optional[_AlarmHandle] = None

    @property
    def period(self) -> float:
        return self._period

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._handle is not None

    def start(self) -> bool:
        """Enter Alerting.

        Returns:
            True if a new loop was started, False if one was already running
            or the first tone failed.
        """
        with self._lock:
            if self._handle is not None:
                return False

            handle = _AlarmHandle()
            try:
                self._fire(handle)
            except AlarmError as exc:
                logger.error("Alarm failed to start; staying idle: %s", exc)
                return False

            self._handle = handle
            handle.thread = threading.Thread(
                target=self._run, args=(handle,), name=self._name, daemon=True
            )
            handle.thread.start()

        logger.info("Alarm started (every %.1fs)", self._period)
        return True

    def stop(self) -> bool:
        """Enter Idle, cancelling the timer before returning.

        Returns:
            True if an active loop was cancelled.
        """
        with self._lock:
            handle = self._handle
            if handle is None:
                return False
            handle.cancelled.set()
            self._handle = None

        thread = handle.thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self._period + 1.0)
        logger.info("Alarm stopped after %d tone(s)", handle.ticks)
        return True

    def _fire(self, handle: _AlarmHandle) -> None:
        try:
            self._tone()
        except AlarmError:
            raise
        except Exception as exc:
            raise AlarmError(f"tone raised {type(exc).__name__}: {exc}") from exc
        handle.ticks += 1

    def _run(self, handle: _AlarmHandle) -> None:
        while not handle.cancelled.wait(self._period):
            with self._lock:
                if handle.cancelled.is_set() or self._handle is not handle:
                    return
                try:
                    self._fire(handle)
                except AlarmError as exc:
                    logger.error("Alarm tone failed mid-loop; forcing idle: %s", exc)
                    handle.cancelled.set()
                    self._handle = None
                    return
