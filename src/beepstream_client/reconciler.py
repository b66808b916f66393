"""Client alert reconciler.

Both inputs, live channel events and polled snapshots of GET /api/logs,
update one model of "which active logs do I know about" and then recompute
the alarm from it. The alarm state is a pure function of that model
(`should_alert`), so it never depends on which signal arrived last.

A user stop acknowledges the beep logs known at that moment; only
unacknowledged beep logs keep the alarm running, so the poll backstop does
not re-arm an alarm the user silenced. A new beep log re-arms it.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import AbstractSet, Any, Callable, Dict, Iterable, Mapping, Optional, Set

from .alarm import RepeatingAlarm

logger = logging.getLogger(__name__)

NEW_LOG = "NEW_LOG"
# CLEAR_LOGS is what the daemon sends; LOGS_CLEARED is accepted from older peers.
CLEAR_EVENT_TYPES = frozenset({"CLEAR_LOGS", "LOGS_CLEARED", "LOGS_ARCHIVED_AND_CLEARED"})

EventCallback = Callable[[Dict[str, Any]], None]


class AlarmState(str, Enum):
    IDLE = "idle"
    ALERTING = "alerting"


@dataclass(frozen=True)
class KnownLog:
    id: str
    beep: bool
    seen_at: float
    pushed: bool = False


def should_alert(beep_ids: AbstractSet[str], acknowledged: AbstractSet[str]) -> bool:
    """True when at least one active beep log has not been acknowledged."""
    return bool(set(beep_ids) - set(acknowledged))


class AlertReconciler:
    """Decides when the repeating alarm runs.

    Entering Alerting fires the first tone on the calling thread while the
    reconciler lock is held, so the live channel and the poller both wait on
    it. Tones passed to the alarm should return quickly.
    """

    def __init__(
        self,
        alarm: RepeatingAlarm,
        *,
        on_event: Optional[EventCallback] = None,
        on_control: Optional[EventCallback] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._alarm = alarm
        self._on_event = on_event
        self._on_control = on_control
        self._clock = clock
        self._lock = threading.Lock()
        self._known: Dict[str, KnownLog] = {}
        self._acknowledged: Set[str] = set()
        self._cleared_at: Optional[float] = None

    @property
    def state(self) -> AlarmState:
        return AlarmState.ALERTING if self._alarm.is_active else AlarmState.IDLE

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._known)

    @property
    def beep_ids(self) -> Set[str]:
        with self._lock:
            return self._beep_ids_locked()

    def now(self) -> float:
        """Clock used to order pushes against poll requests."""
        return self._clock()

    def handle_event(self, event: Mapping[str, Any]) -> AlarmState:
        """Apply one message received on the live channel."""
        event_type = event.get("type")
        control = False
        with self._lock:
            if event_type == NEW_LOG:
                self._remember_pushed(event.get("data"))
            elif event_type in CLEAR_EVENT_TYPES:
                self._known.clear()
                self._acknowledged.clear()
                self._cleared_at = self._clock()
            else:
                control = True
            state = self._reconcile_locked()

        self._notify(self._on_event, event)
        if control:
            self._notify(self._on_control, event)
        return state

    def apply_snapshot(
        self,
        records: Iterable[Mapping[str, Any]],
        requested_at: Optional[float] = None,
    ) -> AlarmState:
        """Replace the known active set with a polled snapshot.

        Args:
            records: Log records as returned by GET /api/logs
            requested_at: Clock reading taken when the poll request was sent.
                Logs pushed after that instant are kept even if the snapshot
                predates them, and a snapshot requested before the latest
                clear is ignored as stale.
        """
        now = self._clock()
        with self._lock:
            if (
                requested_at is not None
                and self._cleared_at is not None
                and requested_at < self._cleared_at
            ):
                logger.debug("Ignoring snapshot requested before the last clear")
                return self._reconcile_locked()

            fresh: Dict[str, KnownLog] = {}
            for record in records:
                if record.get("archived"):
                    continue
                log_id = record.get("id")
                if not log_id:
                    continue
                fresh[str(log_id)] = KnownLog(
                    id=str(log_id), beep=record.get("beepType") == "beep", seen_at=now
                )

            if requested_at is not None:
                for log_id, known in self._known.items():
                    if known.pushed and known.seen_at > requested_at and log_id not in fresh:
                        fresh[log_id] = known

            self._known = fresh
            self._acknowledged &= set(fresh)
            return self._reconcile_locked()

    def stop(self) -> AlarmState:
        """User silence: acknowledge every known beep log and go idle."""
        with self._lock:
            self._acknowledged |= self._beep_ids_locked()
            if self._alarm.stop():
                logger.info("Alarm silenced by user")
            return self._reconcile_locked()

    def reconcile(self) -> AlarmState:
        with self._lock:
            return self._reconcile_locked()

    def _remember_pushed(self, data: Any) -> None:
        if not isinstance(data, Mapping) or data.get("archived"):
            return
        log_id = data.get("id")
        if not log_id:
            logger.warning("NEW_LOG event without an id; waiting for the next poll")
            return
        self._known[str(log_id)] = KnownLog(
            id=str(log_id),
            beep=data.get("beepType") == "beep",
            seen_at=self._clock(),
            pushed=True,
        )

    def _beep_ids_locked(self) -> Set[str]:
        return {log_id for log_id, known in self._known.items() if known.beep}

    def _reconcile_locked(self) -> AlarmState:
        if should_alert(self._beep_ids_locked(), self._acknowledged):
            if not self._alarm.is_active:
                self._alarm.start()
        elif self._alarm.is_active:
            self._alarm.stop()
        return self.state

    @staticmethod
    def _notify(callback: Optional[EventCallback], event: Mapping[str, Any]) -> None:
        if callback is None:
            return
        try:
            callback(dict(event))
        except Exception:
            logger.exception("Event callback failed")
