"""Daily archival job.

Fires once per calendar day at a fixed local wall-clock time, archives every
active log and announces LOGS_ARCHIVED_AND_CLEARED to live clients. Each fire
time is recomputed from the clock rather than chained to the previous run, so
a failed archival never affects the next day's fire.

Missed fires (process down, host suspended past the trigger) are skipped, not
caught up.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import date, datetime, timedelta
from typing import Awaitable, Callable, Optional, Tuple

from . import storage as storage_mod
from .broadcaster import EventBroadcaster, get_broadcaster
from .models import archived_event, utc_now

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[None]]


def next_fire_after(now: datetime, hour: int, minute: int) -> datetime:
    """Return the first HH:MM wall-clock instant strictly after now."""
    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= now:
        candidate = candidate + timedelta(days=1)
    return candidate


async def archive_and_announce(
    backend: Optional[storage_mod.LogStorage] = None,
    broadcaster: Optional[EventBroadcaster] = None,
) -> Tuple[int, datetime]:
    """Archive all active logs and broadcast the result, even when nothing was archived.

    Clients use the announcement to clear their view at the daily boundary.

    Returns:
        Tuple of (archived count, shared archivedAt timestamp)

    Raises:
        PersistenceError: If the storage backend fails; nothing is broadcast.
    """
    backend = backend or storage_mod.get_storage()
    broadcaster = broadcaster or get_broadcaster()

    stamp = utc_now()
    count = await asyncio.to_thread(backend.archive_all_active, stamp)
    delivered = broadcaster.broadcast(archived_event(count, stamp))
    logger.info("Archived %d log(s); notified %d live client(s)", count, delivered)
    return count, stamp


class DailyArchiveScheduler:
    """Asyncio task that runs archive_and_announce once a day."""

    def __init__(
        self,
        hour: int,
        minute: int,
        *,
        backend: Optional[storage_mod.LogStorage] = None,
        broadcaster: Optional[EventBroadcaster] = None,
        clock: Clock = datetime.now,
        sleep: Sleep = asyncio.sleep,
        max_sleep_seconds: float = 60.0,
        misfire_grace_seconds: float = 300.0,
    ) -> None:
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ValueError(f"Invalid archive time {hour:02d}:{minute:02d}")
        self.hour = hour
        self.minute = minute
        self._backend = backend
        self._broadcaster = broadcaster
        self._clock = clock
        self._sleep = sleep
        self._max_sleep = max(0.01, max_sleep_seconds)
        self._grace = timedelta(seconds=max(0.0, misfire_grace_seconds))
        self._last_fired: Optional[date] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def last_fired(self) -> Optional[date]:
        return self._last_fired

    def next_fire(self) -> datetime:
        return next_fire_after(self._clock(), self.hour, self.minute)

    async def fire(self) -> Optional[int]:
        """Run one archival. Errors are logged and swallowed so the loop survives.

        Returns:
            Archived count, or None if the archival failed.
        """
        try:
            count, _ = await archive_and_announce(self._backend, self._broadcaster)
        except Exception:
            logger.exception("Daily archival failed; next run is unaffected")
            return None
        return count

    async def run(self) -> None:
        target = self.next_fire()
        logger.info("Daily archival scheduled for %s", target.isoformat(timespec="minutes"))
        while True:
            now = self._clock()
            if now < target:
                await self._sleep(min((target - now).total_seconds(), self._max_sleep))
                continue

            if now - target > self._grace:
                logger.warning(
                    "Skipping missed daily archival scheduled for %s (now %s)",
                    target.isoformat(timespec="minutes"),
                    now.isoformat(timespec="minutes"),
                )
            elif self._last_fired != target.date():
                self._last_fired = target.date()
                await self.fire()

            target = next_fire_after(self._clock(), self.hour, self.minute)
            logger.info("Next daily archival at %s", target.isoformat(timespec="minutes"))

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(
                self.run(), name="beepstream-daily-archive"
            )
        return self._task

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
