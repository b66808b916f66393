"""Wiring for a watching client: alarm, reconciler, live channel and poller."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from .alarm import RepeatingAlarm
from .channel import LiveChannel
from .config import ClientConfig
from .poller import SnapshotPoller
from .reconciler import AlarmState, AlertReconciler
from .tones import Tone, default_tone

logger = logging.getLogger(__name__)

EventCallback = Callable[[Dict[str, Any]], None]


class AlertMonitor:
    """One client's view of the daemon.

    Live events and periodic snapshots both feed the same reconciler, so the
    alarm follows the active beep logs whether or not the channel is up.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        tone: Optional[Tone] = None,
        on_event: Optional[EventCallback] = None,
        on_control: Optional[EventCallback] = None,
        on_state: Optional[Callable[[bool], Any]] = None,
        channel: Optional[LiveChannel] = None,
        poller: Optional[SnapshotPoller] = None,
    ) -> None:
        self.config = config
        self.alarm = RepeatingAlarm(tone or default_tone(config.tone_command), config.alarm_period)
        self.reconciler = AlertReconciler(self.alarm, on_event=on_event, on_control=on_control)
        self.channel = channel or LiveChannel(
            config.ws_url, self.reconciler.handle_event, on_state=on_state
        )
        self.poller = poller or SnapshotPoller(
            config.logs_url,
            self.reconciler.apply_snapshot,
            interval=config.poll_interval,
            clock=self.reconciler.now,
        )
        self._running = False

    @property
    def connected(self) -> bool:
        return self.channel.connected

    @property
    def state(self) -> AlarmState:
        return self.reconciler.state

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        logger.info("Watching %s", self.config.server_url)
        self.channel.start()
        self.poller.start()

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self.poller.stop()
        self.channel.stop()
        self.alarm.stop()

    def silence(self) -> AlarmState:
        """Local user stop; a later beep log re-arms the alarm."""
        return self.reconciler.stop()

    def kill_switch(self, action: str = "STOP") -> bool:
        """Silence locally and ask every other client to do the same."""
        self.silence()
        return self.channel.send_kill_switch(action)
