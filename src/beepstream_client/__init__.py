"""
beepstream_client

Client side of BeepStream: the alert reconciler and repeating alarm that
follow a daemon's live channel, plus a logging handler that lets scripts
submit logs to it.
"""

from .alarm import RepeatingAlarm
from .channel import LiveChannel
from .config import ClientConfig
from .logging_setup import BeepstreamHandler, setup_logging
from .monitor import AlertMonitor
from .reconciler import AlarmState, AlertReconciler, should_alert

__all__ = [
  "AlarmState",
  "AlertMonitor",
  "AlertReconciler",
  "BeepstreamHandler",
  "ClientConfig",
  "LiveChannel",
  "RepeatingAlarm",
  "setup_logging",
  "should_alert",
]
