"""Alert primitives the repeating alarm can drive.

A tone is any zero-argument callable; it must raise AlarmError when the
underlying device or command fails so the alarm can fall back to Idle.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import sys
from typing import Callable, Optional, Sequence, TextIO

from .errors import AlarmError

Tone = Callable[[], None]

logger = logging.getLogger(__name__)


class TerminalBell:
    """Rings the terminal bell (BEL) on a text stream."""

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream

    def __call__(self) -> None:
        stream = self._stream or sys.stdout
        try:
            stream.write("\a")
            stream.flush()
        except (OSError, ValueError) as exc:
            raise AlarmError(f"terminal bell failed: {exc}") from exc


class CommandTone:
    """Plays a tone by running an external player, e.g. `aplay -q alarm.wav`.

    A player that runs past `timeout` is killed and counts as a failed tone.
    The default keeps one tick well under the 1s alarm period.
    """

    def __init__(self, command: str | Sequence[str], timeout: float = 0.5) -> None:
        self._argv = shlex.split(command) if isinstance(command, str) else list(command)
        if not self._argv:
            raise ValueError("tone command must not be empty")
        self._timeout = timeout

    def __call__(self) -> None:
        try:
            subprocess.run(
                self._argv,
                check=True,
                timeout=self._timeout,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise AlarmError(f"tone command {self._argv[0]!r} failed: {exc}") from exc


class VisualAlert:
    """Visual counterpart of the tone: a warning line on the client log."""

    def __init__(self, text: str = "BEEP: active alert") -> None:
        self.text = text

    def __call__(self) -> None:
        logger.warning(self.text)


def combine(*tones: Tone) -> Tone:
    """Fire several primitives per tick; the first failure aborts the tick."""

    def _fire() -> None:
        for tone in tones:
            tone()

    return _fire


def default_tone(command: Optional[str] = None) -> Tone:
    audible: Tone = CommandTone(command) if command else TerminalBell()
    return combine(audible, VisualAlert())
