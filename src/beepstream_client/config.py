from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse, urlunparse

DEFAULT_SERVER_URL = "http://localhost:5000"
DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_ALARM_PERIOD = 1.0
CONFIG_FILE = Path("_beepstream/config.json")


@dataclass(frozen=True)
class ClientConfig:
  """
  Configuration for BeepStream clients (watchers and log-shipping scripts).

  Values are sourced from explicit arguments, environment variables, the
  project config file, then defaults.
  """

  server_url: str
  source: str | None = None
  poll_interval: float = DEFAULT_POLL_INTERVAL
  alarm_period: float = DEFAULT_ALARM_PERIOD
  beep_level: int = logging.ERROR
  enabled: bool = True
  tone_command: str | None = None

  @property
  def logs_url(self) -> str:
    return self.server_url.rstrip("/") + "/api/logs"

  @property
  def ws_url(self) -> str:
    parsed = urlparse(self.server_url)
    scheme = "wss" if parsed.scheme == "https" else "ws"
    return urlunparse((scheme, parsed.netloc, "/ws", "", "", ""))

  @classmethod
  def from_env(cls) -> "ClientConfig":
    """
    Load configuration from environment variables.

    Optional:
      - BEEPSTREAM_SERVER_URL (default: http://localhost:5000)
      - BEEPSTREAM_SOURCE
      - BEEPSTREAM_POLL_INTERVAL (seconds, default 5)
      - BEEPSTREAM_ALARM_PERIOD (seconds, default 1)
      - BEEPSTREAM_BEEP_LEVEL (default ERROR)
      - BEEPSTREAM_ENABLED
      - BEEPSTREAM_TONE_COMMAND
    """
    return cls.from_params_or_env()

  @classmethod
  def from_params_or_env(
    cls,
    server_url: Optional[str] = None,
    source: Optional[str] = None,
    poll_interval: Optional[float] = None,
    alarm_period: Optional[float] = None,
  ) -> "ClientConfig":
    """
    Build configuration from explicit parameters, falling back to environment variables.

    Priority:
      1. Explicit function arguments
      2. Environment variables
      3. Config file (_beepstream/config.json)
      4. Defaults
    """
    file_cfg = _read_config_file()

    url = (
      server_url
      or os.getenv("BEEPSTREAM_SERVER_URL")
      or file_cfg.get("serverUrl")
      or DEFAULT_SERVER_URL
    )
    _validate_server_url(url)

    if poll_interval is None:
      poll_interval = _float_setting("BEEPSTREAM_POLL_INTERVAL", file_cfg.get("pollInterval"), DEFAULT_POLL_INTERVAL)
    if alarm_period is None:
      alarm_period = _float_setting("BEEPSTREAM_ALARM_PERIOD", file_cfg.get("alarmPeriod"), DEFAULT_ALARM_PERIOD)

    return cls(
      server_url=url,
      source=source or os.getenv("BEEPSTREAM_SOURCE") or file_cfg.get("source"),
      poll_interval=min(300.0, max(1.0, float(poll_interval))),
      alarm_period=max(0.1, float(alarm_period)),
      beep_level=_get_beep_level(os.getenv("BEEPSTREAM_BEEP_LEVEL") or file_cfg.get("beepLevel")),
      enabled=_get_enabled_flag(),
      tone_command=os.getenv("BEEPSTREAM_TONE_COMMAND") or file_cfg.get("toneCommand"),
    )


def _read_config_file() -> Dict[str, Any]:
  if not CONFIG_FILE.exists():
    return {}
  try:
    data = json.loads(CONFIG_FILE.read_text())
  except (OSError, ValueError):
    return {}
  section = data.get("beepstream", data) if isinstance(data, dict) else {}
  return section if isinstance(section, dict) else {}


def _validate_server_url(url: str) -> None:
  parsed = urlparse(url)
  if parsed.scheme not in ("http", "https") or not parsed.netloc:
    raise ValueError(
      f"Invalid BEEPSTREAM_SERVER_URL '{url}'. "
      "Expected an http(s) URL like http://localhost:5000."
    )


def _float_setting(env_name: str, file_value: Any, default: float) -> float:
  raw = os.getenv(env_name)
  for candidate in (raw, file_value):
    if candidate is None:
      continue
    try:
      return float(candidate)
    except (TypeError, ValueError):
      continue
  return default


def _get_beep_level(raw: Optional[str]) -> int:
  if not raw:
    return logging.ERROR
  level = logging.getLevelName(str(raw).strip().upper())
  return level if isinstance(level, int) else logging.ERROR


def _get_enabled_flag() -> bool:
  """
  Determine whether log shipping is enabled.

  Uses BEEPSTREAM_ENABLED; defaults to True. Unknown values disable shipping.
  """
  raw = os.getenv("BEEPSTREAM_ENABLED")
  if raw is None:
    return True

  value = raw.strip().lower()
  if value in ("1", "true", "yes", "on"):
    return True
  if value in ("0", "false", "no", "off"):
    return False

  return False
