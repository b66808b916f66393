from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Optional

from . import __version__
from .config import ServiceConfig


@dataclass
class DaemonStatus:
  status: str
  service_name: str
  version: str
  host: str
  port: int
  storage: str
  connected_clients: int
  archive_enabled: bool
  next_archive: Optional[str]


def get_status(connected_clients: int = 0, next_archive: Optional[str] = None) -> dict:
  """
  Return a simple status payload for the daemon.
  """
  config = ServiceConfig.from_env()

  payload = DaemonStatus(
    status="healthy",
    service_name="beepstream_daemon",
    version=__version__,
    host=config.host,
    port=config.port,
    storage=config.storage_backend,
    connected_clients=connected_clients,
    archive_enabled=config.archive.enabled,
    next_archive=next_archive,
  )
  return asdict(payload)
