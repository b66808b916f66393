from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

LogPayload = Dict[str, Any]


_logger = logging.getLogger("beepstream_client.transport")


@dataclass
class HttpTransport:
  """
  HTTP transport that submits queued logs to POST /api/logs.

  The daemon accepts one record per request, so a batch is sent as a
  sequence of requests. Network failures are retried with linear backoff
  and logged at WARNING level, but never raise back to the caller.
  Validation rejections (4xx) are logged once and not retried.
  """

  endpoint: str
  max_retries: int = 3
  base_backoff_seconds: float = 0.1
  timeout: float = 2.0
  client: Optional[httpx.Client] = field(default=None, repr=False)

  def send(self, batch: List[LogPayload]) -> int:
    """Returns the number of records the daemon accepted."""
    if not batch:
      return 0

    accepted = 0
    client = self.client or httpx.Client(timeout=self.timeout)
    try:
      for payload in batch:
        if self._post(client, payload):
          accepted += 1
    finally:
      if self.client is None:
        client.close()
    return accepted

  def _post(self, client: httpx.Client, payload: LogPayload) -> bool:
    for attempt in range(1, self.max_retries + 1):
      try:
        resp = client.post(self.endpoint, json=payload)
      except httpx.HTTPError as exc:
        _logger.warning(
          "beepstream_client HTTP transport failed to reach daemon (attempt %s/%s): %s",
          attempt,
          self.max_retries,
          exc,
        )
      else:
        if resp.status_code < 400:
          return True
        if resp.status_code < 500:
          _logger.warning("Daemon rejected log submission (%s): %s", resp.status_code, resp.text)
          return False
        _logger.warning(
          "Daemon error on log submission (attempt %s/%s): HTTP %s",
          attempt,
          self.max_retries,
          resp.status_code,
        )

      if attempt < self.max_retries:
        time.sleep(self.base_backoff_seconds * attempt)
    return False
