from __future__ import annotations

import logging
import traceback
from logging import Handler, LogRecord
from typing import Any, Dict, Optional

from .config import ClientConfig
from .queue import LogQueue
from .transport import HttpTransport

MAX_MESSAGE_LENGTH = 10_000


class BeepstreamHandler(Handler):
  """
  Logging handler that turns records into BeepStream submissions.

  Records at or above the configured beep level are submitted as "beep",
  everything else as "silent".
  """

  def __init__(self, config: ClientConfig, queue: LogQueue) -> None:
    super().__init__()
    self._config = config
    self._queue = queue

  def to_payload(self, record: LogRecord) -> Dict[str, Any]:
    message = record.getMessage()
    if record.exc_info and record.exc_info[0] is not None:
      _type, _value, _tb = record.exc_info
      message = message + "\n" + "".join(traceback.format_exception(_type, _value, _tb))
    if not message.strip():
      message = f"<empty {record.levelname.lower()} message from {record.name}>"

    beep_type = "beep" if record.levelno >= self._config.beep_level else "silent"
    return {
      "message": message[:MAX_MESSAGE_LENGTH],
      "beepType": beep_type,
      "source": self._config.source or record.name,
    }

  def emit(self, record: LogRecord) -> None:
    try:
      if not self._config.enabled:
        return
      # The transport's own warnings must not loop back into the daemon.
      if record.name.startswith("beepstream_client"):
        return
      self._queue.enqueue(self.to_payload(record))
    except Exception:
      self.handleError(record)

  def close(self) -> None:
    try:
      self._queue.close()
    finally:
      super().close()


def setup_logging(
  logger: Optional[logging.Logger] = None,
  *,
  server_url: Optional[str] = None,
  source: Optional[str] = None,
) -> Optional[BeepstreamHandler]:
  """
  Attach the BeepStream handler to the standard logging module.

  Existing handlers are left in place; the new handler ships records to the
  daemon via a background queue. Returns the handler, or None when shipping
  is disabled.
  """
  config = ClientConfig.from_params_or_env(server_url=server_url, source=source)
  if not config.enabled:
    return None

  target_logger = logger or logging.getLogger()

  for existing in target_logger.handlers:
    if isinstance(existing, BeepstreamHandler):
      return existing

  transport = HttpTransport(endpoint=config.logs_url)
  log_queue = LogQueue(sender=transport.send)
  log_queue.start()

  handler = BeepstreamHandler(config=config, queue=log_queue)
  target_logger.addHandler(handler)
  return handler
