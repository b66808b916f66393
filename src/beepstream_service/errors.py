from __future__ import annotations


class BeepstreamError(Exception):
  """
  Base class for errors raised by the BeepStream daemon.
  """


class LogValidationError(BeepstreamError):
  """
  Ingestion payload failed validation. Never persisted; surfaces as HTTP 400.
  """

  def __init__(self, field: str, message: str) -> None:
    super().__init__(f"{field}: {message}" if field else message)
    self.field = field
    self.message = message


class PersistenceError(BeepstreamError):
  """
  The storage backend is unavailable or rejected the operation. Surfaces as HTTP 500.
  """


class ChannelError(BeepstreamError):
  """
  Writing to a live client channel failed; the connection is dropped.
  """
