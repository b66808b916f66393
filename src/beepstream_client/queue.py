from __future__ import annotations

import logging
import os
import queue
import threading
from typing import Any, Callable, Dict, List, Optional

LogPayload = Dict[str, Any]
BatchSender = Callable[[List[LogPayload]], None]

_logger = logging.getLogger("beepstream_client.queue")


class LogQueue:
  """
  In-process queue for outgoing log submissions.

  A single background worker drains a bounded queue and hands batches to the
  provided sender, so application threads never block on the network.

  The worker is fork-aware: a child process that logs after fork gets its
  own worker thread instead of relying on the parent's.
  """

  def __init__(
    self,
    sender: BatchSender,
    maxsize: int = 1000,
    batch_size: int = 50,
  ) -> None:
    self._queue: "queue.Queue[LogPayload]" = queue.Queue(maxsize=maxsize)
    self._sender: BatchSender = sender
    self._batch_size = batch_size
    self._thread: Optional[threading.Thread] = None
    self._stopped = threading.Event()
    self._pid = os.getpid()
    self._lock = threading.Lock()
    self.dropped = 0

  def start(self) -> None:
    """
    Start the background worker thread.

    Repeated calls in the same process are no-ops. After a fork the PID
    change resets thread state and a fresh worker is started.
    """
    current_pid = os.getpid()
    with self._lock:
      if self._pid != current_pid:
        self._pid = current_pid
        self._stopped = threading.Event()
        self._thread = None

      if self._thread is not None and self._thread.is_alive():
        return

      self._thread = threading.Thread(
        target=self._run, name="beepstream-client-queue", daemon=True
      )
      self._thread.start()

  def stop(self, timeout: float = 1.0) -> None:
    self._stopped.set()
    if self._thread and self._thread.is_alive():
      self._thread.join(timeout=timeout)

  def enqueue(self, payload: LogPayload) -> bool:
    """
    Enqueue a payload for delivery. Returns False if the queue is full and
    the payload was dropped.
    """
    self.start()

    try:
      self._queue.put_nowait(payload)
    except queue.Full:
      self.dropped += 1
      if self.dropped == 1 or self.dropped % 100 == 0:
        _logger.warning("BeepStream log queue full; %d submission(s) dropped", self.dropped)
      return False
    return True

  def _next_batch(self) -> List[LogPayload]:
    try:
      item = self._queue.get(timeout=0.5)
    except queue.Empty:
      return []

    batch: List[LogPayload] = [item]
    while len(batch) < self._batch_size:
      try:
        batch.append(self._queue.get_nowait())
      except queue.Empty:
        break
    return batch

  def _run(self) -> None:
    while not self._stopped.is_set():
      batch = self._next_batch()
      if not batch:
        continue
      try:
        self._sender(batch)
      except Exception:
        _logger.exception("BeepStream log sender failed; %d submission(s) lost", len(batch))

  def flush(self) -> None:
    """Send everything queued right now on the calling thread."""
    batch: List[LogPayload] = []
    while True:
      try:
        batch.append(self._queue.get_nowait())
      except queue.Empty:
        break
    if batch:
      self._sender(batch)

  def close(self, timeout: float = 5.0) -> None:
    """
    Stop the worker and deliver whatever is still queued.

    Called from `BeepstreamHandler.close()`, which `logging.shutdown` runs at
    interpreter exit, so a script that logs and exits immediately still
    reaches the daemon.
    """
    self.stop(timeout=timeout)
    try:
      self.flush()
    except Exception:
      _logger.exception("BeepStream log sender failed while flushing at shutdown")
