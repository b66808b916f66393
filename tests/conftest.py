import time
from typing import Callable

import pytest

from beepstream_service import broadcaster as broadcaster_mod
from beepstream_service import storage as storage_mod


@pytest.fixture(autouse=True)
def isolated_daemon(monkeypatch):
  # No background archival and a fresh live-connection registry per test.
  monkeypatch.setenv("BEEPSTREAM_ARCHIVE_ENABLED", "false")
  broadcaster_mod.reset_for_tests()
  yield
  broadcaster_mod.reset_for_tests()


@pytest.fixture
def memory_storage(monkeypatch):
  backend = storage_mod.InMemoryLogStorage()
  monkeypatch.setattr(storage_mod, "get_storage", lambda: backend)
  return backend


def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01) -> bool:
  deadline = time.monotonic() + timeout
  while time.monotonic() < deadline:
    if predicate():
      return True
    time.sleep(interval)
  return predicate()


@pytest.fixture
def wait_until():
  return _wait_until
