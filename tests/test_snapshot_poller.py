import logging

import httpx

from beepstream_client.poller import SnapshotPoller

URL = "http://daemon.test/api/logs"


def _client(handler) -> httpx.Client:
  return httpx.Client(transport=httpx.MockTransport(handler))


def test_poll_once_hands_logs_and_request_time_to_callback():
  logs = [{"id": "1", "beepType": "beep", "archived": False}]
  received = []

  def handler(request: httpx.Request) -> httpx.Response:
    assert request.url == URL
    return httpx.Response(200, json={"success": True, "logs": logs})

  poller = SnapshotPoller(
    URL,
    lambda snapshot, requested_at: received.append((snapshot, requested_at)),
    clock=lambda: 42.0,
    client=_client(handler),
  )

  assert poller.poll_once() is True
  assert received == [(logs, 42.0)]
  assert poller.last_error is None


def test_server_error_is_logged_and_reported(caplog):
  received = []
  poller = SnapshotPoller(
    URL,
    lambda *args: received.append(args),
    client=_client(lambda request: httpx.Response(500, json={"success": False, "error": "down"})),
  )

  with caplog.at_level(logging.WARNING, logger="beepstream_client.poller"):
    assert poller.poll_once() is False
  assert received == []
  assert poller.last_error
  assert "Polling" in caplog.text


def test_unreachable_daemon_is_not_fatal():
  def handler(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)

  poller = SnapshotPoller(URL, lambda *args: None, client=_client(handler))
  assert poller.poll_once() is False
  assert "connection refused" in poller.last_error


def test_malformed_body_is_rejected():
  poller = SnapshotPoller(
    URL,
    lambda *args: None,
    client=_client(lambda request: httpx.Response(200, json={"success": True})),
  )
  assert poller.poll_once() is False


def test_background_loop_polls_until_stopped(wait_until):
  calls = []

  def handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"success": True, "logs": []})

  poller = SnapshotPoller(
    URL,
    lambda snapshot, requested_at: calls.append(requested_at),
    interval=0.01,
    client=_client(handler),
  )
  poller.start()
  assert wait_until(lambda: len(calls) >= 2)
  poller.stop()

  count = len(calls)
  assert not wait_until(lambda: len(calls) > count, timeout=0.1)


def test_handler_exception_does_not_stop_polling(wait_until, caplog):
  calls = []

  def on_snapshot(snapshot, requested_at):
    calls.append(requested_at)
    raise RuntimeError("ui crashed")

  poller = SnapshotPoller(
    URL,
    on_snapshot,
    interval=0.01,
    client=_client(lambda request: httpx.Response(200, json={"success": True, "logs": []})),
  )
  with caplog.at_level(logging.ERROR, logger="beepstream_client.poller"):
    poller.start()
    assert wait_until(lambda: len(calls) >= 2)
    poller.stop()
  assert "Snapshot handler failed" in caplog.text
