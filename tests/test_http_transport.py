import logging

import httpx

from beepstream_client.transport import HttpTransport

ENDPOINT = "http://localhost:9999/api/logs"


def test_http_transport_posts_each_record():
  seen = []

  def handler(request: httpx.Request) -> httpx.Response:
    seen.append(request.read())
    return httpx.Response(201, json={"success": True})

  transport = HttpTransport(endpoint=ENDPOINT, client=httpx.Client(transport=httpx.MockTransport(handler)))
  accepted = transport.send([
    {"message": "a", "beepType": "beep", "source": "job"},
    {"message": "b", "beepType": "silent", "source": "job"},
  ])

  assert accepted == 2
  assert len(seen) == 2
  assert b'"beepType":"beep"' in seen[0].replace(b" ", b"")


def test_http_transport_swallows_errors_and_logs(caplog):
  calls = []

  def handler(request: httpx.Request) -> httpx.Response:
    calls.append(request)
    raise httpx.ConnectError("daemon unavailable", request=request)

  transport = HttpTransport(
    endpoint=ENDPOINT,
    max_retries=2,
    base_backoff_seconds=0.0,
    client=httpx.Client(transport=httpx.MockTransport(handler)),
  )

  with caplog.at_level(logging.WARNING, logger="beepstream_client.transport"):
    assert transport.send([{"message": "hello", "beepType": "beep"}]) == 0

  assert len(calls) == 2
  assert any("HTTP transport failed to reach daemon" in msg for msg in caplog.text.splitlines())


def test_http_transport_does_not_retry_rejections(caplog):
  calls = []

  def handler(request: httpx.Request) -> httpx.Response:
    calls.append(request)
    return httpx.Response(400, json={"success": False, "error": "message: Field required"})

  transport = HttpTransport(
    endpoint=ENDPOINT,
    base_backoff_seconds=0.0,
    client=httpx.Client(transport=httpx.MockTransport(handler)),
  )

  with caplog.at_level(logging.WARNING, logger="beepstream_client.transport"):
    assert transport.send([{"beepType": "beep"}]) == 0

  assert len(calls) == 1
  assert "rejected" in caplog.text


def test_http_transport_retries_server_errors():
  responses = [httpx.Response(500), httpx.Response(201, json={"success": True})]

  transport = HttpTransport(
    endpoint=ENDPOINT,
    base_backoff_seconds=0.0,
    client=httpx.Client(transport=httpx.MockTransport(lambda request: responses.pop(0))),
  )
  assert transport.send([{"message": "x", "beepType": "beep"}]) == 1


def test_empty_batch_is_noop():
  assert HttpTransport(endpoint=ENDPOINT).send([]) == 0
