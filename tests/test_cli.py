import json

import httpx
import psycopg2
import pytest
import websocket

from beepstream_client import __main__ as client_cli
from beepstream_service import __main__ as service_cli


@pytest.fixture(autouse=True)
def daemon_url(monkeypatch):
  monkeypatch.setenv("BEEPSTREAM_SERVER_URL", "http://daemon.test:5000")


def _fake_request(status_code: int, payload: dict, calls: list):
  def fake(method, url, **kwargs):
    calls.append((method, url))
    return httpx.Response(status_code, json=payload)

  return fake


def test_service_usage_without_command(capsys):
  with pytest.raises(SystemExit) as exc_info:
    service_cli.main([])
  assert exc_info.value.code == 1
  assert "Usage" in capsys.readouterr().err


def test_service_status_prints_health(monkeypatch, capsys):
  calls = []
  payload = {
    "service_name": "beepstream_daemon",
    "version": "0.1.0",
    "host": "0.0.0.0",
    "port": 5000,
    "storage": "memory",
    "connected_clients": 2,
    "archive_enabled": True,
    "next_archive": "2024-05-01T18:00",
  }
  monkeypatch.setattr(httpx, "request", _fake_request(200, payload, calls))

  with pytest.raises(SystemExit) as exc_info:
    service_cli.main(["status"])

  assert exc_info.value.code == 0
  assert calls == [("GET", "http://daemon.test:5000/status")]
  out = capsys.readouterr().out
  assert "HEALTHY" in out
  assert "Connected clients: 2" in out
  assert "Next archive: 2024-05-01T18:00" in out


def test_service_status_unreachable(monkeypatch, capsys):
  def refuse(method, url, **kwargs):
    raise httpx.ConnectError("connection refused")

  monkeypatch.setattr(httpx, "request", refuse)

  with pytest.raises(SystemExit) as exc_info:
    service_cli.main(["status"])
  assert exc_info.value.code == 2
  assert "UNREACHABLE" in capsys.readouterr().err


def test_service_archive_and_clear(monkeypatch, capsys):
  calls = []
  monkeypatch.setattr(
    httpx, "request", _fake_request(200, {"success": True, "count": 3, "timestamp": "2024-05-01T18:00:00+00:00"}, calls)
  )
  with pytest.raises(SystemExit):
    service_cli.main(["archive"])
  assert calls[-1] == ("POST", "http://daemon.test:5000/api/logs/archive")
  assert "Archived 3 log(s)" in capsys.readouterr().out

  monkeypatch.setattr(
    httpx, "request", _fake_request(200, {"success": True, "message": "Logs cleared successfully"}, calls)
  )
  with pytest.raises(SystemExit):
    service_cli.main(["clear"])
  assert calls[-1] == ("DELETE", "http://daemon.test:5000/api/logs")
  assert "Logs cleared successfully" in capsys.readouterr().out


def test_service_request_error_status(monkeypatch, capsys):
  monkeypatch.setattr(httpx, "request", _fake_request(500, {"success": False, "error": "Log storage unavailable"}, []))

  with pytest.raises(SystemExit) as exc_info:
    service_cli.main(["clear"])
  assert exc_info.value.code == 1
  assert "Log storage unavailable" in capsys.readouterr().err


def test_service_init_db_failure(monkeypatch, capsys):
  def refuse(dsn):
    raise psycopg2.OperationalError("no database")

  monkeypatch.setattr(psycopg2, "connect", refuse)

  with pytest.raises(SystemExit) as exc_info:
    service_cli.main(["init-db"])
  assert exc_info.value.code == 2
  assert "Could not initialize" in capsys.readouterr().err


def test_client_usage_without_command(capsys):
  with pytest.raises(SystemExit) as exc_info:
    client_cli.main(["bogus"])
  assert exc_info.value.code == 1


def test_client_send_posts_beep(monkeypatch, capsys):
  posted = []

  def fake_post(url, json=None, **kwargs):
    posted.append((url, json))
    return httpx.Response(201, json={"success": True, "log": {"id": "abc"}})

  monkeypatch.setattr(httpx, "post", fake_post)

  with pytest.raises(SystemExit) as exc_info:
    client_cli.main(["send", "deploy failed", "--source", "ci"])

  assert exc_info.value.code == 0
  assert posted == [
    ("http://daemon.test:5000/api/logs", {"message": "deploy failed", "beepType": "beep", "source": "ci"})
  ]
  assert "Logged abc" in capsys.readouterr().out


def test_client_send_rejected(monkeypatch, capsys):
  monkeypatch.setattr(
    httpx, "post", lambda url, **kwargs: httpx.Response(400, json={"success": False, "error": "message: bad"})
  )

  with pytest.raises(SystemExit) as exc_info:
    client_cli.main(["send", "x", "--silent"])
  assert exc_info.value.code == 1
  assert "message: bad" in capsys.readouterr().err


class FakeSocket:
  def __init__(self) -> None:
    self.sent = []
    self.closed = False

  def send(self, text):
    self.sent.append(text)

  def close(self):
    self.closed = True


def test_client_kill_sends_signal(monkeypatch, capsys):
  sock = FakeSocket()
  opened = []

  def fake_connect(url, **kwargs):
    opened.append(url)
    return sock

  monkeypatch.setattr(websocket, "create_connection", fake_connect)

  with pytest.raises(SystemExit) as exc_info:
    client_cli.main(["kill"])

  assert exc_info.value.code == 0
  assert opened == ["ws://daemon.test:5000/ws"]
  assert json.loads(sock.sent[0])["type"] == "KILL_SWITCH"
  assert sock.closed


def test_client_kill_unreachable(monkeypatch):
  def refuse(url, **kwargs):
    raise ConnectionRefusedError("refused")

  monkeypatch.setattr(websocket, "create_connection", refuse)

  with pytest.raises(SystemExit) as exc_info:
    client_cli.main(["kill"])
  assert exc_info.value.code == 2


def test_format_event():
  line = client_cli.format_event(
    {"type": "NEW_LOG", "data": {"timestamp": "t", "beepType": "beep", "source": "ci", "message": "boom"}}
  )
  assert "BEEP" in line and "[ci]" in line and line.endswith("boom")
  assert client_cli.format_event({"type": "CLEAR_LOGS"}) == "Logs cleared"
  assert client_cli.format_event({"type": "KILL_SWITCH"}).startswith("Control message")


def test_format_event_tolerates_null_fields():
  line = client_cli.format_event({"type": "NEW_LOG", "data": {"beepType": None, "message": "boom"}})
  assert "?" in line and line.endswith("boom")
