from datetime import datetime, timezone

from fastapi.testclient import TestClient

from beepstream_service import storage as storage_mod
from beepstream_service.api import app
from beepstream_service.errors import PersistenceError


def test_post_log_persists_and_returns_record(memory_storage):
  client = TestClient(app)

  resp = client.post("/api/logs", json={"message": "disk full", "beepType": "beep", "source": "cron"})
  assert resp.status_code == 201
  body = resp.json()
  assert body["success"] is True

  log = body["log"]
  assert log["message"] == "disk full"
  assert log["beepType"] == "beep"
  assert log["source"] == "cron"
  assert log["archived"] is False
  assert log["archivedAt"] is None
  assert log["id"]
  assert log["timestamp"].startswith(str(datetime.now(timezone.utc).year))

  stored = memory_storage.list_active()
  assert [r.id for r in stored] == [log["id"]]


def test_post_log_without_source(memory_storage):
  client = TestClient(app)

  resp = client.post("/api/logs", json={"message": "quiet note", "beepType": "silent"})
  assert resp.status_code == 201
  assert resp.json()["log"]["source"] is None


def test_empty_message_is_rejected_with_field_error(memory_storage):
  client = TestClient(app)

  resp = client.post("/api/logs", json={"message": "", "beepType": "beep"})
  assert resp.status_code == 400
  body = resp.json()
  assert body["success"] is False
  assert body["error"].startswith("message:")
  assert memory_storage.list_active() == []


def test_missing_message_is_rejected(memory_storage):
  client = TestClient(app)

  resp = client.post("/api/logs", json={"beepType": "beep"})
  assert resp.status_code == 400
  assert resp.json()["error"].startswith("message:")
  assert memory_storage.list_active() == []


def test_unknown_beep_type_is_rejected(memory_storage):
  client = TestClient(app)

  resp = client.post("/api/logs", json={"message": "x", "beepType": "loud"})
  assert resp.status_code == 400
  assert resp.json() == {
    "success": False,
    "error": "beepType: must be either 'beep' or 'silent'",
  }
  assert memory_storage.list_active() == []


def test_malformed_json_body_is_rejected(memory_storage):
  client = TestClient(app)

  resp = client.post(
    "/api/logs",
    content=b'{"message": "x", "beepType": ',
    headers={"Content-Type": "application/json"},
  )
  assert resp.status_code == 400
  assert resp.json() == {"success": False, "error": "Invalid JSON body"}
  assert memory_storage.list_active() == []


def test_list_logs_returns_active_newest_first(memory_storage):
  client = TestClient(app)

  ids = []
  for i in range(3):
    resp = client.post("/api/logs", json={"message": f"log {i}", "beepType": "silent"})
    ids.append(resp.json()["log"]["id"])

  resp = client.get("/api/logs")
  assert resp.status_code == 200
  body = resp.json()
  assert body["success"] is True
  assert [log["id"] for log in body["logs"]] == list(reversed(ids))


def test_list_logs_on_empty_store(memory_storage):
  client = TestClient(app)

  resp = client.get("/api/logs")
  assert resp.status_code == 200
  assert resp.json() == {"success": True, "logs": []}


def test_archive_endpoint_moves_active_logs_to_history(memory_storage):
  client = TestClient(app)
  for i in range(3):
    client.post("/api/logs", json={"message": f"log {i}", "beepType": "beep"})

  resp = client.post("/api/logs/archive")
  assert resp.status_code == 200
  body = resp.json()
  assert body["success"] is True
  assert body["count"] == 3

  assert client.get("/api/logs").json()["logs"] == []

  archived = client.get("/api/logs/archived").json()["logs"]
  assert len(archived) == 3
  assert all(log["archived"] is True for log in archived)
  assert {log["archivedAt"] for log in archived} == {archived[0]["archivedAt"]}
  assert body["timestamp"] == archived[0]["archivedAt"]


def test_archive_endpoint_with_nothing_active(memory_storage):
  client = TestClient(app)

  resp = client.post("/api/logs/archive")
  assert resp.status_code == 200
  assert resp.json()["count"] == 0


def test_archived_limit_is_validated(memory_storage):
  client = TestClient(app)

  resp = client.get("/api/logs/archived", params={"limit": 0})
  assert resp.status_code == 400
  assert resp.json()["success"] is False


class FailingStorage(storage_mod.InMemoryLogStorage):
  def create(self, data):
    raise PersistenceError("connection refused")

  def list_active(self):
    raise PersistenceError("connection refused")


def test_storage_failure_returns_500(monkeypatch):
  client = TestClient(app)
  monkeypatch.setattr(storage_mod, "get_storage", lambda: FailingStorage())

  resp = client.post("/api/logs", json={"message": "x", "beepType": "beep"})
  assert resp.status_code == 500
  assert resp.json() == {"success": False, "error": "Log storage unavailable"}

  resp = client.get("/api/logs")
  assert resp.status_code == 500
  assert resp.json()["success"] is False
