from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

import psycopg2

from .config import ServiceConfig
from .errors import LogValidationError, PersistenceError
from .models import SEVERITIES, LogData, LogRecord, utc_now


class LogStorage:
  """
  Storage abstraction for log records.

  Records are partitioned by the archived flag: "active" records feed the
  dashboards, archived ones are read-only history. Tests are expected to
  monkeypatch get_storage() so they do not require a running database.
  """

  name = "abstract"

  def create(self, data: LogData) -> LogRecord:  # pragma: no cover - interface
    raise NotImplementedError

  def list_active(self) -> List[LogRecord]:  # pragma: no cover - interface
    """
    Return every record with archived = false, newest first.
    """
    raise NotImplementedError

  def archive_all_active(self, archived_at: Optional[datetime] = None) -> int:  # pragma: no cover - interface
    """
    Atomically archive all currently-active records with one shared timestamp.

    Records created after the archival snapshot stay active. Returns the
    number of records archived.
    """
    raise NotImplementedError

  def clear_all_active(self) -> int:  # pragma: no cover - interface
    """
    Permanently delete active records. Archived records are never touched.
    """
    raise NotImplementedError

  def list_archived(self, limit: int = 100) -> List[LogRecord]:  # pragma: no cover - interface
    raise NotImplementedError

  @staticmethod
  def _validate(data: LogData) -> None:
    if not data.message:
      raise LogValidationError("message", "Message is required")
    if data.beepType not in SEVERITIES:
      raise LogValidationError("beepType", "must be either 'beep' or 'silent'")


class InMemoryLogStorage(LogStorage):
  """
  Process-local backend used for development and tests.

  A single lock covers every operation, which makes archive and clear atomic
  with respect to concurrent creates.
  """

  name = "memory"

  def __init__(self) -> None:
    self._records: List[LogRecord] = []
    self._lock = threading.Lock()

  def create(self, data: LogData) -> LogRecord:
    self._validate(data)
    record = LogRecord.new(data)
    with self._lock:
      self._records.append(record)
    return record

  def list_active(self) -> List[LogRecord]:
    with self._lock:
      return [r for r in reversed(self._records) if not r.archived]

  def archive_all_active(self, archived_at: Optional[datetime] = None) -> int:
    stamp = archived_at or utc_now()
    count = 0
    with self._lock:
      for idx, record in enumerate(self._records):
        if not record.archived:
          self._records[idx] = record.archive(stamp)
          count += 1
    return count

  def clear_all_active(self) -> int:
    with self._lock:
      before = len(self._records)
      self._records = [r for r in self._records if r.archived]
      return before - len(self._records)

  def list_archived(self, limit: int = 100) -> List[LogRecord]:
    with self._lock:
      archived = [r for r in reversed(self._records) if r.archived]
    # Stable sort keeps newest-inserted first within one archival batch.
    archived.sort(key=lambda r: r.archived_at, reverse=True)  # type: ignore[arg-type, return-value]
    return archived[: max(limit, 0)]


class PostgresLogStorage(LogStorage):
  """
  Postgres backend using BEEPSTREAM_DATABASE_URL.

  Each operation opens its own connection and runs in one transaction.
  """

  name = "postgres"

  def __init__(self, dsn: str) -> None:
    self._dsn = dsn

  @contextmanager
  def _cursor(self) -> Iterator["psycopg2.extensions.cursor"]:
    try:
      conn = psycopg2.connect(self._dsn)
    except psycopg2.Error as exc:
      raise PersistenceError(f"Could not connect to log database: {exc}") from exc

    try:
      with conn, conn.cursor() as cur:
        yield cur
    except psycopg2.Error as exc:
      raise PersistenceError(f"Log database operation failed: {exc}") from exc
    finally:
      conn.close()

  def create(self, data: LogData) -> LogRecord:
    self._validate(data)
    record = LogRecord.new(data)
    with self._cursor() as cur:
      cur.execute(
        """
        INSERT INTO logs (id, message, beep_type, source, timestamp, archived, archived_at)
        VALUES (%s, %s, %s, %s, %s, FALSE, NULL)
        """,
        (record.id, record.message, record.severity, record.source, record.created_at),
      )
    return record

  def list_active(self) -> List[LogRecord]:
    with self._cursor() as cur:
      cur.execute(
        f"""
        SELECT {_COLUMNS}
        FROM logs
        WHERE archived = FALSE
        ORDER BY seq DESC
        """
      )
      rows = cur.fetchall()
    return [_row_to_record(row) for row in rows]

  def archive_all_active(self, archived_at: Optional[datetime] = None) -> int:
    stamp = archived_at or utc_now()
    with self._cursor() as cur:
      # A single UPDATE sees one snapshot; rows inserted concurrently stay active.
      cur.execute(
        "UPDATE logs SET archived = TRUE, archived_at = %s WHERE archived = FALSE",
        (stamp,),
      )
      archived = cur.rowcount or 0
    return archived

  def clear_all_active(self) -> int:
    with self._cursor() as cur:
      cur.execute("DELETE FROM logs WHERE archived = FALSE")
      deleted = cur.rowcount or 0
    return deleted

  def list_archived(self, limit: int = 100) -> List[LogRecord]:
    with self._cursor() as cur:
      cur.execute(
        f"""
        SELECT {_COLUMNS}
        FROM logs
        WHERE archived = TRUE
        ORDER BY archived_at DESC, seq DESC
        LIMIT %s
        """,
        (max(limit, 0),),
      )
      rows = cur.fetchall()
    return [_row_to_record(row) for row in rows]


_COLUMNS = "id, message, beep_type, source, timestamp, archived, archived_at"

SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS logs (
  id TEXT PRIMARY KEY,
  seq BIGSERIAL NOT NULL,
  message TEXT NOT NULL,
  beep_type TEXT NOT NULL CHECK (beep_type IN ('beep', 'silent')),
  source TEXT,
  timestamp TIMESTAMPTZ NOT NULL DEFAULT now(),
  archived BOOLEAN NOT NULL DEFAULT FALSE,
  archived_at TIMESTAMPTZ,
  CHECK (archived = (archived_at IS NOT NULL))
);

CREATE INDEX IF NOT EXISTS idx_logs_archived_seq
  ON logs (archived, seq DESC);
"""


def init_schema(dsn: str) -> None:
  """
  Create the logs table and index if they do not exist.
  """
  conn = psycopg2.connect(dsn)
  try:
    with conn, conn.cursor() as cur:
      cur.execute(SCHEMA_DDL)
  finally:
    conn.close()


_storage: LogStorage | None = None


def get_storage() -> LogStorage:
  """
  Return the global storage instance, built from ServiceConfig on first use.

  In tests this can be monkeypatched to avoid real DB access.
  """
  global _storage
  if _storage is None:
    config = ServiceConfig.from_env()
    if config.storage_backend == "memory":
      _storage = InMemoryLogStorage()
    else:
      _storage = PostgresLogStorage(config.database_url)
  return _storage


def _row_to_record(row: tuple) -> LogRecord:
  record_id, message, beep_type, source, created_at, archived, archived_at = row
  return LogRecord(
    id=record_id,
    message=message,
    severity=beep_type,
    source=source,
    created_at=created_at,
    archived=bool(archived),
    archived_at=archived_at,
  )
