from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from .errors import LogValidationError

Severity = Literal["beep", "silent"]
SEVERITIES = ("beep", "silent")

_SEVERITY_HINT = "must be either 'beep' or 'silent'"

_DATETIME = TypeAdapter(datetime)


class EventType(str, Enum):
  """
  Server-initiated events pushed over the live channel.
  """

  NEW_LOG = "NEW_LOG"
  CLEAR_LOGS = "CLEAR_LOGS"
  LOGS_ARCHIVED_AND_CLEARED = "LOGS_ARCHIVED_AND_CLEARED"


# Mobile clients historically listened for LOGS_CLEARED; it is reserved too so
# peers cannot relay it as a forged server event.
SERVER_EVENT_TYPES = frozenset(e.value for e in EventType) | {"LOGS_CLEARED"}


class LogData(BaseModel):
  """
  Inbound payload accepted by POST /api/logs.
  """

  message: str = Field(..., min_length=1)
  beepType: Severity
  source: Optional[str] = None


class LogRecord(BaseModel):
  """
  A persisted log event.

  Attribute names follow the service's vocabulary; the aliases are the wire
  names dashboard and mobile clients already consume.
  """

  model_config = ConfigDict(populate_by_name=True, frozen=True)

  id: str
  message: str
  severity: Severity = Field(..., alias="beepType")
  source: Optional[str] = None
  created_at: datetime = Field(..., alias="timestamp")
  archived: bool = False
  archived_at: Optional[datetime] = Field(None, alias="archivedAt")

  @model_validator(mode="after")
  def _archived_at_matches_flag(self) -> "LogRecord":
    if self.archived != (self.archived_at is not None):
      raise ValueError("archivedAt must be set if and only if archived is true")
    return self

  @classmethod
  def new(cls, data: LogData, now: Optional[datetime] = None) -> "LogRecord":
    return cls(
      id=str(uuid.uuid4()),
      message=data.message,
      severity=data.beepType,
      source=data.source,
      created_at=now or utc_now(),
    )

  def archive(self, archived_at: datetime) -> "LogRecord":
    return self.model_copy(update={"archived": True, "archived_at": archived_at})

  def to_wire(self) -> Dict[str, Any]:
    return self.model_dump(mode="json", by_alias=True)


class Event(BaseModel):
  """
  Envelope for messages the broadcaster pushes to clients.
  """

  type: str
  data: Optional[Any] = None

  def to_json(self) -> str:
    payload: Dict[str, Any] = {"type": self.type}
    if self.data is not None:
      payload["data"] = self.data
    return json.dumps(payload)


def new_log_event(record: LogRecord) -> Event:
  return Event(type=EventType.NEW_LOG.value, data=record.to_wire())


def clear_logs_event() -> Event:
  return Event(type=EventType.CLEAR_LOGS.value)


def archived_event(count: int, timestamp: datetime) -> Event:
  return Event(
    type=EventType.LOGS_ARCHIVED_AND_CLEARED.value,
    data={"count": count, "timestamp": wire_timestamp(timestamp)},
  )


def utc_now() -> datetime:
  return datetime.now(timezone.utc)


def wire_timestamp(value: datetime) -> str:
  """
  Render a datetime exactly as LogRecord.to_wire() renders its timestamps.
  """
  return _DATETIME.dump_python(value, mode="json")


def parse_log_data(payload: Any) -> LogData:
  """
  Validate an ingestion payload, raising LogValidationError naming the first bad field.
  """
  try:
    return LogData.model_validate(payload)
  except ValidationError as exc:
    raise validation_error_from(exc.errors()) from exc


def validation_error_from(errors: Iterable[Dict[str, Any]]) -> LogValidationError:
  """
  Collapse pydantic/FastAPI error entries into a single field-level error.

  FastAPI prefixes request body locations with "body"; that segment is dropped
  so callers see the payload field name only.
  """
  errors = list(errors)
  if not errors:
    return LogValidationError("", "Invalid log data")

  first = errors[0]
  if first.get("type") == "json_invalid":
    return LogValidationError("", "Invalid JSON body")

  loc: List[str] = [str(part) for part in first.get("loc", ()) if part != "body"]
  field = ".".join(loc)
  message = str(first.get("msg") or "Invalid value")
  if field == "beepType":
    message = _SEVERITY_HINT
  elif not field:
    message = "Invalid log data: " + message
  return LogValidationError(field, message)
