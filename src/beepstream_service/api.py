from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Query, Request, WebSocket, status
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__, storage
from .broadcaster import get_broadcaster
from .config import ServiceConfig, load_cors_origins
from .errors import LogValidationError, PersistenceError
from .models import LogData, clear_logs_event, new_log_event, validation_error_from, wire_timestamp
from .scheduler import DailyArchiveScheduler, archive_and_announce
from .status import get_status

logger = logging.getLogger(__name__)

_scheduler: Optional[DailyArchiveScheduler] = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """
  Start the daily archival task with the app and tear down live connections on exit.
  """
  global _scheduler
  config = ServiceConfig.from_env()
  if config.archive.enabled:
    _scheduler = DailyArchiveScheduler(config.archive.hour, config.archive.minute)
    _scheduler.start()
  else:
    logger.info("Daily archival disabled via BEEPSTREAM_ARCHIVE_ENABLED")

  try:
    yield
  finally:
    if _scheduler is not None:
      await _scheduler.stop()
      _scheduler = None
    await get_broadcaster().close_all()


app = FastAPI(title="BeepStream Daemon", version=__version__, lifespan=lifespan)

# CORS configuration for browser dashboards
# Allow all origins by default, configurable via BEEPSTREAM_CORS_ORIGINS env var
app.add_middleware(
  CORSMiddleware,
  allow_origins=load_cors_origins(),
  allow_credentials=True,
  allow_methods=["*"],
  allow_headers=["*"],
)


def _error(status_code: int, message: str) -> JSONResponse:
  return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  err = validation_error_from(exc.errors())
  logger.info("Rejected %s %s: %s", request.method, request.url.path, err)
  return _error(status.HTTP_400_BAD_REQUEST, str(err))


@app.exception_handler(LogValidationError)
async def log_validation_handler(request: Request, exc: LogValidationError) -> JSONResponse:
  logger.info("Rejected %s %s: %s", request.method, request.url.path, exc)
  return _error(status.HTTP_400_BAD_REQUEST, str(exc))


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
  logger.error("Storage failure during %s %s: %s", request.method, request.url.path, exc)
  return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Log storage unavailable")


@app.get("/status")
async def status_endpoint() -> Dict[str, object]:
  next_archive = None
  if _scheduler is not None:
    next_archive = _scheduler.next_fire().isoformat(timespec="minutes")
  return get_status(
    connected_clients=get_broadcaster().connection_count,
    next_archive=next_archive,
  )


@app.post("/api/logs", status_code=status.HTTP_201_CREATED)
async def create_log(data: LogData) -> Dict[str, Any]:
  """
  Ingest one log event, then announce it to live clients.

  The record is persisted before NEW_LOG is broadcast so a client never
  sees a log that is not stored yet.
  """
  backend = storage.get_storage()
  record = await run_in_threadpool(backend.create, data)
  delivered = get_broadcaster().broadcast(new_log_event(record))
  logger.debug("Stored %s log %s; notified %d client(s)", record.severity, record.id, delivered)
  return {"success": True, "log": record.to_wire()}


@app.get("/api/logs")
async def list_logs() -> Dict[str, Any]:
  backend = storage.get_storage()
  records = await run_in_threadpool(backend.list_active)
  return {"success": True, "logs": [r.to_wire() for r in records]}


@app.delete("/api/logs")
async def clear_logs() -> Dict[str, Any]:
  """
  Permanently delete active logs. Archived history is untouched.
  """
  backend = storage.get_storage()
  deleted = await run_in_threadpool(backend.clear_all_active)
  get_broadcaster().broadcast(clear_logs_event())
  logger.info("Cleared %d active log(s)", deleted)
  return {"success": True, "message": "Logs cleared successfully"}


@app.post("/api/logs/archive")
async def archive_logs() -> Dict[str, Any]:
  """
  Manual trigger for the daily archive-and-clear cutover.
  """
  count, stamp = await archive_and_announce(storage.get_storage(), get_broadcaster())
  return {"success": True, "count": count, "timestamp": wire_timestamp(stamp)}


@app.get("/api/logs/archived")
async def list_archived_logs(limit: int = Query(100, ge=1, le=1000)) -> Dict[str, Any]:
  backend = storage.get_storage()
  records = await run_in_threadpool(backend.list_archived, limit)
  return {"success": True, "logs": [r.to_wire() for r in records]}


@app.websocket("/ws")
async def live_channel(websocket: WebSocket) -> None:
  """
  Live event stream. Anything a client sends is relayed to the other clients.
  """
  await websocket.accept()
  broadcaster = get_broadcaster()
  peer = websocket.client
  conn = broadcaster.open_connection(
    websocket.send_text,
    label=f"{peer.host}:{peer.port}" if peer else None,
  )
  try:
    while True:
      message = await websocket.receive()
      if message["type"] == "websocket.disconnect":
        break
      text = message.get("text")
      if text is None:
        logger.warning("Ignoring binary frame from %s", conn.label)
        continue
      broadcaster.relay(conn, text)
  finally:
    broadcaster.unregister(conn)
    await conn.close()
