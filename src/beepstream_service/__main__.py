from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import NoReturn, Optional

import httpx
import psycopg2

from .config import ServiceConfig
from .storage import init_schema

COMMANDS = {"serve", "status", "archive", "clear", "init-db"}


def main(argv: list[str] | None = None) -> NoReturn:
  argv = list(sys.argv[1:] if argv is None else argv)

  if not argv or argv[0] not in COMMANDS:
    print("Usage: python -m beepstream {serve|status|archive|clear|init-db}", file=sys.stderr)
    print("  serve     - Run the daemon (HTTP API + /ws live channel)", file=sys.stderr)
    print("  status    - Check daemon status", file=sys.stderr)
    print("  archive   - Archive all active logs now and notify clients", file=sys.stderr)
    print("  clear     - Delete all active logs and notify clients", file=sys.stderr)
    print("  init-db   - Create the Postgres schema", file=sys.stderr)
    sys.exit(1)

  command, rest = argv[0], argv[1:]
  if command == "serve":
    _run_serve(rest)
  elif command == "status":
    _run_status()
  elif command == "archive":
    _run_admin("POST", "/api/logs/archive")
  elif command == "clear":
    _run_admin("DELETE", "/api/logs")
  elif command == "init-db":
    _run_init_db()
  sys.exit(0)


def _run_serve(args: list[str]) -> None:
  import uvicorn

  config = ServiceConfig.from_env()
  parser = argparse.ArgumentParser(prog="beepstream serve", description="Run the BeepStream daemon")
  parser.add_argument("--host", default=config.host, help=f"Bind address (default: {config.host})")
  parser.add_argument("--port", type=int, default=config.port, help=f"Bind port (default: {config.port})")
  parser.add_argument("--log-level", default=config.log_level, help="Log level (default: BEEPSTREAM_LOG_LEVEL or INFO)")
  parsed = parser.parse_args(args)

  logging.basicConfig(
    level=getattr(logging, parsed.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
  )
  uvicorn.run(
    "beepstream_service.api:app",
    host=parsed.host,
    port=parsed.port,
    log_level=parsed.log_level.lower(),
  )


def _daemon_url(path: str) -> str:
  base = os.getenv("BEEPSTREAM_SERVER_URL")
  if not base:
    config = ServiceConfig.from_env()
    host = "localhost" if config.host in ("0.0.0.0", "") else config.host
    base = f"http://{host}:{config.port}"
  return base.rstrip("/") + path


def _request(method: str, path: str) -> Optional[dict]:
  url = _daemon_url(path)
  try:
    resp = httpx.request(method, url, timeout=5.0)
  except httpx.HTTPError as exc:
    print(f"BeepStream daemon UNREACHABLE at {url}: {exc}", file=sys.stderr)
    print("Hint: ensure the daemon is running and listening on this host/port.", file=sys.stderr)
    sys.exit(2)

  try:
    data = resp.json()
  except ValueError:
    data = None

  if resp.status_code >= 400:
    error = (data or {}).get("error") if isinstance(data, dict) else None
    print(f"Request failed ({resp.status_code}): {error or resp.text}", file=sys.stderr)
    sys.exit(1)
  return data


def _run_status() -> None:
  data = _request("GET", "/status") or {}
  print("BeepStream daemon status: HEALTHY")
  print(f"Service: {data.get('service_name')} v{data.get('version')}")
  print(f"Listening on: {data.get('host')}:{data.get('port')}")
  print(f"Storage: {data.get('storage')}")
  print(f"Connected clients: {data.get('connected_clients')}")
  if data.get("archive_enabled"):
    print(f"Next archive: {data.get('next_archive')}")
  else:
    print("Daily archive: disabled")


def _run_admin(method: str, path: str) -> None:
  data = _request(method, path) or {}
  if "count" in data:
    print(f"Archived {data['count']} log(s) at {data.get('timestamp')}")
  else:
    print(data.get("message", "OK"))


def _run_init_db() -> None:
  config = ServiceConfig.from_env()
  try:
    init_schema(config.database_url)
  except psycopg2.Error as exc:
    print(f"Could not initialize log schema: {exc}", file=sys.stderr)
    sys.exit(2)
  print("Log schema ready.")


if __name__ == "__main__":  # pragma: no cover
  main()
