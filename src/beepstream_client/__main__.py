from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Dict, NoReturn, Optional, TextIO

import httpx
import websocket

from .channel import kill_switch_payload
from .config import ClientConfig
from .monitor import AlertMonitor

COMMANDS = {"watch", "send", "kill"}


def main(argv: list[str] | None = None) -> NoReturn:
  argv = list(sys.argv[1:] if argv is None else argv)

  if not argv or argv[0] not in COMMANDS:
    print("Usage: python -m beepstream_client {watch|send|kill}", file=sys.stderr)
    print("  watch   - Follow the daemon and sound the alarm for beep logs", file=sys.stderr)
    print("  send    - Submit one log record", file=sys.stderr)
    print("  kill    - Broadcast a kill-switch signal to all watching clients", file=sys.stderr)
    sys.exit(1)

  command, rest = argv[0], argv[1:]
  if command == "watch":
    code = _run_watch(rest)
  elif command == "send":
    code = _run_send(rest)
  else:
    code = _run_kill(rest)
  sys.exit(code)


def _add_server_arg(parser: argparse.ArgumentParser) -> None:
  parser.add_argument("--server", default=None, help="Daemon URL (default: BEEPSTREAM_SERVER_URL or http://localhost:5000)")


def format_event(event: Dict[str, Any]) -> str:
  event_type = event.get("type", "?")
  data = event.get("data")
  if event_type == "NEW_LOG" and isinstance(data, dict):
    source = f" [{data['source']}]" if data.get("source") else ""
    return f"{data.get('timestamp', '')} {(data.get('beepType') or '?').upper():6}{source} {data.get('message', '')}"
  if event_type == "LOGS_ARCHIVED_AND_CLEARED" and isinstance(data, dict):
    return f"Archived {data.get('count', 0)} log(s) at {data.get('timestamp')}"
  if event_type in ("CLEAR_LOGS", "LOGS_CLEARED"):
    return "Logs cleared"
  return f"Control message: {json.dumps(event)}"


def _run_watch(args: list[str], stdin: Optional[TextIO] = None) -> int:
  parser = argparse.ArgumentParser(prog="beepstream_client watch", description="Watch a BeepStream daemon")
  _add_server_arg(parser)
  parser.add_argument("--poll-interval", type=float, default=None, help="Seconds between snapshot polls")
  parser.add_argument("--alarm-period", type=float, default=None, help="Seconds between alarm tones")
  parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
  parsed = parser.parse_args(args)

  logging.basicConfig(
    level=logging.DEBUG if parsed.verbose else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
  )
  try:
    config = ClientConfig.from_params_or_env(
      server_url=parsed.server,
      poll_interval=parsed.poll_interval,
      alarm_period=parsed.alarm_period,
    )
  except ValueError as exc:
    print(f"Error: {exc}", file=sys.stderr)
    return 1

  monitor = AlertMonitor(
    config,
    on_event=lambda event: print(format_event(event), flush=True),
    on_state=lambda up: print("● connected" if up else "○ disconnected", flush=True),
  )
  monitor.start()
  print("Commands: s = silence, k = kill switch (all clients), q = quit", flush=True)
  stream = stdin or sys.stdin
  try:
    for line in stream:
      command = line.strip().lower()
      if command in ("s", "stop"):
        print(f"Alarm {monitor.silence().value}", flush=True)
      elif command in ("k", "kill"):
        sent = monitor.kill_switch()
        print("Kill switch sent" if sent else "Kill switch not sent: disconnected", flush=True)
      elif command in ("q", "quit", "exit"):
        break
  except KeyboardInterrupt:
    pass
  finally:
    monitor.stop()
  return 0


def _run_send(args: list[str]) -> int:
  parser = argparse.ArgumentParser(prog="beepstream_client send", description="Submit one log record")
  _add_server_arg(parser)
  parser.add_argument("message", help="Log message text")
  parser.add_argument("--silent", action="store_true", help="Record without sounding the alarm")
  parser.add_argument("--source", default=None, help="Origin tag for the record")
  parsed = parser.parse_args(args)

  try:
    config = ClientConfig.from_params_or_env(server_url=parsed.server, source=parsed.source)
  except ValueError as exc:
    print(f"Error: {exc}", file=sys.stderr)
    return 1

  payload: Dict[str, Any] = {
    "message": parsed.message,
    "beepType": "silent" if parsed.silent else "beep",
  }
  if config.source:
    payload["source"] = config.source

  try:
    resp = httpx.post(config.logs_url, json=payload, timeout=5.0)
  except httpx.HTTPError as exc:
    print(f"BeepStream daemon UNREACHABLE at {config.logs_url}: {exc}", file=sys.stderr)
    return 2

  try:
    body = resp.json()
  except ValueError:
    body = {}
  if resp.status_code >= 400:
    print(f"Rejected ({resp.status_code}): {body.get('error') or resp.text}", file=sys.stderr)
    return 1
  print(f"Logged {body.get('log', {}).get('id')}")
  return 0


def _run_kill(args: list[str]) -> int:
  parser = argparse.ArgumentParser(prog="beepstream_client kill", description="Broadcast a kill-switch signal")
  _add_server_arg(parser)
  parser.add_argument("--action", default="STOP", help="Action carried by the signal (default: STOP)")
  parsed = parser.parse_args(args)

  try:
    config = ClientConfig.from_params_or_env(server_url=parsed.server)
  except ValueError as exc:
    print(f"Error: {exc}", file=sys.stderr)
    return 1

  try:
    ws = websocket.create_connection(config.ws_url, timeout=5.0)
  except (websocket.WebSocketException, OSError) as exc:
    print(f"Could not open live channel at {config.ws_url}: {exc}", file=sys.stderr)
    return 2
  try:
    ws.send(json.dumps(kill_switch_payload(parsed.action)))
  except (websocket.WebSocketException, OSError) as exc:
    print(f"Kill switch not sent: {exc}", file=sys.stderr)
    return 2
  finally:
    ws.close()
  print(f"Kill switch {parsed.action} sent")
  return 0


if __name__ == "__main__":  # pragma: no cover
  main()
