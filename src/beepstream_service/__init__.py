"""
beepstream_service

Daemon that ingests log events over HTTP, keeps the active/archived log
store, and pushes live notifications to dashboard and mobile clients.
"""

__version__ = "0.1.0"
