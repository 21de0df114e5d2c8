"""Logging utilities for memoryx.

``LogManager`` configures structlog-backed structured output; the event
helpers persist memory lifecycle events as JSON lines.
"""

from __future__ import annotations

from .events import EventLog, append_record, build_record  # noqa: F401
from .logging import ROOT_LOGGER, LogManager  # noqa: F401

__all__ = [
    "EventLog",
    "LogManager",
    "ROOT_LOGGER",
    "append_record",
    "build_record",
]
