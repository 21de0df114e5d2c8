"""JSONL event records for memory lifecycle events.

Each engine event (``memory:created``, ``memory:deleted``, ...) can be
appended to a JSON-lines file through ``EventLog``; one object per line,
never rewritten.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)


def build_record(event: str, payload: Mapping[str, Any], timestamp: Optional[datetime] = None) -> Dict[str, Any]:
    """Construct a structured event record."""

    return {
        "event": event,
        "timestamp": (timestamp or datetime.now(timezone.utc)).isoformat(),
        "payload": dict(payload),
    }


def append_record(output_path: Path, record: Mapping[str, Any]) -> None:
    """Append a record to a JSONL file."""

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("a", encoding="utf-8") as fh:
        json.dump(record, fh, ensure_ascii=False, default=str)
        fh.write("\n")


@dataclass(frozen=True)
class EventLog:
    """Engine event handler writing one JSONL record per event."""

    path: Path

    def __call__(self, event: str, payload: Mapping[str, Any]) -> None:
        append_record(self.path, build_record(event, payload))
        logger.debug(f"Logged {event} to {self.path}")


__all__ = ["EventLog", "append_record", "build_record"]
