"""Append-only rules file written by the evolve operation.

Rules are single Markdown list items, SOPs are level-3 sections. The file
is created with a header on first write and only ever appended to.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

from .models import epoch_ms, utcnow

logger = logging.getLogger(__name__)

RULES_HEADER = "# META\n\nRules and procedures learned from agent memory.\n"


class RulesFile:
    """Host-managed rules document (``META.md`` by default)."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _append(self, text: str) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if not self.path.exists():
                self.path.write_text(RULES_HEADER, encoding="utf-8")
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(text)

    def append_rule(self, content: str, reason: str = "", now: Optional[datetime] = None) -> str:
        entry = f"- [{(now or utcnow()).isoformat()}] {content} <!-- Reason: {reason} -->"
        self._append(f"\n{entry}")
        logger.info(f"Appended rule to {self.path}")
        return entry

    def append_sop(self, content: str, reason: str = "", now: Optional[datetime] = None) -> str:
        entry = f"### [SOP-{epoch_ms(now)}] {reason}\n{content}\n"
        self._append(f"\n{entry}")
        logger.info(f"Appended SOP to {self.path}")
        return entry

    def read(self) -> str:
        if not self.path.exists():
            return ""
        return self.path.read_text(encoding="utf-8")


__all__ = ["RULES_HEADER", "RulesFile"]
