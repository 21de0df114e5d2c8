"""
Forgetting Engine - Retention decay and low-value pruning

WHAT: Ebbinghaus-style retention, importance scoring, archive/delete sweeps
WHERE: memoryx/runtime/memory/forgetting.py - memory dynamics
WHO: Scheduled sweeps, forget/introspect operations
TIME: Linear in record count; intended cadence is daily

Retention decays as ``R = exp(-age_days / stability)`` with
``stability = 1 + access_count * 0.5``, floored at ``min_retention``.
Importance is a composite of confidence, fact type, entity fan-out and
theme breadth. A sweep multiplies the two with an access bonus:

    combined = R * I * (1 + log10(1 + access_count) / 2)

Records under ``delete_threshold`` are removed, records under the sweep
threshold have their stored retention score halved (soft archive).

Boundary Notes:
- Sweeps are not isolated from concurrent writes; delete is idempotent
- Cumulative archive/delete counts live on the engine instance
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel

from ...config import ForgettingConfig
from .memory_store import MemoryStore
from .models import MemoryRecord, SemanticMemory, ThemeMemory, utcnow

logger = logging.getLogger(__name__)

TYPE_WEIGHTS: Dict[str, float] = {
    "fact": 0.3,
    "preference": 0.25,
    "goal": 0.35,
    "constraint": 0.3,
    "event": 0.2,
}


class ForgettingReport(BaseModel):
    archived: int = 0
    deleted: int = 0
    retained: int = 0


class ForgettingStats(BaseModel):
    total: int = 0
    archived: int = 0
    deleted: int = 0
    retained: int = 0
    candidates_for_archive: int = 0


@dataclass(slots=True)
class MemoryScore:
    record: MemoryRecord
    retention: float
    importance: float


@dataclass
class ForgettingEngine:
    """Scores records and prunes the ones that stopped earning their keep."""

    store: MemoryStore
    config: ForgettingConfig = field(default_factory=ForgettingConfig)
    archived_total: int = 0
    deleted_total: int = 0

    def calculate_retention(self, record: MemoryRecord, now: Optional[datetime] = None) -> float:
        stability = 1.0 + record.access_count * 0.5
        retention = math.exp(-record.age_days(now) / stability)
        return max(self.config.min_retention, min(1.0, retention))

    def calculate_importance(self, record: MemoryRecord) -> float:
        importance = 0.5
        if isinstance(record, SemanticMemory):
            importance += record.confidence * 0.2
            importance += TYPE_WEIGHTS.get(record.memory_type, 0.2)
            importance += min(0.2, len(record.entity_refs) * 0.05)
        elif isinstance(record, ThemeMemory):
            importance += min(0.15, len(record.semantic_ids) * 0.03)
        return max(0.0, min(1.0, importance))

    def combined_score(self, record: MemoryRecord, now: Optional[datetime] = None) -> float:
        access_bonus = 1.0 + math.log10(1 + record.access_count) / 2.0
        return self.calculate_retention(record, now) * self.calculate_importance(record) * access_bonus

    def archive_low_value(self, threshold: Optional[float] = None, now: Optional[datetime] = None) -> ForgettingReport:
        """Delete, soft-archive or retain every stored record."""
        limit = self.config.archive_threshold if threshold is None else threshold
        now = now or utcnow()
        report = ForgettingReport()

        for record in self.store.all():
            combined = self.combined_score(record, now)
            if combined < self.config.delete_threshold:
                if self.store.delete(record.id):
                    report.deleted += 1
            elif combined < limit:
                retention = self.calculate_retention(record, now)
                self.store.set_retention_score(record.id, retention * 0.5)
                report.archived += 1
            else:
                report.retained += 1

        self.archived_total += report.archived
        self.deleted_total += report.deleted
        logger.info(
            f"Forgetting sweep (threshold={limit}): archived={report.archived} "
            f"deleted={report.deleted} retained={report.retained}"
        )
        return report

    def cleanup(self) -> ForgettingReport:
        """Delete-only sweep at the delete threshold."""
        return self.archive_low_value(self.config.delete_threshold)

    def get_stats(self, now: Optional[datetime] = None) -> ForgettingStats:
        records = self.store.all()
        candidates = 0
        retained = 0
        for record in records:
            retention = self.calculate_retention(record, now)
            if self.config.delete_threshold <= retention < self.config.archive_threshold:
                candidates += 1
            elif retention >= self.config.archive_threshold:
                retained += 1
        return ForgettingStats(
            total=len(records),
            archived=self.archived_total,
            deleted=self.deleted_total,
            retained=retained,
            candidates_for_archive=candidates,
        )

    def get_at_risk_memories(self, threshold: float = 0.4, now: Optional[datetime] = None) -> List[MemoryScore]:
        at_risk: List[MemoryScore] = []
        for record in self.store.all():
            retention = self.calculate_retention(record, now)
            if retention < threshold:
                at_risk.append(MemoryScore(record, retention, self.calculate_importance(record)))
        at_risk.sort(key=lambda item: item.retention)
        return at_risk

    def predict_forget_days(self, record: MemoryRecord, threshold: Optional[float] = None) -> float:
        """Days until ``retention * importance`` decays below ``threshold``."""
        limit = self.config.archive_threshold if threshold is None else threshold
        importance = self.calculate_importance(record)
        if limit <= 0 or importance <= limit:
            return 0.0
        stability = 1.0 + record.access_count * 0.5
        return max(0.0, -stability * math.log(limit / importance))

    def boost(self, memory_id: str) -> bool:
        """Record an access so the memory decays more slowly."""
        return self.store.record_access(memory_id)


__all__ = [
    "ForgettingEngine",
    "ForgettingReport",
    "ForgettingStats",
    "MemoryScore",
    "TYPE_WEIGHTS",
]
