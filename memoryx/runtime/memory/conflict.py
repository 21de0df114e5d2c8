"""
Conflict Detector - Contradiction checks between semantic facts

WHAT: Factual / preference / temporal conflict detection and resolution
WHERE: memoryx/runtime/memory/conflict.py - memory dynamics
WHO: remember (pre-commit check) and consolidate(action="resolve")
TIME: One index query per new semantic; pairwise scan for full audits

Detection asks the index for semantics similar to a new fact and then
classifies each candidate pair:

- factual: both ``fact``, contents differ, at least one shared entity
- preference: both ``preference``, exactly one side carries a negation
- temporal: both carry validity periods that overlap (open end = +inf)

Severity is a measure of how hard the pair is to auto-resolve, derived
from the confidence gap (rounded to 6 places so 0.9 vs 0.85 is exactly
0.05): gap > 0.1 is LOW, 0.05 <= gap <= 0.1 is MEDIUM, gap < 0.05 is HIGH.

Boundary Notes:
- auto_resolve deletes only for keep_highest_confidence / keep_newest
- ask_user and merge resolutions are returned without side effects
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ...config import ConflictConfig
from .memory_store import MemoryStore
from .models import SemanticMemory, epoch_ms, utcnow
from .vector_index import VectorIndex

logger = logging.getLogger(__name__)

NEGATION_MARKERS = frozenset({"not", "don't", "doesn't", "never", "no"})
# Verbs that negate a preference without a separate negation word.
NEGATIVE_PREFERENCE_STEMS = ("dislike", "hate")
MEDIUM_GAP = 0.05
NEWER_WINS_AFTER_SECONDS = 3600.0

_WORD = re.compile(r"[a-z']+")

ConflictType = Literal["factual", "preference", "temporal"]
ResolutionStrategy = Literal["keep_highest_confidence", "keep_newest", "ask_user", "merge"]


class Severity(str, Enum):
    """How hard a conflict is to settle automatically.

    LOW means one side clearly wins on confidence; HIGH means the two sides
    are nearly indistinguishable and need a human decision.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Conflict(BaseModel):
    id: str = Field(default_factory=lambda: f"conflict-{epoch_ms()}-{uuid.uuid4().hex[:6]}")
    conflict_type: ConflictType
    severity: Severity
    first: SemanticMemory
    second: SemanticMemory
    description: str
    detected_at: datetime = Field(default_factory=utcnow)

    @property
    def memory_ids(self) -> List[str]:
        return [self.first.id, self.second.id]


class Resolution(BaseModel):
    conflict_id: str
    strategy: ResolutionStrategy
    winner_id: Optional[str] = None
    loser_id: Optional[str] = None
    reason: str


def confidence_gap(first: SemanticMemory, second: SemanticMemory) -> float:
    return round(abs(first.confidence - second.confidence), 6)


def has_negation(text: str) -> bool:
    words = _WORD.findall(text.lower().replace("’", "'"))
    for word in words:
        if word in NEGATION_MARKERS or word.startswith(NEGATIVE_PREFERENCE_STEMS):
            return True
    return False


class ConflictDetector:
    """Finds and settles contradictions among semantic memories."""

    def __init__(self, store: MemoryStore, index: VectorIndex, config: Optional[ConflictConfig] = None) -> None:
        self.store = store
        self.index = index
        self.config = config or ConflictConfig()

    def classify_severity(self, first: SemanticMemory, second: SemanticMemory) -> Severity:
        gap = confidence_gap(first, second)
        if gap > self.config.confidence_diff_threshold:
            return Severity.LOW
        if gap >= MEDIUM_GAP:
            return Severity.MEDIUM
        return Severity.HIGH

    def analyze(self, first: SemanticMemory, second: SemanticMemory) -> Optional[Conflict]:
        """Classify a pair, checking factual, preference, then temporal."""
        conflict_type: Optional[ConflictType] = None
        description = ""

        if first.memory_type == "fact" and second.memory_type == "fact":
            same = first.content.strip().lower() == second.content.strip().lower()
            shared = {e.lower() for e in first.entity_refs} & {e.lower() for e in second.entity_refs}
            if not same and shared:
                conflict_type = "factual"
                description = f"Conflicting facts about {', '.join(sorted(shared))}"

        if conflict_type is None and first.memory_type == "preference" and second.memory_type == "preference":
            if has_negation(first.content) != has_negation(second.content):
                conflict_type = "preference"
                description = "Contradictory preferences (negation mismatch)"

        if conflict_type is None and first.validity_period and second.validity_period:
            if first.validity_period.overlaps(second.validity_period):
                conflict_type = "temporal"
                description = "Overlapping validity periods"

        if conflict_type is None:
            return None
        return Conflict(
            conflict_type=conflict_type,
            severity=self.classify_severity(first, second),
            first=first,
            second=second,
            description=description,
        )

    def detect(self, semantic: SemanticMemory) -> List[Conflict]:
        candidates = self.index.search(
            semantic.content,
            level="semantic",
            limit=10,
            min_score=self.config.similarity_threshold,
        )
        conflicts: List[Conflict] = []
        for item in candidates:
            existing = item.record
            if existing.id == semantic.id or not isinstance(existing, SemanticMemory):
                continue
            conflict = self.analyze(semantic, existing)
            if conflict is not None:
                conflicts.append(conflict)
        if conflicts:
            logger.info(f"Detected {len(conflicts)} conflict(s) for {semantic.id}")
        return conflicts

    def resolve(self, conflict: Conflict) -> Resolution:
        first, second = conflict.first, conflict.second

        if confidence_gap(first, second) > self.config.confidence_diff_threshold:
            winner, loser = (first, second) if first.confidence >= second.confidence else (second, first)
            return Resolution(
                conflict_id=conflict.id,
                strategy="keep_highest_confidence",
                winner_id=winner.id,
                loser_id=loser.id,
                reason=f"Confidence {winner.confidence:.2f} vs {loser.confidence:.2f}",
            )

        elapsed = abs((first.created_at - second.created_at).total_seconds())
        if elapsed > NEWER_WINS_AFTER_SECONDS:
            winner, loser = (first, second) if first.created_at > second.created_at else (second, first)
            return Resolution(
                conflict_id=conflict.id,
                strategy="keep_newest",
                winner_id=winner.id,
                loser_id=loser.id,
                reason="More recent information preferred",
            )

        if conflict.severity is Severity.HIGH:
            return Resolution(
                conflict_id=conflict.id,
                strategy="ask_user",
                reason="Conflict is ambiguous and needs a human decision",
            )

        return Resolution(
            conflict_id=conflict.id,
            strategy="merge",
            winner_id=first.id,
            reason="Contents need reconciliation",
        )

    def auto_resolve(self, conflicts: List[Conflict]) -> Dict[str, Resolution]:
        resolutions: Dict[str, Resolution] = {}
        for conflict in conflicts:
            resolution = self.resolve(conflict)
            if resolution.strategy in ("keep_highest_confidence", "keep_newest") and resolution.loser_id:
                self.store.delete(resolution.loser_id)
                logger.info(f"Resolved {conflict.id} via {resolution.strategy}; removed {resolution.loser_id}")
            resolutions[conflict.id] = resolution
        return resolutions

    def get_all_conflicts(self) -> List[Conflict]:
        """Exhaustive pairwise scan over stored semantics."""
        semantics = [r for r in self.store.all("semantic") if isinstance(r, SemanticMemory)]
        conflicts: List[Conflict] = []
        for i, first in enumerate(semantics):
            for second in semantics[i + 1 :]:
                conflict = self.analyze(first, second)
                if conflict is not None:
                    conflicts.append(conflict)
        return conflicts


__all__ = [
    "Conflict",
    "ConflictDetector",
    "ConflictType",
    "NEGATION_MARKERS",
    "Resolution",
    "ResolutionStrategy",
    "Severity",
    "confidence_gap",
    "has_negation",
]
