"""
Memory Models - Type-safe records for the four-level memory hierarchy

WHAT: Pydantic models for originals, episodes, semantics and themes
WHERE: memoryx/runtime/memory/models.py - data layer
WHO: Store, index and engine code creating/validating memory records
TIME: Model validation <1ms

The hierarchy is a strict containment chain. Each level references the
level below by id list, never by embedded copy:

- original: one raw utterance (leaf)
- episode: contiguous block of originals, summarized
- semantic: typed, confidence-scored fact distilled from episodes
- theme: named cluster of semantics sharing an entity

Every record carries a ``level`` discriminant so persisted payloads are
rebuilt through a single tagged union (``parse_memory``) and every variant
exposes ``primary_text()`` for search and indexing.

Boundary Notes:
- Confidence and coherence are clamped to [0, 1], never rejected
- Access counters and retention score are owned by the store
- Ids are ``{prefix}-{epoch_ms}-{suffix}``; uniqueness is by construction
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

MemoryLevel = Literal["original", "episode", "semantic", "theme"]
SemanticType = Literal["fact", "preference", "goal", "constraint", "event"]
BoundaryType = Literal["time", "topic", "intent"]
Speaker = Literal["user", "agent"]

MEMORY_LEVELS: tuple = ("original", "episode", "semantic", "theme")

LEVEL_PREFIXES: Dict[str, str] = {
    "original": "orig",
    "episode": "ep",
    "semantic": "sem",
    "theme": "theme",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def epoch_ms(moment: Optional[datetime] = None) -> int:
    return int((moment or utcnow()).timestamp() * 1000)


def generate_memory_id(prefix: str) -> str:
    """Generate ``{prefix}-{epoch_ms}-{uuid8}``."""
    return f"{prefix}-{epoch_ms()}-{uuid.uuid4().hex[:8]}"


def clamp_unit(value: Any) -> float:
    """Clamp a score into [0, 1]."""
    return max(0.0, min(1.0, float(value)))


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ValidityPeriod(BaseModel):
    """Time span during which a semantic fact holds. ``end=None`` is open-ended."""

    start: datetime
    end: Optional[datetime] = None

    @field_validator("start", "end")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _ensure_utc(value) if value is not None else None

    def overlaps(self, other: ValidityPeriod) -> bool:
        end_self = self.end.timestamp() if self.end else float("inf")
        end_other = other.end.timestamp() if other.end else float("inf")
        return not (end_self < other.start.timestamp() or end_other < self.start.timestamp())


class MemoryRecord(BaseModel):
    """Fields shared by all four levels."""

    children_field: ClassVar[Optional[str]] = None

    id: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    access_count: int = 0
    last_accessed: Optional[datetime] = None
    retention_score: float = 1.0

    @field_validator("created_at", "updated_at", "last_accessed")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _ensure_utc(value) if value is not None else None

    def primary_text(self) -> str:
        raise NotImplementedError

    def child_ids(self) -> List[str]:
        """Ids of the level below, persisted as join rows."""
        if self.children_field is None:
            return []
        return list(getattr(self, self.children_field))

    def age_days(self, now: Optional[datetime] = None) -> float:
        delta = (now or utcnow()) - self.created_at
        return max(0.0, delta.total_seconds() / 86400.0)


class OriginalMemory(MemoryRecord):
    """One raw utterance."""

    level: Literal["original"] = "original"
    id: str = Field(default_factory=lambda: generate_memory_id("orig"))
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    session_id: str = "default"
    speaker: Speaker = "user"
    sentiment: Optional[float] = None
    importance: Optional[float] = None

    @field_validator("importance")
    @classmethod
    def _clamp_importance(cls, value: Optional[float]) -> Optional[float]:
        return clamp_unit(value) if value is not None else None

    def primary_text(self) -> str:
        return self.content


class EpisodeMemory(MemoryRecord):
    """A contiguous block of related originals."""

    children_field: ClassVar[Optional[str]] = "original_ids"

    level: Literal["episode"] = "episode"
    id: str = Field(default_factory=lambda: generate_memory_id("ep"))
    summary: str
    original_ids: List[str] = Field(default_factory=list)
    start_time: datetime = Field(default_factory=utcnow)
    end_time: datetime = Field(default_factory=utcnow)
    boundary_type: BoundaryType = "topic"
    coherence_score: float = 0.5

    @field_validator("coherence_score")
    @classmethod
    def _clamp_coherence(cls, value: float) -> float:
        return clamp_unit(value)

    def primary_text(self) -> str:
        return self.summary


class SemanticMemory(MemoryRecord):
    """A reusable, type-tagged fact."""

    children_field: ClassVar[Optional[str]] = "source_episodes"

    level: Literal["semantic"] = "semantic"
    id: str = Field(default_factory=lambda: generate_memory_id("sem"))
    content: str
    memory_type: SemanticType = "fact"
    confidence: float = 0.5
    entity_refs: List[str] = Field(default_factory=list)
    source_episodes: List[str] = Field(default_factory=list)
    validity_period: Optional[ValidityPeriod] = None
    conflicting_with: List[str] = Field(default_factory=list)

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, value: float) -> float:
        return clamp_unit(value)

    def primary_text(self) -> str:
        return self.content


class ThemeMemory(MemoryRecord):
    """A named cluster of semantics grouped by shared entity."""

    children_field: ClassVar[Optional[str]] = "semantic_ids"

    level: Literal["theme"] = "theme"
    id: str = Field(default_factory=lambda: generate_memory_id("theme"))
    name: str
    description: str = ""
    semantic_ids: List[str] = Field(default_factory=list)
    parent_theme: Optional[str] = None
    child_themes: List[str] = Field(default_factory=list)
    coherence_score: float = 0.5

    @field_validator("coherence_score")
    @classmethod
    def _clamp_coherence(cls, value: float) -> float:
        return clamp_unit(value)

    def primary_text(self) -> str:
        return self.description

    def matches_entity(self, entity: str) -> bool:
        needle = entity.lower()
        return needle in self.name.lower() or needle in self.description.lower()


AnyMemory = Annotated[
    Union[OriginalMemory, EpisodeMemory, SemanticMemory, ThemeMemory],
    Field(discriminator="level"),
]

_MEMORY_ADAPTER: TypeAdapter = TypeAdapter(AnyMemory)

# Columns the store keeps outside the JSON metadata blob.
STORE_COLUMNS = frozenset(
    {"id", "level", "created_at", "updated_at", "access_count", "last_accessed", "retention_score"}
)


def parse_memory(data: Dict[str, Any]) -> MemoryRecord:
    """Rebuild a record of any level from its ``level``-tagged payload."""
    return _MEMORY_ADAPTER.validate_python(data)


def memory_metadata(record: MemoryRecord) -> Dict[str, Any]:
    """JSON-ready attributes that are not stored as columns or join rows."""
    exclude = set(STORE_COLUMNS)
    if record.children_field:
        exclude.add(record.children_field)
    return record.model_dump(mode="json", exclude=exclude)


class StoreStats(BaseModel):
    total: int = 0
    by_level: Dict[str, int] = Field(default_factory=lambda: {level: 0 for level in MEMORY_LEVELS})
    avg_access_count: float = 0.0
    avg_retention_score: float = 1.0


__all__ = [
    "AnyMemory",
    "BoundaryType",
    "EpisodeMemory",
    "LEVEL_PREFIXES",
    "MEMORY_LEVELS",
    "MemoryLevel",
    "MemoryRecord",
    "OriginalMemory",
    "STORE_COLUMNS",
    "SemanticMemory",
    "SemanticType",
    "Speaker",
    "StoreStats",
    "ThemeMemory",
    "ValidityPeriod",
    "clamp_unit",
    "epoch_ms",
    "generate_memory_id",
    "memory_metadata",
    "parse_memory",
    "utcnow",
]
