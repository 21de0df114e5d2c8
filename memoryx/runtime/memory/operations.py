"""
Memory Operations - Engine facade for the hierarchical memory

WHAT: remember/recall/reflect/introspect/consolidate/status/evolve/forget/
      reason/graph over one store and its derived components
WHERE: memoryx/runtime/memory/operations.py - API layer
WHO: Host tool adapter, background jobs, embedding applications
TIME: remember p99 <20ms on local SQLite without a remote embedder

The engine is constructed explicitly and owns exactly one store handle and
the components derived from it (index, forgetting, conflict detector,
knowledge graph, reasoner, consolidation, rules file). Nothing is kept in
module-level state; each workspace gets its own engine.

Write path for ``remember``:
1. build Original -> Episode -> Semantic for the utterance
2. ask the conflict detector about the Semantic (pre-commit)
3. in one store transaction: save the three records, find-or-create the
   Theme for the Semantic's entities, persist embeddings
4. after commit: update the knowledge graph and emit events

Boundary Notes:
- Theme find-or-create runs inside the write transaction (single writer
  per store handle; SQLite uses BEGIN IMMEDIATE)
- Backend failures propagate; not-found is reported as None/False
- Every operation is wrapped in a ``memoryx.<operation>`` telemetry span
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from ...config import MemoryXConfig
from ...errors import InvalidActionError
from ...logging import EventLog, LogManager
from .conflict import Conflict, ConflictDetector
from .consolidation import ConsolidationEngine
from .embeddings import EmbeddingProvider, HashEmbeddingProvider
from .evolution import RulesFile
from .forgetting import ForgettingEngine
from .knowledge_graph import KnowledgeGraph
from .memory_store import MemoryStore, create_store
from .models import (
    EpisodeMemory,
    MemoryRecord,
    OriginalMemory,
    SemanticMemory,
    SemanticType,
    Speaker,
    ThemeMemory,
    ValidityPeriod,
    epoch_ms,
    utcnow,
)
from .reasoning import MultiHopReasoner, ReasoningResult
from .telemetry import NoOpTelemetryClient, TelemetryClient
from .vector_index import ScoredMemory, VectorIndex

logger = logging.getLogger(__name__)

EVENTS = ("memory:created", "memory:updated", "memory:deleted", "memory:conflict", "memory:forget")
EventHandler = Callable[[str, Mapping[str, Any]], None]


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def _scored_dict(item: ScoredMemory) -> Dict[str, Any]:
    return {"score": round(item.score, 6), "memory": item.record.model_dump(mode="json")}


def _conflict_dict(conflict: Conflict) -> Dict[str, Any]:
    return {
        "id": conflict.id,
        "type": conflict.conflict_type,
        "severity": conflict.severity.value,
        "memory_ids": conflict.memory_ids,
        "description": conflict.description,
    }


@dataclass(slots=True)
class RememberResult:
    original_id: str
    episode_id: str
    semantic_id: str
    theme_id: Optional[str]
    theme_created: bool = False
    deduplicated: bool = False
    conflicts: List[Conflict] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original_id": self.original_id,
            "episode_id": self.episode_id,
            "semantic_id": self.semantic_id,
            "theme_id": self.theme_id,
            "theme_created": self.theme_created,
            "deduplicated": self.deduplicated,
            "conflicts": [_conflict_dict(c) for c in self.conflicts],
        }


@dataclass(slots=True)
class RecallResult:
    query: str
    themes: List[ScoredMemory] = field(default_factory=list)
    semantics: List[ScoredMemory] = field(default_factory=list)
    episodes: List[MemoryRecord] = field(default_factory=list)
    total_tokens: int = 0
    evidence_density: float = 0.0
    uncertain: bool = True
    truncated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "themes": [_scored_dict(item) for item in self.themes],
            "semantics": [_scored_dict(item) for item in self.semantics],
            "episodes": [record.model_dump(mode="json") for record in self.episodes],
            "metrics": {
                "total_tokens": self.total_tokens,
                "evidence_density": round(self.evidence_density, 6),
                "uncertain": self.uncertain,
                "truncated": self.truncated,
            },
        }


class MemoryEngine:
    """Owns one store and every component derived from it."""

    def __init__(
        self,
        store: MemoryStore,
        config: Optional[MemoryXConfig] = None,
        *,
        provider: Optional[EmbeddingProvider] = None,
        telemetry: Optional[TelemetryClient] = None,
    ) -> None:
        self.config = config or MemoryXConfig()
        self.store = store
        self.telemetry = telemetry or NoOpTelemetryClient()
        self.index = VectorIndex(store, provider)
        self.forgetting = ForgettingEngine(store, self.config.forgetting)
        self.conflicts = ConflictDetector(store, self.index, self.config.conflict)
        self.graph = KnowledgeGraph(store)
        self.reasoner = MultiHopReasoner(self.graph, self.index, store)
        self.consolidation = ConsolidationEngine(
            store, self.config.hierarchy, self.config.skills, self.config.auto_reflection
        )
        self.rules = RulesFile(self.config.rules_path)
        self._handlers: Dict[str, List[EventHandler]] = {event: [] for event in EVENTS}

    @classmethod
    def from_config(
        cls,
        config: Optional[MemoryXConfig] = None,
        *,
        provider: Optional[EmbeddingProvider] = None,
        telemetry: Optional[TelemetryClient] = None,
    ) -> "MemoryEngine":
        config = config or MemoryXConfig()
        LogManager.setup(config.log_level, config.log_json)
        if provider is None and config.embedding.provider == "hash":
            provider = HashEmbeddingProvider(config.embedding.dimension)
        engine = cls(create_store(config), config, provider=provider, telemetry=telemetry)
        if config.event_log_path is not None:
            sink = EventLog(config.event_log_path)
            for event in EVENTS:
                engine.on(event, sink)
        return engine

    def close(self) -> None:
        self.store.close()

    # ------------------ events ------------------
    def on(self, event: str, handler: EventHandler) -> None:
        if event not in self._handlers:
            raise ValueError(f"Unknown memory event '{event}'")
        self._handlers[event].append(handler)

    def _emit(self, event: str, payload: Mapping[str, Any]) -> None:
        for handler in self._handlers[event]:
            handler(event, payload)

    # ------------------ remember ----------------
    def remember(
        self,
        content: str,
        *,
        memory_type: SemanticType = "fact",
        confidence: float = 0.5,
        entities: Optional[Iterable[str]] = None,
        session_id: Optional[str] = None,
        speaker: Speaker = "user",
        validity_period: Optional[Union[ValidityPeriod, Mapping[str, Any]]] = None,
        deduplicate: bool = False,
    ) -> RememberResult:
        if not content or not content.strip():
            raise ValueError("content must be a non-empty string")
        refs = [e.strip() for e in (entities or []) if e and e.strip()]
        period = ValidityPeriod.model_validate(validity_period) if validity_period is not None else None

        with self.telemetry.span("memoryx.remember", attributes={"memory_type": memory_type}) as span:
            now = utcnow()
            original = OriginalMemory(
                content=content,
                timestamp=now,
                session_id=session_id or "default",
                speaker=speaker,
                created_at=now,
                updated_at=now,
            )
            episode = EpisodeMemory(
                summary=content[:100],
                original_ids=[original.id],
                start_time=now,
                end_time=now,
                boundary_type="topic",
                coherence_score=confidence,
                created_at=now,
                updated_at=now,
            )

            duplicate = self._find_duplicate(content, memory_type) if deduplicate else None
            if duplicate is not None:
                result = self._reinforce(duplicate, original, episode, confidence)
                span.set_attribute("deduplicated", True)
                return result

            semantic = SemanticMemory(
                content=content,
                memory_type=memory_type,
                confidence=confidence,
                entity_refs=refs,
                source_episodes=[episode.id],
                validity_period=period,
                created_at=now,
                updated_at=now,
            )
            conflicts = self.conflicts.detect(semantic)
            semantic.conflicting_with = [c.second.id for c in conflicts]

            with self.store.transaction():
                self.store.save(original)
                self.store.save(episode)
                self.store.save(semantic)
                theme, created = self._assign_theme(semantic)
                self.index.index_batch(
                    [(record.id, record.primary_text()) for record in (original, episode, semantic, theme)]
                )

            self.graph.update(semantic)
            span.set_attribute("conflicts", len(conflicts))
            span.set_attribute("theme_created", created)

        result = RememberResult(
            original_id=original.id,
            episode_id=episode.id,
            semantic_id=semantic.id,
            theme_id=theme.id,
            theme_created=created,
            conflicts=conflicts,
        )
        self._emit("memory:created", result.to_dict())
        if conflicts:
            self._emit("memory:conflict", {"semantic_id": semantic.id, "conflicts": [_conflict_dict(c) for c in conflicts]})
        logger.debug(f"Remembered {semantic.id} under theme {theme.id} (created={created})")
        return result

    def _assign_theme(self, semantic: SemanticMemory) -> Tuple[ThemeMemory, bool]:
        """Append to the first theme matching an entity, else create one.

        Must run inside the write transaction so lookup and write are atomic.
        """
        themes = [t for t in self.store.all("theme") if isinstance(t, ThemeMemory)]
        for entity in semantic.entity_refs:
            for theme in themes:
                if theme.matches_entity(entity):
                    if semantic.id not in theme.semantic_ids:
                        theme.semantic_ids.append(semantic.id)
                    theme.updated_at = semantic.created_at
                    self.store.save(theme)
                    return theme, False

        name = semantic.entity_refs[0] if semantic.entity_refs else f"Theme-{epoch_ms(semantic.created_at)}"
        theme = ThemeMemory(
            name=name,
            description=f"Theme for {name}",
            semantic_ids=[semantic.id],
            coherence_score=semantic.confidence,
            created_at=semantic.created_at,
            updated_at=semantic.created_at,
        )
        self.store.save(theme)
        return theme, True

    def _find_duplicate(self, content: str, memory_type: str) -> Optional[SemanticMemory]:
        normalized = content.strip().lower()
        for record in self.store.search(content.strip(), level="semantic", limit=20):
            if (
                isinstance(record, SemanticMemory)
                and record.memory_type == memory_type
                and record.content.strip().lower() == normalized
            ):
                return record
        return None

    def _reinforce(
        self,
        semantic: SemanticMemory,
        original: OriginalMemory,
        episode: EpisodeMemory,
        confidence: float,
    ) -> RememberResult:
        semantic.confidence = max(semantic.confidence, confidence)
        if episode.id not in semantic.source_episodes:
            semantic.source_episodes.append(episode.id)
        semantic.updated_at = episode.created_at
        with self.store.transaction():
            self.store.save(original)
            self.store.save(episode)
            self.store.save(semantic)
            self.store.record_access(semantic.id)
            self.index.index_batch([(original.id, original.content), (episode.id, episode.summary)])
        theme_id = next(
            (t.id for t in self.consolidation.themes() if semantic.id in t.semantic_ids),
            None,
        )
        result = RememberResult(
            original_id=original.id,
            episode_id=episode.id,
            semantic_id=semantic.id,
            theme_id=theme_id,
            deduplicated=True,
        )
        self._emit("memory:updated", {"semantic_id": semantic.id, "confidence": semantic.confidence})
        return result

    # ------------------ recall ------------------
    def recall(self, query: str, max_tokens: Optional[int] = None) -> RecallResult:
        retrieval = self.config.retrieval
        budget = max_tokens or retrieval.max_tokens
        with self.telemetry.span("memoryx.recall", attributes={"max_tokens": budget}) as span:
            themes = self.index.search(query, level="theme", limit=retrieval.theme_top_k)

            semantics: Dict[str, ScoredMemory] = {}
            for item in self.index.search(query, level="semantic", limit=retrieval.semantic_top_k):
                semantics.setdefault(item.record.id, item)
            best_score = max((item.score for item in semantics.values()), default=0.0)
            for item in themes:
                theme = item.record
                if not isinstance(theme, ThemeMemory):
                    continue
                for semantic_id in theme.semantic_ids[: retrieval.semantic_top_k]:
                    if semantic_id in semantics:
                        continue
                    record = self.store.get(semantic_id, "semantic")
                    if record is not None:
                        semantics[semantic_id] = ScoredMemory(record, item.score)

            episodes: Dict[str, MemoryRecord] = {}
            for item in semantics.values():
                if not isinstance(item.record, SemanticMemory):
                    continue
                for episode_id in item.record.source_episodes:
                    if episode_id not in episodes:
                        record = self.store.get(episode_id, "episode")
                        if record is not None:
                            episodes[episode_id] = record

            result = RecallResult(query=query, uncertain=best_score < retrieval.uncertainty_threshold)
            used = 0
            for bucket, items in (
                (result.themes, themes),
                (result.semantics, list(semantics.values())),
                (result.episodes, list(episodes.values())),
            ):
                for entry in items:
                    record = entry.record if isinstance(entry, ScoredMemory) else entry
                    cost = estimate_tokens(record.primary_text())
                    if used + cost > budget:
                        result.truncated = True
                        continue
                    used += cost
                    bucket.append(entry)
            result.total_tokens = used
            result.evidence_density = len(result.semantics) / max(1.0, used / 100)
            if result.evidence_density < retrieval.evidence_density_threshold:
                result.uncertain = True
            span.set_attribute("themes", len(result.themes))
            span.set_attribute("semantics", len(result.semantics))
        return result

    # ------------------ hierarchy ---------------
    def reflect(self, focus: Optional[str] = None) -> Dict[str, Any]:
        with self.telemetry.span("memoryx.reflect"):
            return self.consolidation.reflect(focus).to_dict()

    def introspect(self) -> Dict[str, Any]:
        with self.telemetry.span("memoryx.introspect"):
            stats = self.store.stats()
            themes = self.consolidation.themes()
            hierarchy = self.config.hierarchy
            avg_coherence = sum(t.coherence_score for t in themes) / len(themes) if themes else 0.0
            low_coherence = [t.id for t in themes if t.coherence_score < hierarchy.min_theme_coherence]
            oversized = [t.id for t in themes if len(t.semantic_ids) > hierarchy.max_theme_size]
            at_risk = self.forgetting.get_at_risk_memories()
            healthy = not oversized and len(at_risk) <= stats.total / 2
            return {
                "counts": stats.by_level,
                "total": stats.total,
                "avg_theme_coherence": round(avg_coherence, 6),
                "low_coherence_themes": low_coherence,
                "oversized_themes": oversized,
                "at_risk_memories": len(at_risk),
                "graph": self.graph.get_stats().model_dump(),
                "health": "healthy" if healthy else "needs_attention",
            }

    def consolidate(self, action: str, target_ids: Optional[List[str]] = None) -> Dict[str, Any]:
        targets = list(target_ids or [])
        with self.telemetry.span("memoryx.consolidate", attributes={"action": action}):
            if action == "merge":
                if len(targets) < 2:
                    raise InvalidActionError("merge requires at least two theme ids")
                merged = self.consolidation.merge_themes(targets)
                for theme_id in list(dict.fromkeys(targets))[1:]:
                    if merged is not None and theme_id != merged.id:
                        self._emit("memory:deleted", {"id": theme_id, "reason": "merge"})
                return {"action": action, "theme": merged.model_dump(mode="json") if merged else None}

            if action == "split":
                theme_ids = targets or [t.id for t in self.consolidation.oversized_themes()]
                created: List[str] = []
                for theme_id in theme_ids:
                    created.extend(child.id for child in self.consolidation.split_theme(theme_id))
                return {"action": action, "child_themes": created}

            if action == "resolve":
                conflicts = self.conflicts.get_all_conflicts()
                if targets:
                    wanted = set(targets)
                    conflicts = [c for c in conflicts if wanted & set(c.memory_ids)]
                resolutions = self.conflicts.auto_resolve(conflicts)
                deleted = [r.loser_id for r in resolutions.values() if r.loser_id]
                if deleted:
                    self.graph.rebuild()
                    for memory_id in deleted:
                        self._emit("memory:deleted", {"id": memory_id, "reason": "conflict"})
                return {
                    "action": action,
                    "conflicts": [_conflict_dict(c) for c in conflicts],
                    "resolutions": {cid: r.model_dump() for cid, r in resolutions.items()},
                }

            raise InvalidActionError(f"Unsupported consolidate action '{action}'")

    def status(self) -> Dict[str, Any]:
        with self.telemetry.span("memoryx.status"):
            return {
                "store": self.store.stats().model_dump(),
                "theme_distribution": {t.name: len(t.semantic_ids) for t in self.consolidation.themes()},
                "forgetting": self.forgetting.get_stats().model_dump(),
            }

    def evolve(self, action: str, content: str, reason: str = "") -> Dict[str, Any]:
        with self.telemetry.span("memoryx.evolve", attributes={"action": action}):
            if action == "add_rule":
                entry = self.rules.append_rule(content, reason)
            elif action == "add_sop":
                entry = self.rules.append_sop(content, reason)
            else:
                raise InvalidActionError(f"Unsupported evolve action '{action}'")
            return {"action": action, "path": str(self.rules.path), "entry": entry}

    # ------------------ forgetting --------------
    def forget(
        self,
        action: str = "sweep",
        *,
        threshold: Optional[float] = None,
        memory_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        with self.telemetry.span("memoryx.forget", attributes={"action": action}):
            if action in ("sweep", "cleanup"):
                report = self.forgetting.archive_low_value(threshold) if action == "sweep" else self.forgetting.cleanup()
                if report.deleted:
                    self.graph.rebuild()
                payload = {"action": action, **report.model_dump()}
                self._emit("memory:forget", payload)
                return payload
            if action == "stats":
                return {"action": action, **self.forgetting.get_stats().model_dump()}
            if action == "at_risk":
                limit = 0.4 if threshold is None else threshold
                return {
                    "action": action,
                    "memories": [
                        {"id": s.record.id, "level": s.record.level, "retention": s.retention, "importance": s.importance}  # type: ignore[attr-defined]
                        for s in self.forgetting.get_at_risk_memories(limit)
                    ],
                }

            if memory_id is None:
                raise InvalidActionError(f"forget action '{action}' requires memory_id")
            if action == "delete":
                deleted = self.store.delete(memory_id)
                if deleted:
                    self.graph.rebuild()
                    self._emit("memory:deleted", {"id": memory_id, "reason": "manual"})
                return {"action": action, "id": memory_id, "deleted": deleted}
            if action == "boost":
                return {"action": action, "id": memory_id, "boosted": self.forgetting.boost(memory_id)}
            if action == "predict":
                record = self.store.get(memory_id)
                days = self.forgetting.predict_forget_days(record, threshold) if record is not None else None
                return {"action": action, "id": memory_id, "days": days}
            raise InvalidActionError(f"Unsupported forget action '{action}'")

    # ------------------ reasoning ---------------
    def reason(self, query: str, max_hops: int = 3) -> ReasoningResult:
        with self.telemetry.span("memoryx.reason", attributes={"max_hops": max_hops}) as span:
            result = self.reasoner.reason(query, max_hops)
            span.set_attribute("evidence", len(result.evidence))
            return result

    def graph_query(
        self,
        action: str = "stats",
        *,
        name: Optional[str] = None,
        target: Optional[str] = None,
        max_hops: int = 3,
        depth: int = 2,
    ) -> Dict[str, Any]:
        with self.telemetry.span("memoryx.graph", attributes={"action": action}):
            if action == "stats":
                return {"action": action, **self.graph.get_stats().model_dump()}
            if action == "entities":
                return {"action": action, "entities": [e.model_dump(mode="json") for e in self.graph.get_all_entities()]}
            if name is None:
                raise InvalidActionError(f"graph action '{action}' requires name")
            entity = self.graph.get_entity(name)
            if action == "entity":
                relations = self.graph.get_entity_relations(entity.id) if entity else []
                return {
                    "action": action,
                    "entity": entity.model_dump(mode="json") if entity else None,
                    "relations": [r.model_dump(mode="json") for r in relations],
                }
            if action == "related":
                related = self.graph.get_related_entities(entity.id, depth) if entity else []
                return {"action": action, "entity": name, "related": [e.model_dump(mode="json") for e in related]}
            if action == "path":
                if target is None:
                    raise InvalidActionError("graph action 'path' requires target")
                path = self.graph.find_path(name, target, max_hops)
                if path is None:
                    return {"action": action, "path": None}
                return {
                    "action": action,
                    "path": {
                        "entities": [e.display_name for e in path.entities],
                        "relations": [r.relation_type for r in path.relations],
                        "hops": path.hops,
                        "total_weight": path.total_weight,
                        "description": path.describe(),
                    },
                }
            raise InvalidActionError(f"Unsupported graph action '{action}'")


__all__ = [
    "EVENTS",
    "MemoryEngine",
    "RecallResult",
    "RememberResult",
    "estimate_tokens",
]
