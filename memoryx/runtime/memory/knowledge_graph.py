"""
Knowledge Graph - Entities and typed relations mined from semantic facts

WHAT: In-process entity/relation graph with BFS path and neighborhood queries
WHERE: memoryx/runtime/memory/knowledge_graph.py - reasoning substrate
WHO: remember (incremental update), graph/reason operations
TIME: update O(k^2) in entities per fact; BFS bounded by max_hops

Every entity reference on a semantic becomes (or reinforces) an entity
node keyed by its normalized name. Each unordered pair of entities on the
same semantic gets a typed relation; repeating the pair adds 0.1 to the
edge weight and appends the semantic id as evidence.

Typing is keyword-driven:
- entity types come from the fact text (subject pronouns/"user" mark the
  first-mentioned entity as a person)
- relation types come from verbs such as prefer/dislike/part of/in/because

Boundary Notes:
- Graph state is rebuilt from the store on construction and on rebuild()
- Paths are shortest-by-hops over the undirected graph, not highest weight
- Stale evidence after deletes is cleared by rebuild(), not incrementally
"""

from __future__ import annotations

import logging
import re
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, List, Literal, Optional, Set, Tuple

from pydantic import BaseModel, Field

from .memory_store import MemoryStore
from .models import SemanticMemory, epoch_ms, utcnow

logger = logging.getLogger(__name__)

EntityType = Literal["person", "organization", "location", "concept", "event", "object", "topic"]
RelationType = Literal[
    "related_to",
    "part_of",
    "has_property",
    "prefers",
    "dislikes",
    "works_at",
    "located_in",
    "occurred_at",
    "caused_by",
    "follows",
    "contradicts",
]

PERSON_WORDS = frozenset({"user", "he", "she", "they", "him", "her", "them", "i", "me"})
LOCATION_WORDS = frozenset({"at", "in"})

_WORD = re.compile(r"[a-z0-9']+")


def normalize_name(name: str) -> str:
    return " ".join(name.lower().split())


def infer_entity_type(name: str, content: str, is_subject: bool = False) -> EntityType:
    text = content.lower()
    words = set(_WORD.findall(text))
    if normalize_name(name) in PERSON_WORDS or (is_subject and words & PERSON_WORDS):
        return "person"
    if any(k in text for k in ("company", "team", "organization")):
        return "organization"
    if "located" in text or words & LOCATION_WORDS:
        return "location"
    if any(k in text for k in ("happened", "occurred", "event")):
        return "event"
    if any(k in text for k in ("prefer", "like", "want")):
        return "topic"
    return "concept"


def infer_relation_type(content: str) -> RelationType:
    text = content.lower()
    words = set(_WORD.findall(text))
    # "dislike" contains "like", so negative verbs are checked first.
    if "dislike" in text or "hate" in text:
        return "dislikes"
    if "prefer" in text or "like" in text:
        return "prefers"
    if "part of" in text or "belongs to" in text:
        return "part_of"
    if "works at" in text or "works for" in text:
        return "works_at"
    if "located" in text or "in" in words:
        return "located_in"
    if "caused" in text or "because" in text:
        return "caused_by"
    return "related_to"


class Entity(BaseModel):
    id: str = Field(default_factory=lambda: f"entity-{epoch_ms()}-{uuid.uuid4().hex[:6]}")
    name: str
    display_name: str
    entity_type: EntityType = "concept"
    aliases: List[str] = Field(default_factory=list)
    memory_ids: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


class Relation(BaseModel):
    id: str
    source_id: str
    target_id: str
    relation_type: RelationType = "related_to"
    weight: float = 1.0
    evidence: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    def other(self, entity_id: str) -> str:
        return self.target_id if self.source_id == entity_id else self.source_id


@dataclass(slots=True)
class GraphPath:
    entities: List[Entity] = field(default_factory=list)
    relations: List[Relation] = field(default_factory=list)
    total_weight: float = 0.0

    @property
    def hops(self) -> int:
        return len(self.relations)

    def describe(self) -> str:
        parts = [self.entities[0].display_name] if self.entities else []
        for relation, entity in zip(self.relations, self.entities[1:]):
            parts.append(f"-[{relation.relation_type}]-> {entity.display_name}")
        return " ".join(parts)


class GraphStats(BaseModel):
    entity_count: int = 0
    relation_count: int = 0
    avg_connections: float = 0.0
    entity_types: Dict[str, int] = Field(default_factory=dict)


class KnowledgeGraph:
    """Entity/relation graph built incrementally from semantic memories."""

    def __init__(self, store: MemoryStore, *, autoload: bool = True) -> None:
        self.store = store
        self._lock = threading.RLock()
        self._entities: Dict[str, Entity] = {}
        self._names: Dict[str, str] = {}
        self._relations: Dict[str, Relation] = {}
        self._adjacency: Dict[str, List[str]] = {}
        if autoload:
            self.load_from_store()

    # ------------------ ingestion ---------------
    def load_from_store(self) -> int:
        semantics = [r for r in self.store.all("semantic") if isinstance(r, SemanticMemory)]
        for semantic in semantics:
            self.update(semantic)
        logger.debug(f"Knowledge graph loaded {len(semantics)} semantics, {len(self._entities)} entities")
        return len(semantics)

    def rebuild(self) -> None:
        with self._lock:
            self._entities.clear()
            self._names.clear()
            self._relations.clear()
            self._adjacency.clear()
            self.load_from_store()

    def update(self, semantic: SemanticMemory) -> List[Entity]:
        with self._lock:
            entities: List[Entity] = []
            seen: Set[str] = set()
            for position, ref in enumerate(semantic.entity_refs):
                key = normalize_name(ref)
                if not key or key in seen:
                    continue
                seen.add(key)
                entities.append(self._upsert_entity(ref, semantic, is_subject=position == 0))

            relation_type = infer_relation_type(semantic.content)
            for i, source in enumerate(entities):
                for target in entities[i + 1 :]:
                    self._upsert_relation(source.id, target.id, relation_type, semantic.id)
            return entities

    def add_entity(self, name: str, entity_type: EntityType = "concept") -> Entity:
        """Register an entity directly, without a backing semantic."""
        with self._lock:
            existing = self.get_entity(name)
            if existing is not None:
                return existing
            entity = Entity(name=normalize_name(name), display_name=name.strip(), entity_type=entity_type)
            self._index_entity(entity)
            return entity

    def add_relation(
        self,
        source_name: str,
        target_name: str,
        relation_type: RelationType = "related_to",
        evidence: Optional[str] = None,
    ) -> Relation:
        with self._lock:
            source = self.add_entity(source_name)
            target = self.add_entity(target_name)
            return self._upsert_relation(source.id, target.id, relation_type, evidence)

    def _index_entity(self, entity: Entity) -> None:
        self._entities[entity.id] = entity
        self._names[entity.name] = entity.id
        self._adjacency.setdefault(entity.id, [])

    def _upsert_entity(self, ref: str, semantic: SemanticMemory, *, is_subject: bool) -> Entity:
        existing = self.get_entity(ref)
        if existing is not None:
            if semantic.id not in existing.memory_ids:
                existing.memory_ids.append(semantic.id)
            display = ref.strip()
            if display != existing.display_name and display not in existing.aliases:
                existing.aliases.append(display)
            return existing

        entity = Entity(
            name=normalize_name(ref),
            display_name=ref.strip(),
            entity_type=infer_entity_type(ref, semantic.content, is_subject),
            memory_ids=[semantic.id],
        )
        self._index_entity(entity)
        return entity

    def _upsert_relation(
        self, source_id: str, target_id: str, relation_type: RelationType, evidence: Optional[str]
    ) -> Relation:
        # keyed on the unordered pair; the first-seen direction is kept
        low, high = sorted((source_id, target_id))
        relation_id = f"rel-{low}-{high}-{relation_type}"
        relation = self._relations.get(relation_id)
        if relation is not None:
            relation.weight = round(relation.weight + 0.1, 6)
            if evidence and evidence not in relation.evidence:
                relation.evidence.append(evidence)
            return relation

        relation = Relation(
            id=relation_id,
            source_id=source_id,
            target_id=target_id,
            relation_type=relation_type,
            evidence=[evidence] if evidence else [],
        )
        self._relations[relation_id] = relation
        self._adjacency.setdefault(source_id, []).append(relation_id)
        self._adjacency.setdefault(target_id, []).append(relation_id)
        return relation

    # ------------------ queries -----------------
    def get_entity(self, name: str) -> Optional[Entity]:
        entity_id = self._names.get(normalize_name(name))
        if entity_id is not None:
            return self._entities[entity_id]
        key = name.strip()
        for entity in self._entities.values():
            if key in entity.aliases:
                return entity
        return None

    def get_entity_by_id(self, entity_id: str) -> Optional[Entity]:
        return self._entities.get(entity_id)

    def get_entity_relations(self, entity_id: str) -> List[Relation]:
        return [self._relations[rid] for rid in self._adjacency.get(entity_id, [])]

    def find_path(self, source_name: str, target_name: str, max_hops: int = 3) -> Optional[GraphPath]:
        """Shortest path by hop count, or None if unknown/unreachable within max_hops."""
        source = self.get_entity(source_name)
        target = self.get_entity(target_name)
        if source is None or target is None:
            return None
        if source.id == target.id:
            return GraphPath(entities=[source])

        with self._lock:
            visited: Set[str] = {source.id}
            queue: Deque[Tuple[str, List[str], List[Relation]]] = deque([(source.id, [source.id], [])])
            while queue:
                current, node_ids, edges = queue.popleft()
                if len(edges) >= max_hops:
                    continue
                for relation in self.get_entity_relations(current):
                    neighbor = relation.other(current)
                    if neighbor in visited:
                        continue
                    path_ids = node_ids + [neighbor]
                    path_edges = edges + [relation]
                    if neighbor == target.id:
                        return GraphPath(
                            entities=[self._entities[eid] for eid in path_ids],
                            relations=path_edges,
                            total_weight=round(sum(r.weight for r in path_edges), 6),
                        )
                    visited.add(neighbor)
                    queue.append((neighbor, path_ids, path_edges))
        return None

    def get_related_entities(self, entity_id: str, max_depth: int = 2) -> List[Entity]:
        """Entities within ``max_depth`` hops, nearest first, origin excluded."""
        if entity_id not in self._entities:
            return []
        with self._lock:
            visited: Set[str] = {entity_id}
            related: List[Entity] = []
            queue: Deque[Tuple[str, int]] = deque([(entity_id, 0)])
            while queue:
                current, depth = queue.popleft()
                if depth >= max_depth:
                    continue
                for relation in self.get_entity_relations(current):
                    neighbor = relation.other(current)
                    if neighbor in visited:
                        continue
                    visited.add(neighbor)
                    related.append(self._entities[neighbor])
                    queue.append((neighbor, depth + 1))
            return related

    def get_all_entities(self) -> List[Entity]:
        return list(self._entities.values())

    def get_all_relations(self) -> List[Relation]:
        return list(self._relations.values())

    def get_stats(self) -> GraphStats:
        entity_types: Dict[str, int] = {}
        for entity in self._entities.values():
            entity_types[entity.entity_type] = entity_types.get(entity.entity_type, 0) + 1
        count = len(self._entities)
        return GraphStats(
            entity_count=count,
            relation_count=len(self._relations),
            avg_connections=(2 * len(self._relations) / count) if count else 0.0,
            entity_types=entity_types,
        )


__all__ = [
    "Entity",
    "EntityType",
    "GraphPath",
    "GraphStats",
    "KnowledgeGraph",
    "Relation",
    "RelationType",
    "infer_entity_type",
    "infer_relation_type",
    "normalize_name",
]
