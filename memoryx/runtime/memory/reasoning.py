"""
Multi-Hop Reasoning - Graph traversal plus rule-based inference

WHAT: Answers free-text queries by hopping across knowledge-graph relations
WHERE: memoryx/runtime/memory/reasoning.py - reasoning layer
WHO: reason operation; analogy and causal helpers for reflection tooling
TIME: O(max_hops * frontier * degree) store lookups, bounded by caps

Pipeline for ``reason``:
1. entity lookup: single words and adjacent bigrams of the query matched
   against known entity names
2. theme retrieval from the index, then expansion into member semantics
3. up to ``max_hops`` traversal rounds over the entity frontier, collecting
   semantics that mention reached entities; confidence decays by
   ``max(0.5, 1 - hop * 0.2)`` per productive round and a round with no
   new memories stops the loop
4. rule table applied to traversed edges whose endpoint types match
5. template answer: top-3 evidence snippets, top-2 inferences, path count

Boundary Notes:
- No generative summarization; answers are assembled text
- Backend errors propagate; nothing is caught here
- Paths between query entities are bounded to 2 hops
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Set, Tuple

from .knowledge_graph import Entity, EntityType, GraphPath, KnowledgeGraph, Relation, RelationType
from .memory_store import MemoryStore
from .models import MemoryRecord, SemanticMemory, ThemeMemory
from .vector_index import VectorIndex

logger = logging.getLogger(__name__)

StepType = Literal["entity_lookup", "relation_traversal", "semantic_search", "theme_expansion", "inference"]

PATH_HOPS = 2
THEME_LIMIT = 5
THEME_EXPANSION = 3
MEMORIES_PER_ENTITY = 5
SNIPPET_CHARS = 100

_TOKEN = re.compile(r"[\w'-]+")


@dataclass(slots=True)
class InferenceRule:
    name: str
    source_type: EntityType
    relation_type: RelationType
    target_type: EntityType
    confidence: float
    template: str

    def matches(self, source: Entity, relation: Relation, target: Entity) -> bool:
        return (
            source.entity_type == self.source_type
            and relation.relation_type == self.relation_type
            and target.entity_type == self.target_type
        )


DEFAULT_RULES: Tuple[InferenceRule, ...] = (
    InferenceRule(
        "preference_inheritance", "person", "prefers", "topic", 0.7,
        "{source} prefers {target}; related topics may be preferred as well",
    ),
    InferenceRule(
        "location_context", "event", "located_in", "location", 0.8,
        "{source} happened in {target}; its context applies",
    ),
    InferenceRule(
        "temporal_sequence", "event", "follows", "event", 0.9,
        "{source} follows {target}",
    ),
)


@dataclass(slots=True)
class ReasoningStep:
    step_type: StepType
    description: str
    inputs: List[str] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)
    confidence: float = 1.0
    evidence: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.step_type,
            "description": self.description,
            "input": list(self.inputs),
            "output": list(self.outputs),
            "confidence": self.confidence,
            "evidence": list(self.evidence),
        }


def _path_to_dict(path: GraphPath) -> Dict[str, Any]:
    return {
        "entities": [entity.display_name for entity in path.entities],
        "relations": [relation.relation_type for relation in path.relations],
        "total_weight": path.total_weight,
        "description": path.describe(),
    }


@dataclass(slots=True)
class ReasoningResult:
    query: str
    answer: str
    steps: List[ReasoningStep] = field(default_factory=list)
    confidence: float = 0.0
    evidence: List[MemoryRecord] = field(default_factory=list)
    paths: List[GraphPath] = field(default_factory=list)
    inferences: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "answer": self.answer,
            "confidence": self.confidence,
            "steps": [step.to_dict() for step in self.steps],
            "evidence": [record.model_dump(mode="json") for record in self.evidence],
            "paths": [_path_to_dict(path) for path in self.paths],
            "inferences": list(self.inferences),
        }


def query_phrases(query: str) -> List[str]:
    """Single words and adjacent bigrams, in query order."""
    words = _TOKEN.findall(query.lower())
    bigrams = [f"{a} {b}" for a, b in zip(words, words[1:])]
    return bigrams + words


def snippet(text: str) -> str:
    return text if len(text) <= SNIPPET_CHARS else f"{text[:SNIPPET_CHARS]}..."


class MultiHopReasoner:
    """Combines the knowledge graph and the index to answer queries."""

    def __init__(
        self,
        graph: KnowledgeGraph,
        index: VectorIndex,
        store: MemoryStore,
        rules: Optional[List[InferenceRule]] = None,
    ) -> None:
        self.graph = graph
        self.index = index
        self.store = store
        self.rules: List[InferenceRule] = list(rules if rules is not None else DEFAULT_RULES)

    def add_rule(self, rule: InferenceRule) -> None:
        self.rules.append(rule)

    def extract_entities(self, query: str) -> List[Entity]:
        found: List[Entity] = []
        seen: Set[str] = set()
        for phrase in query_phrases(query):
            entity = self.graph.get_entity(phrase)
            if entity is not None and entity.id not in seen:
                seen.add(entity.id)
                found.append(entity)
        return found

    # ------------------ reason ------------------
    def reason(self, query: str, max_hops: int = 3) -> ReasoningResult:
        steps: List[ReasoningStep] = []
        evidence: Dict[str, MemoryRecord] = {}

        entities = self.extract_entities(query)
        steps.append(
            ReasoningStep(
                "entity_lookup",
                f"Identified {len(entities)} known entities in the query",
                inputs=[query],
                outputs=[entity.display_name for entity in entities],
            )
        )

        themes = self.index.search(query, level="theme", limit=THEME_LIMIT)
        steps.append(
            ReasoningStep(
                "semantic_search",
                f"Retrieved {len(themes)} related themes",
                inputs=[query],
                outputs=[item.record.id for item in themes],
                confidence=max((item.score for item in themes), default=0.0),
            )
        )
        expanded: List[str] = []
        for item in themes:
            theme = item.record
            if not isinstance(theme, ThemeMemory):
                continue
            for semantic_id in theme.semantic_ids[:THEME_EXPANSION]:
                record = self.store.get(semantic_id, "semantic")
                if record is not None and record.id not in evidence:
                    evidence[record.id] = record
                    expanded.append(record.id)
        if themes:
            steps.append(
                ReasoningStep(
                    "theme_expansion",
                    f"Expanded themes into {len(expanded)} semantic memories",
                    inputs=[item.record.id for item in themes],
                    outputs=expanded,
                    evidence=expanded,
                )
            )

        paths = self._paths_between(entities)

        confidence = 1.0
        traversed: Dict[str, Relation] = {}
        seen_entities: Set[str] = {entity.id for entity in entities}
        frontier = [entity.id for entity in entities]
        for hop in range(max_hops):
            new_ids: List[str] = []
            next_frontier: List[str] = []
            for entity_id in frontier:
                for relation in self.graph.get_entity_relations(entity_id):
                    traversed.setdefault(relation.id, relation)
                    neighbor = self.graph.get_entity_by_id(relation.other(entity_id))
                    if neighbor is None or neighbor.id in seen_entities:
                        continue
                    seen_entities.add(neighbor.id)
                    next_frontier.append(neighbor.id)
                    for record in self.store.search_by_keywords(
                        [neighbor.display_name], level="semantic", limit=MEMORIES_PER_ENTITY
                    ):
                        if record.id not in evidence:
                            evidence[record.id] = record
                            new_ids.append(record.id)
            if not new_ids:
                break
            hop_confidence = max(0.5, 1.0 - hop * 0.2)
            confidence *= hop_confidence
            steps.append(
                ReasoningStep(
                    "relation_traversal",
                    f"Hop {hop + 1}: reached {len(next_frontier)} entities, {len(new_ids)} new memories",
                    inputs=list(frontier),
                    outputs=new_ids,
                    confidence=hop_confidence,
                    evidence=new_ids,
                )
            )
            frontier = next_frontier

        for path in paths:
            for relation in path.relations:
                traversed.setdefault(relation.id, relation)
        inferences, confidence = self._apply_rules(list(traversed.values()), confidence)
        if inferences:
            steps.append(
                ReasoningStep(
                    "inference",
                    f"Applied rules to derive {len(inferences)} inferences",
                    inputs=list(traversed),
                    outputs=inferences,
                    confidence=confidence,
                )
            )

        records = list(evidence.values())
        if not records and not paths:
            confidence = 0.0
        result = ReasoningResult(
            query=query,
            answer=self._synthesize(query, records, inferences, paths),
            steps=steps,
            confidence=round(confidence, 6),
            evidence=records,
            paths=paths,
            inferences=inferences,
        )
        logger.debug(f"Reasoned over '{query}': {len(records)} evidence, {len(paths)} paths")
        return result

    def _paths_between(self, entities: List[Entity]) -> List[GraphPath]:
        paths: List[GraphPath] = []
        seen: Set[Tuple[str, ...]] = set()
        for i, source in enumerate(entities):
            for target in entities[i + 1 :]:
                path = self.graph.find_path(source.name, target.name, PATH_HOPS)
                if path is None:
                    continue
                key = tuple(entity.id for entity in path.entities)
                if key not in seen:
                    seen.add(key)
                    paths.append(path)
        return paths

    def _apply_rules(self, relations: List[Relation], confidence: float) -> Tuple[List[str], float]:
        inferences: List[str] = []
        for relation in relations:
            source = self.graph.get_entity_by_id(relation.source_id)
            target = self.graph.get_entity_by_id(relation.target_id)
            if source is None or target is None:
                continue
            for rule in self.rules:
                if rule.matches(source, relation, target):
                    inferences.append(
                        rule.template.format(source=source.display_name, target=target.display_name)
                    )
                    confidence *= rule.confidence
        return inferences, confidence

    @staticmethod
    def _synthesize(
        query: str, evidence: List[MemoryRecord], inferences: List[str], paths: List[GraphPath]
    ) -> str:
        if not evidence and not inferences and not paths:
            return f"No relevant memories found for: {query}"
        lines: List[str] = []
        if evidence:
            lines.append("Based on the following evidence:")
            lines.extend(f"- {snippet(record.primary_text())}" for record in evidence[:3])
        if inferences:
            lines.append("\nInferred insights:")
            lines.extend(f"- {inference}" for inference in inferences[:2])
        if paths:
            lines.append(f"\nFound {len(paths)} connection paths between entities.")
        return "\n".join(lines)

    # ------------------ helpers -----------------
    def analogy(self, source_theme_name: str) -> Dict[str, Any]:
        """Themes whose member entities overlap >=2 with the source's neighborhood."""
        entity = self.graph.get_entity(source_theme_name)
        if entity is None:
            return {"similar_themes": [], "transferable_knowledge": []}
        neighborhood = {e.name for e in self.graph.get_related_entities(entity.id, 2)}

        scored: List[Tuple[int, ThemeMemory]] = []
        for theme in self.store.all("theme"):
            if not isinstance(theme, ThemeMemory) or theme.name.lower() == entity.name:
                continue
            refs: Set[str] = set()
            for semantic_id in theme.semantic_ids[:5]:
                semantic = self.store.get(semantic_id, "semantic")
                if isinstance(semantic, SemanticMemory):
                    refs.update(" ".join(ref.lower().split()) for ref in semantic.entity_refs)
            overlap = len(refs & neighborhood)
            if overlap >= 2:
                scored.append((overlap, theme))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        similar = [theme for _, theme in scored]

        knowledge: List[str] = []
        for theme in similar[:3]:
            for semantic_id in theme.semantic_ids[:2]:
                semantic = self.store.get(semantic_id, "semantic")
                if semantic is not None:
                    knowledge.append(semantic.primary_text())
        return {"similar_themes": similar, "transferable_knowledge": knowledge}

    def causal_inference(self, event_description: str) -> Dict[str, Any]:
        """Follow ``caused_by`` edges around entities of matching semantics."""
        causes: Dict[str, MemoryRecord] = {}
        effects: Dict[str, MemoryRecord] = {}
        chain: List[str] = []

        for item in self.index.search(event_description, level="semantic", limit=5):
            record = item.record
            if not isinstance(record, SemanticMemory):
                continue
            for ref in record.entity_refs:
                entity = self.graph.get_entity(ref)
                if entity is None:
                    continue
                for relation in self.graph.get_entity_relations(entity.id):
                    if relation.relation_type != "caused_by":
                        continue
                    other = self.graph.get_entity_by_id(relation.other(entity.id))
                    if other is None:
                        continue
                    bucket = causes if relation.source_id == entity.id else effects
                    link = (
                        f"{entity.display_name} was caused by {other.display_name}"
                        if bucket is causes
                        else f"{entity.display_name} led to {other.display_name}"
                    )
                    if link not in chain:
                        chain.append(link)
                    for linked in self.store.search_by_keywords([other.display_name], level="semantic", limit=3):
                        bucket.setdefault(linked.id, linked)
        return {"causes": list(causes.values()), "effects": list(effects.values()), "chain": chain}


__all__ = [
    "DEFAULT_RULES",
    "InferenceRule",
    "MultiHopReasoner",
    "ReasoningResult",
    "ReasoningStep",
    "StepType",
    "query_phrases",
]
