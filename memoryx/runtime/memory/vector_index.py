"""
Vector Index - Similarity search over stored memories

WHAT: Embedding search with keyword-overlap fallback
WHERE: memoryx/runtime/memory/vector_index.py - retrieval layer
WHO: Engine recall, conflict detection and multi-hop reasoning
TIME: Linear scan over level candidates; keyword path bounded by 2*limit

When an embedding provider is configured, queries are embedded and ranked
by cosine similarity against stored vectors. Without a provider, or when
the provider raises, the query is split into words (words shorter than 3
characters dropped) and each keyword candidate is scored by the fraction of
unique query words that appear as whole words in its primary text.

Boundary Notes:
- Keyword fallback scores ignore ``min_score``; callers get ranked overlap
- The id->vector cache lives until ``clear_cache()``
- Provider failures are logged and never escape the index
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .embeddings import EmbeddingProvider, cosine_similarity
from .memory_store import MemoryStore
from .models import MemoryRecord

logger = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 3
_WORD = re.compile(r"[a-z0-9']+")


@dataclass(slots=True)
class ScoredMemory:
    record: MemoryRecord
    score: float


def tokenize_query(text: str) -> List[str]:
    """Lower-cased words of 3+ characters, first occurrence order."""
    seen: Dict[str, None] = {}
    for token in _WORD.findall(text.lower()):
        if len(token) >= MIN_TOKEN_LENGTH:
            seen.setdefault(token, None)
    return list(seen)


def keyword_overlap(tokens: Sequence[str], text: str) -> float:
    if not tokens:
        return 0.0
    words = set(_WORD.findall(text.lower()))
    return sum(1 for token in tokens if token in words) / len(tokens)


class VectorIndex:
    """Similarity index over a MemoryStore."""

    def __init__(self, store: MemoryStore, provider: Optional[EmbeddingProvider] = None) -> None:
        self.store = store
        self.provider = provider
        self._cache: Dict[str, np.ndarray] = {}

    # ------------------ search ------------------
    def search(
        self,
        query: str,
        *,
        level: Optional[str] = None,
        limit: int = 10,
        min_score: float = 0.5,
    ) -> List[ScoredMemory]:
        if self.provider is not None:
            try:
                vector = self.provider.embed(query)
            except Exception as exc:
                logger.warning(f"Embedding provider failed, using keyword search: {exc}")
            else:
                return self.search_by_embedding(vector, level=level, limit=limit, min_score=min_score)
        return self._keyword_search(query, level=level, limit=limit)

    def _keyword_search(self, query: str, *, level: Optional[str], limit: int) -> List[ScoredMemory]:
        tokens = tokenize_query(query)
        if not tokens:
            return []
        candidates = self.store.search_by_keywords(tokens, level=level, limit=limit * 2)
        scored = [ScoredMemory(record, keyword_overlap(tokens, record.primary_text())) for record in candidates]
        scored = [item for item in scored if item.score > 0]
        scored.sort(key=lambda item: item.score, reverse=True)
        return scored[:limit]

    def search_by_embedding(
        self,
        vector: Sequence[float],
        *,
        level: Optional[str] = None,
        limit: int = 10,
        min_score: float = 0.5,
        exclude_ids: Sequence[str] = (),
    ) -> List[ScoredMemory]:
        query = np.asarray(vector, dtype=np.float32)
        results: List[ScoredMemory] = []
        for record in self.store.all(level):
            if record.id in exclude_ids:
                continue
            candidate = self._vector_for(record.id)
            if candidate is None or candidate.shape != query.shape:
                continue
            score = cosine_similarity(query, candidate)
            if score >= min_score:
                results.append(ScoredMemory(record, score))
        results.sort(key=lambda item: item.score, reverse=True)
        return results[:limit]

    def find_similar(
        self,
        memory_id: str,
        *,
        level: Optional[str] = None,
        limit: int = 5,
        min_score: float = 0.7,
        exclude_self: bool = True,
    ) -> List[ScoredMemory]:
        exclude = (memory_id,) if exclude_self else ()
        vector = self._vector_for(memory_id)
        if vector is not None:
            return self.search_by_embedding(
                vector, level=level, limit=limit, min_score=min_score, exclude_ids=exclude
            )
        record = self.store.get(memory_id)
        if record is None:
            return []
        hits = self._keyword_search(record.primary_text(), level=level, limit=limit + len(exclude))
        return [item for item in hits if item.record.id not in exclude][:limit]

    def find_duplicates(self, memory_id: str, threshold: float = 0.95) -> List[MemoryRecord]:
        similar = self.find_similar(memory_id, limit=10, min_score=threshold)
        return [item.record for item in similar if item.score >= threshold]

    # ------------------ indexing ----------------
    def index_memory(self, memory_id: str, text: str) -> bool:
        if self.provider is None:
            return False
        try:
            vector = np.asarray(self.provider.embed(text), dtype=np.float32)
        except Exception as exc:
            logger.warning(f"Embedding provider failed for {memory_id}: {exc}")
            return False
        self.store.update_embedding(memory_id, vector)
        self._cache[memory_id] = vector
        return True

    def index_batch(self, items: Sequence[Tuple[str, str]]) -> int:
        """Embed and persist ``(id, text)`` pairs; returns how many were indexed."""
        if self.provider is None or not items:
            return 0
        try:
            vectors = self.provider.embed_batch([text for _, text in items])
        except Exception as exc:
            logger.warning(f"Batch embedding failed for {len(items)} memories: {exc}")
            return 0
        for (memory_id, _), vector in zip(items, vectors):
            array = np.asarray(vector, dtype=np.float32)
            self.store.update_embedding(memory_id, array)
            self._cache[memory_id] = array
        return len(items)

    def _vector_for(self, memory_id: str) -> Optional[np.ndarray]:
        cached = self._cache.get(memory_id)
        if cached is not None:
            return cached
        vector = self.store.get_embedding(memory_id)
        if vector is not None:
            self._cache[memory_id] = vector
        return vector

    def clear_cache(self) -> None:
        self._cache.clear()


__all__ = ["ScoredMemory", "VectorIndex", "keyword_overlap", "tokenize_query"]
