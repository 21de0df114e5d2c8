"""
Embedding Providers - Pluggable text-to-vector contract

WHAT: Provider protocol, deterministic hash provider, cosine similarity
WHERE: memoryx/runtime/memory/embeddings.py - similarity primitives
WHO: VectorIndex and tests needing reproducible vectors
TIME: Hash embedding <0.1ms per text at 384 dimensions

The shipped ``HashEmbeddingProvider`` seeds a normal distribution from a
SHA-256 digest of the text and L2-normalizes the draw. It is stable across
processes and platforms but carries no semantic meaning; hosts inject a real
model through the same ``embed``/``embed_batch`` contract.

Boundary Notes:
- Similarity is 0 when either vector has zero magnitude
- Vectors of different length are a caller error (ValueError)
"""

from __future__ import annotations

import hashlib
from typing import List, Protocol, Sequence, Union

import numpy as np

VectorLike = Union[np.ndarray, Sequence[float]]


class EmbeddingProvider(Protocol):
    """Text embedding contract consumed by the index."""

    def embed(self, text: str) -> np.ndarray:
        """Embed one text."""

    def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        """Embed several texts, preserving order."""


def cosine_similarity(vec1: VectorLike, vec2: VectorLike) -> float:
    """Cosine similarity of two equal-length vectors; 0.0 for zero-norm input."""
    a = np.asarray(vec1, dtype=np.float64)
    b = np.asarray(vec2, dtype=np.float64)
    if a.shape != b.shape:
        raise ValueError(f"Vector length mismatch: {a.shape} vs {b.shape}")

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(a, b) / (norm_a * norm_b))


class HashEmbeddingProvider:
    """Deterministic pseudo-embedding derived from a hash of the text."""

    def __init__(self, dimension: int = 384) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self.dimension = dimension

    def embed(self, text: str) -> np.ndarray:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        rng = np.random.default_rng(int.from_bytes(digest[:8], "little"))
        vector = rng.standard_normal(self.dimension).astype(np.float32)
        norm = np.linalg.norm(vector)
        return vector / norm if norm > 0 else vector

    def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        return [self.embed(text) for text in texts]


__all__ = ["EmbeddingProvider", "HashEmbeddingProvider", "cosine_similarity"]
