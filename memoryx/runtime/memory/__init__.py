"""
Hierarchical Memory System - Originals, Episodes, Semantics & Themes

WHAT: Local library for layered agent memory with graph reasoning
WHERE: memoryx/runtime/memory/ - runtime memory subsystem
WHO: Agents remembering facts and answering questions from them
TIME: remember p99 <20ms, recall p99 <50ms on local SQLite

Components (leaves first):
- memory_store: SQLite / in-process persistence with join rows
- vector_index: embedding search with keyword fallback
- forgetting: exponential retention decay and pruning
- conflict: factual / preference / temporal contradiction checks
- knowledge_graph: entities and typed relations from facts
- reasoning: multi-hop traversal plus rule inference

Operations (MemoryEngine / MemoryToolkit):
- remember, recall, reflect, introspect, consolidate
- status, evolve, forget, reason, graph

Boundary Notes:
- Records are a tagged union on ``level``; rebuilt via parse_memory
- Not-found is None/empty; backend failures raise StorageError
"""

from .conflict import Conflict, ConflictDetector, Resolution, Severity  # noqa: F401
from .consolidation import ConsolidationEngine, ReflectionReport  # noqa: F401
from .embeddings import EmbeddingProvider, HashEmbeddingProvider, cosine_similarity  # noqa: F401
from .evolution import RulesFile  # noqa: F401
from .forgetting import ForgettingEngine, ForgettingReport, ForgettingStats  # noqa: F401
from .knowledge_graph import Entity, GraphPath, KnowledgeGraph, Relation  # noqa: F401
from .memory_store import InMemoryMemoryStore, MemoryStore, SQLiteMemoryStore, create_store  # noqa: F401
from .models import (  # noqa: F401
    EpisodeMemory,
    MemoryRecord,
    OriginalMemory,
    SemanticMemory,
    ThemeMemory,
    ValidityPeriod,
    parse_memory,
)
from .operations import MemoryEngine, RecallResult, RememberResult  # noqa: F401
from .reasoning import InferenceRule, MultiHopReasoner, ReasoningResult  # noqa: F401
from .scheduler import BackgroundTasks, IntervalScheduler, Scheduler  # noqa: F401
from .telemetry import (  # noqa: F401
    CaptureTelemetryClient,
    LoggingTelemetryClient,
    NoOpTelemetryClient,
    TelemetryClient,
    TelemetrySpan,
)
from .tools import MemoryToolkit, ToolResult  # noqa: F401
from .vector_index import ScoredMemory, VectorIndex  # noqa: F401

__all__ = [
    "BackgroundTasks",
    "CaptureTelemetryClient",
    "Conflict",
    "ConflictDetector",
    "ConsolidationEngine",
    "EmbeddingProvider",
    "Entity",
    "EpisodeMemory",
    "ForgettingEngine",
    "ForgettingReport",
    "ForgettingStats",
    "GraphPath",
    "HashEmbeddingProvider",
    "InMemoryMemoryStore",
    "InferenceRule",
    "IntervalScheduler",
    "KnowledgeGraph",
    "LoggingTelemetryClient",
    "MemoryEngine",
    "MemoryRecord",
    "MemoryStore",
    "MemoryToolkit",
    "MultiHopReasoner",
    "NoOpTelemetryClient",
    "OriginalMemory",
    "ReasoningResult",
    "RecallResult",
    "ReflectionReport",
    "Relation",
    "RememberResult",
    "Resolution",
    "RulesFile",
    "SQLiteMemoryStore",
    "Scheduler",
    "ScoredMemory",
    "SemanticMemory",
    "Severity",
    "TelemetryClient",
    "TelemetrySpan",
    "ThemeMemory",
    "ToolResult",
    "ValidityPeriod",
    "VectorIndex",
    "cosine_similarity",
    "create_store",
    "parse_memory",
]
