"""
Runtime Module

WHAT: Runtime subsystem for hierarchical agent memory
WHERE: memoryx/runtime/ - orchestration layer above storage and indexing
WHO: Agents and host frameworks remembering, recalling and reasoning
TIME: Query-time operations, in-process, no network services

Memory Architecture:
- originals: raw utterances
- episodes: summarized blocks of originals
- semantics: typed, confidence-scored facts
- themes: entity-keyed clusters of semantics

Boundary Notes:
- One engine per workspace; no process-wide state
- Background work runs through an injected scheduler
"""

__all__ = ["memory"]
