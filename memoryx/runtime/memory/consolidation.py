"""
Hierarchy Consolidation - Reflection and theme reorganization

WHAT: Pattern discovery over themes plus merge/split of theme clusters
WHERE: memoryx/runtime/memory/consolidation.py - hierarchy maintenance
WHO: reflect / consolidate operations and the auto-reflection job
TIME: Linear in theme count; split/merge touch only the targeted themes

Reflection scans themes that have accumulated at least
``min_theme_frequency`` semantics and reports each as a recurring pattern
with a suggested SOP and a few context facts. Themes that grow past
``auto_reflection.min_theme_size`` also yield a ``prompt_update``
suggestion the evolve step can turn into a rule.

Boundary Notes:
- Merge keeps the first theme and deletes the absorbed ones
- Split keeps the first ``max_theme_size`` ids on the parent and moves
  the rest into linked child themes
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ...config import AutoReflectionConfig, HierarchyConfig, SkillsConfig
from .memory_store import MemoryStore
from .models import ThemeMemory, utcnow

logger = logging.getLogger(__name__)

CONTEXT_FACTS = 3


@dataclass(slots=True)
class Pattern:
    theme_id: str
    name: str
    frequency: int
    suggested_skill: str
    context: List[str] = field(default_factory=list)


@dataclass(slots=True)
class EvolutionSuggestion:
    suggestion_type: str
    theme_id: str
    content: str
    reason: str


@dataclass(slots=True)
class ReflectionReport:
    patterns: List[Pattern] = field(default_factory=list)
    suggestions: List[EvolutionSuggestion] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "patterns": [
                {
                    "theme_id": p.theme_id,
                    "name": p.name,
                    "frequency": p.frequency,
                    "suggested_skill": p.suggested_skill,
                    "context": list(p.context),
                }
                for p in self.patterns
            ],
            "evolution_suggestions": [
                {"type": s.suggestion_type, "theme_id": s.theme_id, "content": s.content, "reason": s.reason}
                for s in self.suggestions
            ],
        }


class ConsolidationEngine:
    """Reflects over themes and reorganizes the theme layer."""

    def __init__(
        self,
        store: MemoryStore,
        hierarchy: Optional[HierarchyConfig] = None,
        skills: Optional[SkillsConfig] = None,
        reflection: Optional[AutoReflectionConfig] = None,
    ) -> None:
        self.store = store
        self.hierarchy = hierarchy or HierarchyConfig()
        self.skills = skills or SkillsConfig()
        self.reflection = reflection or AutoReflectionConfig()

    def themes(self) -> List[ThemeMemory]:
        return [t for t in self.store.all("theme") if isinstance(t, ThemeMemory)]

    def reflect(self, focus: Optional[str] = None) -> ReflectionReport:
        report = ReflectionReport()
        needle = focus.lower() if focus else None
        for theme in self.themes():
            size = len(theme.semantic_ids)
            if size < self.skills.min_theme_frequency:
                continue
            if needle and needle not in theme.name.lower() and needle not in theme.description.lower():
                continue

            context: List[str] = []
            for semantic_id in theme.semantic_ids[:CONTEXT_FACTS]:
                semantic = self.store.get(semantic_id, "semantic")
                if semantic is not None:
                    context.append(semantic.primary_text())
            report.patterns.append(
                Pattern(
                    theme_id=theme.id,
                    name=theme.name,
                    frequency=size,
                    suggested_skill=f"Standard Operating Procedure (SOP) for {theme.name}",
                    context=context,
                )
            )
            if size > self.reflection.min_theme_size:
                report.suggestions.append(
                    EvolutionSuggestion(
                        suggestion_type="prompt_update",
                        theme_id=theme.id,
                        content=f'Add a rule to handle "{theme.name}" explicitly in system prompt.',
                        reason=f"Theme '{theme.name}' has {size} supporting memories",
                    )
                )
        report.patterns.sort(key=lambda p: p.frequency, reverse=True)
        logger.info(f"Reflection found {len(report.patterns)} patterns, {len(report.suggestions)} suggestions")
        return report

    def merge_themes(self, theme_ids: Sequence[str]) -> Optional[ThemeMemory]:
        """Fold every listed theme into the first one; sources are deleted."""
        loaded = [self.store.get(theme_id, "theme") for theme_id in dict.fromkeys(theme_ids)]
        themes = [t for t in loaded if isinstance(t, ThemeMemory)]
        if len(themes) < 2:
            return themes[0] if themes else None

        target, sources = themes[0], themes[1:]
        with self.store.transaction():
            for source in sources:
                for semantic_id in source.semantic_ids:
                    if semantic_id not in target.semantic_ids:
                        target.semantic_ids.append(semantic_id)
                for child_id in source.child_themes:
                    if child_id not in target.child_themes and child_id != target.id:
                        target.child_themes.append(child_id)
            target.updated_at = utcnow()
            self.store.save(target)
            for source in sources:
                self.store.delete(source.id)
        logger.info(f"Merged {len(sources)} theme(s) into {target.id}")
        return target

    def split_theme(self, theme_id: str, max_size: Optional[int] = None) -> List[ThemeMemory]:
        """Move overflow semantics of an oversized theme into child themes."""
        limit = max_size or self.hierarchy.max_theme_size
        theme = self.store.get(theme_id, "theme")
        if not isinstance(theme, ThemeMemory) or len(theme.semantic_ids) <= limit:
            return []

        overflow = theme.semantic_ids[limit:]
        children: List[ThemeMemory] = []
        now = utcnow()
        with self.store.transaction():
            for part, start in enumerate(range(0, len(overflow), limit), start=len(theme.child_themes) + 2):
                child = ThemeMemory(
                    name=f"{theme.name} (part {part})",
                    description=f"Continuation of {theme.name}",
                    semantic_ids=overflow[start : start + limit],
                    parent_theme=theme.id,
                    coherence_score=theme.coherence_score,
                    created_at=now,
                    updated_at=now,
                )
                self.store.save(child)
                children.append(child)
            theme.semantic_ids = theme.semantic_ids[:limit]
            theme.child_themes.extend(child.id for child in children)
            theme.updated_at = now
            self.store.save(theme)
        logger.info(f"Split theme {theme.id} into {len(children)} child theme(s)")
        return children

    def oversized_themes(self) -> List[ThemeMemory]:
        return [t for t in self.themes() if len(t.semantic_ids) > self.hierarchy.max_theme_size]


__all__ = [
    "ConsolidationEngine",
    "EvolutionSuggestion",
    "Pattern",
    "ReflectionReport",
]
