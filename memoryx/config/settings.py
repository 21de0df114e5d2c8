"""
Runtime configuration for memoryx.

Pydantic models formalize every tunable knob with its default; the
``load_config`` helper layers ``MEMORYX_*`` environment variables and
explicit overrides on top of those defaults. Validation failures are
reported as ``ConfigurationError``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import ConfigurationError


class HierarchyConfig(BaseModel):
    """Theme sizing and coherence limits."""

    max_theme_size: int = Field(50, ge=1)
    min_theme_coherence: float = Field(0.7, ge=0.0, le=1.0)
    reorganize_interval_hours: float = Field(24, gt=0)


class RetrievalConfig(BaseModel):
    """Top-down recall limits."""

    theme_top_k: int = Field(3, ge=0)
    semantic_top_k: int = Field(5, ge=0)
    uncertainty_threshold: float = Field(0.3, ge=0.0, le=1.0)
    max_tokens: int = Field(4000, gt=0)
    evidence_density_threshold: float = Field(0.6, ge=0.0)


class ConflictConfig(BaseModel):
    similarity_threshold: float = Field(0.85, ge=0.0, le=1.0)
    confidence_diff_threshold: float = Field(0.1, ge=0.0, le=1.0)


class ForgettingConfig(BaseModel):
    """Retention floor and sweep thresholds."""

    min_retention: float = Field(0.1, ge=0.0, le=1.0)
    archive_threshold: float = Field(0.3, ge=0.0, le=1.0)
    delete_threshold: float = Field(0.1, ge=0.0, le=1.0)
    sweep_interval_hours: float = Field(24, gt=0)


class SkillsConfig(BaseModel):
    min_theme_frequency: int = Field(3, ge=1)


class AutoReflectionConfig(BaseModel):
    enabled: bool = True
    interval_minutes: float = Field(60, gt=0)
    min_theme_size: int = Field(5, ge=0)


class EmbeddingConfig(BaseModel):
    provider: Literal["none", "hash"] = "none"
    dimension: int = Field(384, gt=0)


class MemoryXConfig(BaseModel):
    """Top-level configuration consumed by ``MemoryEngine.from_config``."""

    model_config = ConfigDict(extra="forbid")

    workspace_path: Optional[Path] = None
    storage: Literal["auto", "sqlite", "memory"] = "auto"
    database_filename: str = "memoryx.db"
    rules_filename: str = "META.md"
    event_log_filename: Optional[str] = None
    hierarchy: HierarchyConfig = Field(default_factory=HierarchyConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    conflict: ConflictConfig = Field(default_factory=ConflictConfig)
    forgetting: ForgettingConfig = Field(default_factory=ForgettingConfig)
    skills: SkillsConfig = Field(default_factory=SkillsConfig)
    auto_reflection: AutoReflectionConfig = Field(default_factory=AutoReflectionConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    log_level: str = "INFO"
    log_json: bool = False

    @property
    def rules_path(self) -> Path:
        return Path(self.workspace_path or ".") / self.rules_filename

    @property
    def event_log_path(self) -> Optional[Path]:
        if not self.event_log_filename:
            return None
        return Path(self.workspace_path or ".") / self.event_log_filename


# env var -> dotted config path
ENV_VARS: Dict[str, str] = {
    "MEMORYX_WORKSPACE": "workspace_path",
    "MEMORYX_STORAGE": "storage",
    "MEMORYX_LOG_LEVEL": "log_level",
    "MEMORYX_LOG_JSON": "log_json",
    "MEMORYX_EMBEDDING_PROVIDER": "embedding.provider",
    "MEMORYX_AUTO_REFLECTION": "auto_reflection.enabled",
    "MEMORYX_REFLECTION_INTERVAL_MINUTES": "auto_reflection.interval_minutes",
}


def _assign(target: Dict[str, Any], dotted: str, value: Any) -> None:
    *parents, leaf = dotted.split(".")
    for part in parents:
        target = target.setdefault(part, {})
    target[leaf] = value


def _merge(base: Dict[str, Any], extra: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in extra.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> MemoryXConfig:
    """Build configuration from defaults, ``MEMORYX_*`` variables and overrides."""

    env = os.environ if environ is None else environ
    data: Dict[str, Any] = {}
    for name, dotted in ENV_VARS.items():
        raw = env.get(name)
        if raw is not None and raw != "":
            _assign(data, dotted, raw)
    if overrides:
        data = _merge(data, overrides)
    try:
        return MemoryXConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid memoryx configuration: {exc}") from exc


__all__ = [
    "AutoReflectionConfig",
    "ConflictConfig",
    "EmbeddingConfig",
    "ENV_VARS",
    "ForgettingConfig",
    "HierarchyConfig",
    "MemoryXConfig",
    "RetrievalConfig",
    "SkillsConfig",
    "load_config",
]
