"""Configuration models and environment loading for memoryx."""

from .settings import (  # noqa: F401
    ENV_VARS,
    AutoReflectionConfig,
    ConflictConfig,
    EmbeddingConfig,
    ForgettingConfig,
    HierarchyConfig,
    MemoryXConfig,
    RetrievalConfig,
    SkillsConfig,
    load_config,
)

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
