"""memoryx - hierarchical agent memory runtime."""

__version__ = "0.3.0"

__all__ = [
    "config",
    "errors",
    "logging",
    "runtime",
]
