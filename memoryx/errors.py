"""Exception hierarchy shared by the memoryx packages."""

from __future__ import annotations


class MemoryXError(RuntimeError):
    """Base class for errors raised by the memory runtime."""


class ConfigurationError(MemoryXError):
    """Raised when configuration values cannot be parsed or validated."""


class StorageError(MemoryXError):
    """Raised when the storage backend fails (I/O, corruption, schema)."""


class UnknownOperationError(MemoryXError):
    """Raised when a host tool name is not registered."""


class InvalidActionError(MemoryXError):
    """Raised when an operation receives an unsupported ``action`` value."""


__all__ = [
    "MemoryXError",
    "ConfigurationError",
    "StorageError",
    "UnknownOperationError",
    "InvalidActionError",
]
