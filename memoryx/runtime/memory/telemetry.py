"""
Telemetry Spans - Timing and outcome tracking for memory operations

WHAT: Span context manager and pluggable span sinks
WHERE: memoryx/runtime/memory/telemetry.py - observability layer
WHO: MemoryEngine wrapping each host operation in a ``memoryx.<op>`` span
TIME: Zero-overhead when disabled, <0.1ms overhead when enabled

Spans record ``duration_ms`` and ``success`` and are handed to a client on
exit. The no-op client is the default; the logging client writes spans at
DEBUG level; the capture client keeps them in memory for inspection.

Boundary Notes:
- Spans never swallow exceptions; failures are recorded then re-raised
- Attributes may be enriched while the span is open (result counts etc.)
"""

from __future__ import annotations

import logging
import time
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class TelemetrySpan(AbstractContextManager["TelemetrySpan"]):
    """One timed memory operation; handed to its client on exit."""

    def __init__(self, client: "TelemetryClient", name: str, attributes: Optional[Dict[str, Any]] = None) -> None:
        self.client = client
        self.name = name
        self.attributes: Dict[str, Any] = {**(attributes or {})}
        self.started_at: Optional[float] = None

    @property
    def elapsed_ms(self) -> float:
        if self.started_at is None:
            return 0.0
        return (time.perf_counter() - self.started_at) * 1000.0

    def __enter__(self) -> "TelemetrySpan":
        self.started_at = time.perf_counter()
        return self

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def __exit__(self, exc_type, exc, exc_tb) -> bool:
        failed = exc is not None
        self.attributes.setdefault("success", not failed)
        if failed:
            self.attributes["error"] = exc_type.__name__
        self.attributes["duration_ms"] = self.elapsed_ms
        self.client.emit_span(self.name, self.attributes)
        # never suppress the operation's exception
        return False


class TelemetryClient:
    """Span factory; subclasses decide where finished spans go."""

    def span(self, name: str, *, attributes: Optional[Dict[str, Any]] = None) -> TelemetrySpan:
        return TelemetrySpan(self, name, attributes)

    def emit_span(self, name: str, attributes: Dict[str, Any]) -> None:
        raise NotImplementedError


@dataclass(slots=True)
class NoOpTelemetryClient(TelemetryClient):
    """Discards spans."""

    def emit_span(self, name: str, attributes: Dict[str, Any]) -> None:
        pass


class LoggingTelemetryClient(TelemetryClient):
    """Writes spans to the module logger at DEBUG level."""

    def emit_span(self, name: str, attributes: Dict[str, Any]) -> None:
        payload = {k: attributes[k] for k in sorted(attributes)}
        logger.debug(f"[telemetry] {name}: {payload}")


@dataclass
class CaptureTelemetryClient(TelemetryClient):
    """Keeps emitted spans in memory."""

    spans: List[Tuple[str, Dict[str, Any]]] = field(default_factory=list)

    def emit_span(self, name: str, attributes: Dict[str, Any]) -> None:
        self.spans.append((name, dict(attributes)))

    def names(self) -> List[str]:
        return [name for name, _ in self.spans]


__all__ = [
    "CaptureTelemetryClient",
    "LoggingTelemetryClient",
    "NoOpTelemetryClient",
    "TelemetryClient",
    "TelemetrySpan",
]
