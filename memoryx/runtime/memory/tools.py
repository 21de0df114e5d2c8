"""
Memory Tools - Host-facing adapter over MemoryEngine

WHAT: Name-dispatched tool execution with structured + text results
WHERE: memoryx/runtime/memory/tools.py - host boundary
WHO: Agent frameworks and CLIs exposing memory as tools
TIME: Adds JSON rendering on top of the wrapped engine operation

``MemoryToolkit.execute(name, params)`` maps the ten ``memory_*`` tool names
to engine operations. Results carry both the structured payload and a
JSON text rendering for the agent transcript.

Boundary Notes:
- Errors are logged with traceback and returned as a generic failure
- Unknown tool names raise UnknownOperationError (host wiring bug)
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from pydantic import ValidationError

from ...errors import MemoryXError, UnknownOperationError
from .operations import MemoryEngine
from .templates.memory_tool_descriptions import TOOL_DESCRIPTIONS

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "Memory operation failed. See logs for details."


@dataclass(slots=True)
class ToolResult:
    ok: bool
    data: Dict[str, Any] = field(default_factory=dict)
    text: str = ""

    @classmethod
    def success(cls, data: Dict[str, Any]) -> "ToolResult":
        return cls(ok=True, data=data, text=json.dumps(data, indent=2, ensure_ascii=False, default=str))

    @classmethod
    def failure(cls, tool: str) -> "ToolResult":
        return cls(ok=False, data={"tool": tool, "error": GENERIC_FAILURE}, text=GENERIC_FAILURE)


class MemoryToolkit:
    """Exposes engine operations as named tools."""

    def __init__(self, engine: MemoryEngine) -> None:
        self.engine = engine
        self._handlers: Dict[str, Callable[[Mapping[str, Any]], Dict[str, Any]]] = {
            "memory_remember": self._remember,
            "memory_recall": self._recall,
            "memory_reflect": lambda p: engine.reflect(p.get("focus")),
            "memory_introspect": lambda p: engine.introspect(),
            "memory_consolidate": lambda p: engine.consolidate(p["action"], p.get("target_ids")),
            "memory_status": lambda p: engine.status(),
            "memory_evolve": lambda p: engine.evolve(p["action"], p["content"], p.get("reason", "")),
            "memory_forget": lambda p: engine.forget(
                p.get("action", "sweep"), threshold=p.get("threshold"), memory_id=p.get("memory_id")
            ),
            "memory_reason": lambda p: engine.reason(p["query"], int(p.get("max_hops", 3))).to_dict(),
            "memory_graph": lambda p: engine.graph_query(
                p.get("action", "stats"),
                name=p.get("name"),
                target=p.get("target"),
                max_hops=int(p.get("max_hops", 3)),
                depth=int(p.get("depth", 2)),
            ),
        }

    @property
    def tool_names(self) -> List[str]:
        return list(self._handlers)

    def describe(self, name: Optional[str] = None) -> Any:
        if name is None:
            return [TOOL_DESCRIPTIONS[tool] for tool in self._handlers]
        return TOOL_DESCRIPTIONS[name]

    def execute(self, name: str, params: Optional[Mapping[str, Any]] = None) -> ToolResult:
        handler = self._handlers.get(name)
        if handler is None:
            raise UnknownOperationError(f"Unknown memory tool '{name}'")
        try:
            return ToolResult.success(handler(params or {}))
        except (MemoryXError, ValidationError, ValueError, KeyError, sqlite3.Error):
            logger.exception(f"Memory tool {name} failed")
            return ToolResult.failure(name)

    def _remember(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        result = self.engine.remember(
            params["content"],
            memory_type=params.get("type", "fact"),
            confidence=float(params.get("confidence", 0.5)),
            entities=params.get("entities"),
            session_id=params.get("session_id"),
            speaker=params.get("speaker", "user"),
            validity_period=params.get("validity_period"),
            deduplicate=bool(params.get("deduplicate", False)),
        )
        return result.to_dict()

    def _recall(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        max_tokens = params.get("max_tokens")
        return self.engine.recall(params["query"], int(max_tokens) if max_tokens else None).to_dict()


__all__ = ["GENERIC_FAILURE", "MemoryToolkit", "ToolResult"]
