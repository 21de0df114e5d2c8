"""Structured logging setup.

``LogManager.setup`` routes both structlog loggers and stdlib
``logging.getLogger(__name__)`` loggers under ``memoryx`` through one
structlog ``ProcessorFormatter`` so every record carries the same
timestamp/level/logger fields, rendered for the console or as JSON lines.
"""

from __future__ import annotations

import logging
import sys
from typing import IO, Any, List, Optional

import structlog

ROOT_LOGGER = "memoryx"


class LogManager:
    """Configures structlog + stdlib logging once per process."""

    _handler: Optional[logging.Handler] = None

    @classmethod
    def setup(cls, level: str = "INFO", json_output: bool = False, stream: Optional[IO[str]] = None) -> None:
        shared: List[Any] = [
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
        ]
        renderer: Any = (
            structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=False)
        )
        structlog.configure(
            processors=shared + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=False,
        )
        formatter = structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )

        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(formatter)
        root = logging.getLogger(ROOT_LOGGER)
        if cls._handler is not None:
            root.removeHandler(cls._handler)
        root.addHandler(handler)
        root.setLevel(level.upper())
        cls._handler = handler

    @staticmethod
    def get_logger(name: str = ROOT_LOGGER, **context: Any) -> Any:
        """Bound structlog logger, optionally pre-bound with context."""
        log = structlog.get_logger(name)
        return log.bind(**context) if context else log


__all__ = ["LogManager", "ROOT_LOGGER"]
