"""
Scheduling - Recurring background jobs behind an injected scheduler

WHAT: Scheduler protocol, an APScheduler-backed default, and the engine's jobs
WHERE: memoryx/runtime/memory/scheduler.py - background execution
WHO: Hosts starting auto-reflection, forgetting sweeps and theme reorganization
TIME: Jobs run every N minutes/hours; each run is bounded by the engine op

The core never owns timers of its own. Hosts pass any object with
``every(interval_seconds, callback)`` returning a cancellable task; the
``IntervalScheduler`` here wraps an APScheduler ``BackgroundScheduler`` and
is the default for standalone use.

Jobs:
- auto-reflection: reflect, then evolve(add_rule) for each prompt_update
  suggestion, tagged "(Auto-detected)"
- forgetting sweep: archive_low_value at the configured threshold
- reorganization: split themes that outgrew max_theme_size

Boundary Notes:
- A failing run is logged with traceback; the schedule keeps going
- ``stop()`` cancels future runs; a run in progress finishes
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Protocol

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

if TYPE_CHECKING:
    from .operations import MemoryEngine

logger = logging.getLogger(__name__)


class ScheduledTask(Protocol):
    def cancel(self) -> None:
        """Stop future runs."""


class Scheduler(Protocol):
    def every(self, interval_seconds: float, callback: Callable[[], None]) -> ScheduledTask:
        """Run ``callback`` every ``interval_seconds`` until cancelled."""

    def shutdown(self) -> None:
        """Cancel every task created by this scheduler."""


class IntervalTask:
    """Handle on one APScheduler interval job."""

    def __init__(self, name: str, callback: Callable[[], None]) -> None:
        self.name = name
        self.callback = callback
        self.runs = 0
        self.cancelled = False
        self.job: Any = None

    def run(self) -> None:
        try:
            self.callback()
        except Exception:
            logger.exception(f"Scheduled task {self.name} failed")
        finally:
            self.runs += 1

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        try:
            self.job.remove()
        except JobLookupError:
            logger.debug(f"Scheduled task {self.name} was already removed")


class IntervalScheduler:
    """Default scheduler; one APScheduler interval job per recurring task."""

    def __init__(self, scheduler: Optional[BackgroundScheduler] = None) -> None:
        self._scheduler = scheduler or BackgroundScheduler(daemon=True)
        self._tasks: List[IntervalTask] = []
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return bool(self._scheduler.running)

    def every(self, interval_seconds: float, callback: Callable[[], None]) -> IntervalTask:
        # IntervalTrigger silently turns a zero interval into one second
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        with self._lock:
            task = IntervalTask(f"memoryx-task-{len(self._tasks)}", callback)
            task.job = self._scheduler.add_job(
                task.run,
                trigger=IntervalTrigger(seconds=interval_seconds),
                id=task.name,
                name=task.name,
                replace_existing=True,
            )
            if not self._scheduler.running:
                self._scheduler.start()
            self._tasks.append(task)
            logger.info(f"Scheduled {task.name} every {interval_seconds}s")
            return task

    def shutdown(self) -> None:
        with self._lock:
            for task in self._tasks:
                task.cancel()
            self._tasks.clear()
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)


@dataclass
class BackgroundTasks:
    """Auto-reflection, forgetting and reorganization jobs for one engine."""

    engine: "MemoryEngine"
    scheduler: Scheduler
    tasks: Dict[str, ScheduledTask] = field(default_factory=dict)

    def start(self) -> "BackgroundTasks":
        config = self.engine.config
        if config.auto_reflection.enabled and "reflection" not in self.tasks:
            self.tasks["reflection"] = self.scheduler.every(
                config.auto_reflection.interval_minutes * 60.0, self.run_reflection
            )
        if "forgetting" not in self.tasks:
            self.tasks["forgetting"] = self.scheduler.every(
                config.forgetting.sweep_interval_hours * 3600.0, self.run_forgetting
            )
        if "reorganize" not in self.tasks:
            self.tasks["reorganize"] = self.scheduler.every(
                config.hierarchy.reorganize_interval_hours * 3600.0, self.run_reorganize
            )
        logger.info(f"Started background tasks: {sorted(self.tasks)}")
        return self

    def stop(self) -> None:
        for task in self.tasks.values():
            task.cancel()
        self.tasks.clear()

    def run_reflection(self) -> List[str]:
        """Turn prompt_update suggestions into rules; returns the entries written."""
        report = self.engine.reflect()
        entries: List[str] = []
        for suggestion in report["evolution_suggestions"]:
            if suggestion["type"] != "prompt_update":
                continue
            result = self.engine.evolve("add_rule", suggestion["content"], f"{suggestion['reason']} (Auto-detected)")
            entries.append(result["entry"])
        if entries:
            logger.info(f"Auto-reflection applied {len(entries)} rule(s)")
        return entries

    def run_forgetting(self) -> Dict[str, object]:
        return self.engine.forget("sweep")

    def run_reorganize(self) -> Dict[str, object]:
        return self.engine.consolidate("split")


__all__ = [
    "BackgroundTasks",
    "IntervalScheduler",
    "IntervalTask",
    "ScheduledTask",
    "Scheduler",
]
