import threading
import time

import pytest

from memoryx.config import MemoryXConfig
from memoryx.runtime.memory.memory_store import InMemoryMemoryStore
from memoryx.runtime.memory.operations import MemoryEngine
from memoryx.runtime.memory.scheduler import BackgroundTasks, IntervalScheduler


class FakeTask:
    def __init__(self):
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    def __init__(self):
        self.jobs = []

    def every(self, interval_seconds, callback):
        task = FakeTask()
        self.jobs.append((interval_seconds, callback, task))
        return task

    def shutdown(self):
        for _, _, task in self.jobs:
            task.cancel()


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def engine(tmp_path):
    config = MemoryXConfig(workspace_path=tmp_path, auto_reflection={"min_theme_size": 2, "interval_minutes": 30})
    return MemoryEngine(InMemoryMemoryStore(), config)


@pytest.fixture
def scheduler():
    scheduler = IntervalScheduler()
    yield scheduler
    scheduler.shutdown()


def test_start_registers_all_jobs(engine):
    scheduler = FakeScheduler()
    background = BackgroundTasks(engine, scheduler).start()

    intervals = sorted(interval for interval, _, _ in scheduler.jobs)
    assert intervals == [1800.0, 86400.0, 86400.0]
    assert sorted(background.tasks) == ["forgetting", "reflection", "reorganize"]

    background.start()
    assert len(scheduler.jobs) == 3

    background.stop()
    assert all(task.cancelled for _, _, task in scheduler.jobs)
    assert background.tasks == {}


def test_disabled_reflection_is_not_scheduled(tmp_path):
    config = MemoryXConfig(workspace_path=tmp_path, auto_reflection={"enabled": False})
    scheduler = FakeScheduler()
    background = BackgroundTasks(MemoryEngine(InMemoryMemoryStore(), config), scheduler).start()
    assert [interval for interval, _, _ in scheduler.jobs] == [86400.0, 86400.0]
    assert sorted(background.tasks) == ["forgetting", "reorganize"]


def test_reorganize_interval_follows_hierarchy_config(tmp_path):
    config = MemoryXConfig(workspace_path=tmp_path, hierarchy={"reorganize_interval_hours": 6})
    scheduler = FakeScheduler()
    background = BackgroundTasks(MemoryEngine(InMemoryMemoryStore(), config), scheduler).start()
    interval, callback, _ = scheduler.jobs[-1]
    assert interval == 6 * 3600.0
    assert callback == background.run_reorganize


def test_reflection_job_writes_tagged_rules(engine, tmp_path):
    for i in range(3):
        engine.remember(f"Deploy step {i}", entities=["Deploy"])

    entries = BackgroundTasks(engine, FakeScheduler()).run_reflection()
    assert len(entries) == 1
    assert '"Deploy"' in entries[0]
    assert "(Auto-detected)" in entries[0]
    assert entries[0] in (tmp_path / "META.md").read_text(encoding="utf-8")


def test_forgetting_job_runs_sweep(engine):
    engine.remember("Postgres runs on port 5432", entities=["Postgres"])
    report = BackgroundTasks(engine, FakeScheduler()).run_forgetting()
    assert report["action"] == "sweep"
    assert report["retained"] == 4


def test_reorganize_job_splits_oversized_themes(tmp_path):
    config = MemoryXConfig(workspace_path=tmp_path, hierarchy={"max_theme_size": 2})
    engine = MemoryEngine(InMemoryMemoryStore(), config)
    for i in range(3):
        engine.remember(f"Deploy note {i}", entities=["Deploy"])

    report = BackgroundTasks(engine, FakeScheduler()).run_reorganize()
    assert report["action"] == "split"
    assert engine.consolidation.oversized_themes() == []


def test_interval_scheduler_runs_until_cancelled(scheduler):
    fired = threading.Event()
    task = scheduler.every(0.05, fired.set)
    assert scheduler.running

    assert fired.wait(5.0)
    scheduler.shutdown()
    assert task.cancelled
    assert not scheduler.running
    time.sleep(0.1)
    runs = task.runs
    time.sleep(0.2)
    assert task.runs == runs


def test_cancel_removes_job_and_is_idempotent(scheduler):
    task = scheduler.every(60, lambda: None)
    task.cancel()
    task.cancel()
    assert task.cancelled


def test_failing_callback_keeps_schedule_alive(scheduler, caplog):
    def boom():
        raise RuntimeError("job failed")

    task = scheduler.every(0.05, boom)
    assert _wait_for(lambda: task.runs >= 2)
    assert f"Scheduled task {task.name} failed" in caplog.text


def test_interval_must_be_positive(scheduler):
    with pytest.raises(ValueError):
        scheduler.every(0, lambda: None)
    assert not scheduler.running
