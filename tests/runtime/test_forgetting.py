import math
from datetime import datetime, timedelta, timezone

import pytest

from memoryx.config import ForgettingConfig
from memoryx.runtime.memory.forgetting import ForgettingEngine
from memoryx.runtime.memory.memory_store import InMemoryMemoryStore
from memoryx.runtime.memory.models import OriginalMemory, SemanticMemory, ThemeMemory

NOW = datetime.now(timezone.utc)


def _aged(record_cls, days, access=0, **fields):
    return record_cls(created_at=NOW - timedelta(days=days), access_count=access, **fields)


@pytest.fixture
def engine():
    return ForgettingEngine(InMemoryMemoryStore(), ForgettingConfig())


def test_retention_decays_with_age(engine):
    values = [
        engine.calculate_retention(_aged(OriginalMemory, days, content="x"), NOW)
        for days in (0, 0.5, 1, 2, 30, 365)
    ]
    assert values == sorted(values, reverse=True)
    assert values[0] == 1.0
    assert values[2] == pytest.approx(math.exp(-1))


def test_retention_grows_with_access(engine):
    values = [
        engine.calculate_retention(_aged(OriginalMemory, 3, access=access, content="x"), NOW)
        for access in (0, 1, 4, 20)
    ]
    assert values == sorted(values)
    assert values[1] == pytest.approx(math.exp(-3 / 1.5))


def test_retention_is_floored(engine):
    ancient = _aged(OriginalMemory, 365, content="x")
    assert engine.calculate_retention(ancient, NOW) == 0.1
    assert ForgettingEngine(engine.store, ForgettingConfig(min_retention=0.25)).calculate_retention(ancient, NOW) == 0.25


def test_importance_composite(engine):
    assert engine.calculate_importance(SemanticMemory(content="x")) == pytest.approx(0.9)
    assert engine.calculate_importance(
        SemanticMemory(content="x", memory_type="event", confidence=0.0)
    ) == pytest.approx(0.7)
    assert engine.calculate_importance(
        SemanticMemory(content="x", memory_type="goal", confidence=1.0, entity_refs=list("abcd"))
    ) == 1.0
    assert engine.calculate_importance(
        ThemeMemory(name="t", semantic_ids=[f"s{i}" for i in range(10)])
    ) == pytest.approx(0.65)
    assert engine.calculate_importance(OriginalMemory(content="x")) == pytest.approx(0.5)


def test_old_unaccessed_fact_is_deleted_not_archived(engine):
    old = _aged(SemanticMemory, 365, content="stale fact")
    engine.store.save(old)

    assert engine.calculate_retention(old, NOW) < 0.3
    assert engine.combined_score(old, NOW) < 0.1
    report = engine.archive_low_value(0.3, now=NOW)

    assert report.deleted == 1
    assert report.archived == 0
    assert engine.store.count() == 0


def test_sweep_archives_middle_band_and_keeps_fresh(engine):
    fresh = _aged(SemanticMemory, 0, content="fresh")
    fading = _aged(SemanticMemory, 1.2, content="fading")
    for record in (fresh, fading):
        engine.store.save(record)

    report = engine.archive_low_value(now=NOW)
    assert (report.archived, report.deleted, report.retained) == (1, 0, 1)

    stored = {r.id: r for r in engine.store.all()}
    assert stored[fresh.id].retention_score == 1.0
    assert stored[fading.id].retention_score == pytest.approx(math.exp(-1.2) * 0.5, rel=1e-6)

    stats = engine.get_stats(NOW)
    assert stats.archived == 1
    assert stats.deleted == 0
    assert stats.total == 2


def test_cleanup_only_deletes(engine):
    fading = _aged(SemanticMemory, 1.2, content="fading")
    ancient = _aged(OriginalMemory, 365, content="ancient")
    for record in (fading, ancient):
        engine.store.save(record)

    report = engine.cleanup()
    assert report.deleted == 1
    assert report.archived == 0
    assert [r.id for r in engine.store.all()] == [fading.id]


def test_stats_count_archive_candidates(engine):
    engine.store.save(_aged(OriginalMemory, 0, content="fresh"))
    engine.store.save(_aged(OriginalMemory, 1.5, content="candidate"))
    engine.store.save(_aged(OriginalMemory, 30, content="floored"))

    stats = engine.get_stats(NOW)
    assert stats.candidates_for_archive == 2
    assert stats.retained == 1


def test_at_risk_sorted_ascending(engine):
    for days in (0.5, 3, 1):
        engine.store.save(_aged(OriginalMemory, days, content=f"d{days}"))
    at_risk = engine.get_at_risk_memories(0.4, NOW)
    assert [round(s.retention, 4) for s in at_risk] == sorted(round(s.retention, 4) for s in at_risk)
    assert len(at_risk) == 2


def test_predict_forget_days_and_boost(engine):
    fact = SemanticMemory(content="x")
    assert engine.predict_forget_days(fact, 0.3) == pytest.approx(math.log(0.9 / 0.3))
    assert engine.predict_forget_days(OriginalMemory(content="x"), 0.6) == 0.0

    engine.store.save(fact)
    assert engine.boost(fact.id) is True
    assert engine.store.all()[0].access_count == 1
    assert engine.boost("missing") is False
