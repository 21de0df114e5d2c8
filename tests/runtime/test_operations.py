import json
import logging

import pytest
import structlog

from memoryx.config import MemoryXConfig
from memoryx.errors import InvalidActionError
from memoryx.logging import LogManager
from memoryx.runtime.memory.evolution import RULES_HEADER
from memoryx.runtime.memory.memory_store import InMemoryMemoryStore, SQLiteMemoryStore
from memoryx.runtime.memory.operations import MemoryEngine, estimate_tokens
from memoryx.runtime.memory.telemetry import CaptureTelemetryClient


@pytest.fixture(params=["sqlite", "memory"])
def engine(request, tmp_path):
    store = SQLiteMemoryStore(tmp_path / "memoryx.db") if request.param == "sqlite" else InMemoryMemoryStore()
    engine = MemoryEngine(store, MemoryXConfig(workspace_path=tmp_path))
    yield engine
    engine.close()


@pytest.fixture
def memory_engine(tmp_path):
    return MemoryEngine(InMemoryMemoryStore(), MemoryXConfig(workspace_path=tmp_path))


# ------------------ remember ------------------
def test_remember_writes_one_record_per_level(engine):
    result = engine.remember("User prefers Postgres", memory_type="preference", entities=["Postgres"])

    for level in ("original", "episode", "semantic", "theme"):
        assert engine.store.count(level) == 1
    episode = engine.store.get(result.episode_id, "episode")
    semantic = engine.store.get(result.semantic_id, "semantic")
    theme = engine.store.get(result.theme_id, "theme")
    assert episode.original_ids == [result.original_id]
    assert semantic.source_episodes == [result.episode_id]
    assert theme.semantic_ids == [result.semantic_id]
    assert theme.name == "Postgres"
    assert result.theme_created is True


def test_shared_entity_reuses_theme(engine):
    first = engine.remember("Postgres is the primary database", entities=["Postgres"])
    second = engine.remember("Backups run nightly", entities=["Backups", "postgres"])

    assert second.theme_id == first.theme_id
    assert second.theme_created is False
    theme = engine.store.get(first.theme_id, "theme")
    assert theme.semantic_ids == [first.semantic_id, second.semantic_id]
    assert engine.store.count("theme") == 1


def test_entityless_memory_gets_its_own_theme(engine):
    result = engine.remember("The sky was clear today")
    theme = engine.store.get(result.theme_id, "theme")
    assert theme.name.startswith("Theme-")
    assert theme.description == f"Theme for {theme.name}"


def test_episode_summary_is_truncated(engine):
    content = "word " * 40
    result = engine.remember(content)
    assert engine.store.get(result.episode_id, "episode").summary == content[:100]


def test_remember_rejects_empty_content(engine):
    with pytest.raises(ValueError):
        engine.remember("   ")
    assert engine.store.count() == 0


def test_failed_theme_assignment_rolls_back_everything(engine, monkeypatch):
    def explode(semantic):
        raise RuntimeError("theme lookup failed")

    monkeypatch.setattr(engine, "_assign_theme", explode)
    with pytest.raises(RuntimeError):
        engine.remember("User prefers Postgres", entities=["Postgres"])
    assert engine.store.count() == 0


def test_deduplicate_reinforces_existing_fact(engine):
    first = engine.remember("Deploys happen on Fridays", confidence=0.6, entities=["Deploys"])
    second = engine.remember("deploys happen on fridays", confidence=0.8, deduplicate=True)

    assert second.deduplicated is True
    assert second.semantic_id == first.semantic_id
    assert second.theme_id == first.theme_id
    assert engine.store.count("semantic") == 1
    assert engine.store.count("original") == 2
    semantic = engine.store.all("semantic")[0]
    assert semantic.confidence == 0.8
    assert semantic.source_episodes == [first.episode_id, second.episode_id]


def test_duplicates_are_kept_without_flag(engine):
    engine.remember("Deploys happen on Fridays")
    engine.remember("Deploys happen on Fridays")
    assert engine.store.count("semantic") == 2


# ------------------ recall ------------------
def test_recall_is_top_down(engine):
    engine.remember("User prefers Postgres for analytics", memory_type="preference", entities=["Postgres"])
    engine.remember("Postgres runs on port 5432", entities=["Postgres"])
    engine.remember("Lunch is at noon", entities=["Lunch"])

    result = engine.recall("postgres preference")
    assert any("Postgres" in item.record.name or "Postgres" in item.record.description for item in result.themes)
    assert any("Postgres" in item.record.content for item in result.semantics)
    assert all("Lunch" not in item.record.content for item in result.semantics)
    assert result.episodes
    assert result.uncertain is False
    assert result.truncated is False

    metrics = result.to_dict()["metrics"]
    assert metrics["total_tokens"] == result.total_tokens > 0
    assert metrics["evidence_density"] > 0


def test_recall_respects_token_budget(engine):
    engine.remember("Postgres " + "detail " * 40, entities=["Postgres"])
    engine.remember("Postgres runs on port 5432", entities=["Postgres"])

    result = engine.recall("postgres", max_tokens=10)
    assert result.truncated is True
    assert result.total_tokens <= 10


def test_recall_without_matches_is_uncertain(engine):
    engine.remember("Postgres runs on port 5432", entities=["Postgres"])
    result = engine.recall("kubernetes")
    assert result.uncertain is True
    assert result.semantics == []
    assert result.total_tokens == 0


def test_recall_with_sparse_evidence_is_uncertain(tmp_path):
    content = "Postgres " + "tuning detail " * 100
    strict = MemoryEngine(InMemoryMemoryStore(), MemoryXConfig(workspace_path=tmp_path))
    lenient = MemoryEngine(
        InMemoryMemoryStore(),
        MemoryXConfig(workspace_path=tmp_path, retrieval={"evidence_density_threshold": 0.0}),
    )
    for engine in (strict, lenient):
        engine.remember(content, entities=["Postgres"])

    sparse = strict.recall("postgres tuning")
    assert sparse.semantics
    assert sparse.semantics[0].score >= 0.3
    assert sparse.evidence_density < 0.6
    assert sparse.uncertain is True
    assert lenient.recall("postgres tuning").uncertain is False


def test_estimate_tokens():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


# ------------------ hierarchy ------------------
def test_evolve_appends_rules_in_order(memory_engine, tmp_path):
    first = memory_engine.evolve("add_rule", "Always confirm destructive commands", "user request")
    second = memory_engine.evolve("add_rule", "Prefer Postgres for analytics", "recurring theme")

    text = (tmp_path / "META.md").read_text(encoding="utf-8")
    assert text.startswith(RULES_HEADER)
    assert first["entry"] in text and second["entry"] in text
    assert text.index(first["entry"]) < text.index(second["entry"])
    assert first["entry"] != second["entry"]
    assert "<!-- Reason: user request -->" in first["entry"]

    sop = memory_engine.evolve("add_sop", "1. check\n2. deploy", "Deploy checklist")
    assert sop["entry"].startswith("### [SOP-")
    assert text in (tmp_path / "META.md").read_text(encoding="utf-8")


def test_invalid_actions_raise(memory_engine):
    with pytest.raises(InvalidActionError):
        memory_engine.evolve("rewrite", "x")
    with pytest.raises(InvalidActionError):
        memory_engine.consolidate("shuffle")
    with pytest.raises(InvalidActionError):
        memory_engine.consolidate("merge", ["theme-only-one"])
    with pytest.raises(InvalidActionError):
        memory_engine.forget("delete")
    with pytest.raises(InvalidActionError):
        memory_engine.forget("explode", memory_id="x")
    with pytest.raises(InvalidActionError):
        memory_engine.graph_query("entity")
    with pytest.raises(InvalidActionError):
        memory_engine.graph_query("path", name="a")


def test_merge_themes(engine):
    alpha = engine.remember("Alpha ships weekly", entities=["Alpha"])
    beta = engine.remember("Beta ships monthly", entities=["Beta"])
    deleted = []
    engine.on("memory:deleted", lambda event, payload: deleted.append(payload["id"]))

    result = engine.consolidate("merge", [alpha.theme_id, beta.theme_id])
    assert result["theme"]["id"] == alpha.theme_id
    assert result["theme"]["semantic_ids"] == [alpha.semantic_id, beta.semantic_id]
    assert engine.store.get(beta.theme_id, "theme") is None
    assert deleted == [beta.theme_id]


def test_split_oversized_theme(tmp_path):
    engine = MemoryEngine(InMemoryMemoryStore(), MemoryXConfig(workspace_path=tmp_path, hierarchy={"max_theme_size": 2}))
    results = [engine.remember(f"Postgres note number {i}", entities=["Postgres"]) for i in range(5)]
    theme_id = results[0].theme_id
    assert engine.introspect()["oversized_themes"] == [theme_id]

    created = engine.consolidate("split")["child_themes"]
    assert len(created) == 2
    parent = engine.store.get(theme_id, "theme")
    assert parent.semantic_ids == [r.semantic_id for r in results[:2]]
    assert parent.child_themes == created
    children = [engine.store.get(cid, "theme") for cid in created]
    assert [c.name for c in children] == ["Postgres (part 2)", "Postgres (part 3)"]
    assert [len(c.semantic_ids) for c in children] == [2, 1]
    assert all(c.parent_theme == theme_id for c in children)
    assert engine.introspect()["oversized_themes"] == []


def test_resolve_removes_low_confidence_side(engine):
    strong = engine.remember("User prefers dark mode", memory_type="preference", confidence=0.95, entities=["User"])
    weak = engine.remember("User dislikes dark mode", memory_type="preference", confidence=0.5, entities=["User"])

    result = engine.consolidate("resolve")
    (resolution,) = result["resolutions"].values()
    assert resolution["strategy"] == "keep_highest_confidence"
    assert resolution["loser_id"] == weak.semantic_id
    assert engine.store.get(weak.semantic_id, "semantic") is None
    assert engine.store.get(strong.semantic_id, "semantic") is not None


def test_introspect_and_status(engine):
    engine.remember("User prefers Postgres", memory_type="preference", entities=["User", "Postgres"])
    engine.remember("User works at Acme", entities=["User", "Acme"])

    report = engine.introspect()
    assert report["counts"] == {"original": 2, "episode": 2, "semantic": 2, "theme": 1}
    assert report["total"] == 7
    assert report["graph"]["entity_count"] == 3
    assert report["health"] == "healthy"
    assert report["at_risk_memories"] == 0
    assert report["low_coherence_themes"]

    status = engine.status()
    assert status["theme_distribution"] == {"User": 2}
    assert status["store"]["total"] == 7
    assert status["forgetting"]["total"] == 7


def test_reflect_reports_recurring_themes(tmp_path):
    engine = MemoryEngine(
        InMemoryMemoryStore(),
        MemoryXConfig(workspace_path=tmp_path, auto_reflection={"min_theme_size": 3}),
    )
    for i in range(4):
        engine.remember(f"Deploy step {i}", entities=["Deploy"])
    engine.remember("Lunch is at noon", entities=["Lunch"])

    report = engine.reflect()
    (pattern,) = report["patterns"]
    assert pattern["name"] == "Deploy"
    assert pattern["frequency"] == 4
    assert pattern["suggested_skill"] == "Standard Operating Procedure (SOP) for Deploy"
    assert len(pattern["context"]) == 3
    (suggestion,) = report["evolution_suggestions"]
    assert suggestion["type"] == "prompt_update"
    assert suggestion["content"] == 'Add a rule to handle "Deploy" explicitly in system prompt.'
    assert engine.reflect("lunch")["patterns"] == []


# ------------------ forgetting ------------------
def test_forget_actions(engine):
    result = engine.remember("Postgres runs on port 5432", entities=["Postgres"])
    swept = []
    engine.on("memory:forget", lambda event, payload: swept.append(payload))

    sweep = engine.forget("sweep")
    assert sweep["deleted"] == 0 and sweep["retained"] == 4
    assert swept == [sweep]
    assert engine.forget("stats")["total"] == 4
    assert engine.forget("at_risk")["memories"] == []
    assert engine.forget("boost", memory_id=result.semantic_id)["boosted"] is True
    assert engine.forget("predict", memory_id=result.semantic_id, threshold=0.3)["days"] > 0
    assert engine.forget("predict", memory_id="missing")["days"] is None


def test_forget_delete_is_idempotent(engine):
    result = engine.remember("Postgres runs on port 5432", entities=["Postgres"])
    first = engine.forget("delete", memory_id=result.semantic_id)
    second = engine.forget("delete", memory_id=result.semantic_id)
    assert first["deleted"] is True
    assert second["deleted"] is False
    assert engine.graph.get_entity("Postgres") is None


def test_forget_delete_detaches_semantic_from_theme(engine):
    kept = engine.remember("Postgres runs on port 5432", entities=["Postgres"])
    dropped = engine.remember("Postgres backups run nightly", entities=["Postgres"])
    assert engine.status()["theme_distribution"] == {"Postgres": 2}

    engine.forget("delete", memory_id=dropped.semantic_id)
    assert engine.status()["theme_distribution"] == {"Postgres": 1}
    assert engine.store.get(kept.theme_id, "theme").semantic_ids == [kept.semantic_id]
    assert engine.introspect()["oversized_themes"] == []


# ------------------ graph ------------------
def test_graph_queries(engine):
    engine.remember("Alice works at Acme", entities=["Alice", "Acme"])
    engine.remember("Acme is located in Berlin", entities=["Acme", "Berlin"])

    assert engine.graph_query()["entity_count"] == 3
    assert {e["display_name"] for e in engine.graph_query("entities")["entities"]} == {"Alice", "Acme", "Berlin"}
    entity = engine.graph_query("entity", name="acme")
    assert entity["entity"]["display_name"] == "Acme"
    assert len(entity["relations"]) == 2
    related = engine.graph_query("related", name="Alice", depth=1)["related"]
    assert [e["display_name"] for e in related] == ["Acme"]

    path = engine.graph_query("path", name="Alice", target="Berlin")["path"]
    assert path["entities"] == ["Alice", "Acme", "Berlin"]
    assert path["relations"] == ["works_at", "located_in"]
    assert engine.graph_query("path", name="Alice", target="Berlin", max_hops=1)["path"] is None
    assert engine.graph_query("entity", name="nobody")["entity"] is None


def test_graph_is_rebuilt_from_store_on_startup(tmp_path):
    path = tmp_path / "memoryx.db"
    first = MemoryEngine(SQLiteMemoryStore(path), MemoryXConfig(workspace_path=tmp_path))
    first.remember("Alice works at Acme", entities=["Alice", "Acme"])
    first.close()

    second = MemoryEngine(SQLiteMemoryStore(path), MemoryXConfig(workspace_path=tmp_path))
    assert second.graph.find_path("Alice", "Acme").hops == 1
    second.close()


# ------------------ events / telemetry ------------------
def test_events_are_emitted(memory_engine):
    seen = []
    for event in ("memory:created", "memory:conflict"):
        memory_engine.on(event, lambda name, payload: seen.append(name))
    memory_engine.remember("User prefers dark mode", memory_type="preference", confidence=0.9, entities=["User"])
    memory_engine.remember("User dislikes dark mode", memory_type="preference", confidence=0.85, entities=["User"])

    assert seen == ["memory:created", "memory:created", "memory:conflict"]
    with pytest.raises(ValueError):
        memory_engine.on("memory:unknown", lambda name, payload: None)


def test_operations_emit_spans(tmp_path):
    telemetry = CaptureTelemetryClient()
    engine = MemoryEngine(InMemoryMemoryStore(), MemoryXConfig(workspace_path=tmp_path), telemetry=telemetry)
    engine.remember("Postgres runs on port 5432", entities=["Postgres"])
    engine.recall("postgres")
    with pytest.raises(InvalidActionError):
        engine.evolve("rewrite", "x")

    assert telemetry.names() == ["memoryx.remember", "memoryx.recall", "memoryx.evolve"]
    _, remember_attrs = telemetry.spans[0]
    assert remember_attrs["success"] is True
    assert remember_attrs["theme_created"] is True
    assert remember_attrs["duration_ms"] >= 0
    _, evolve_attrs = telemetry.spans[2]
    assert evolve_attrs["success"] is False
    assert evolve_attrs["error"] == "InvalidActionError"


@pytest.fixture
def reset_logging():
    yield
    logging.getLogger("memoryx").removeHandler(LogManager._handler)
    LogManager._handler = None
    structlog.reset_defaults()


def test_from_config_wires_sqlite_and_event_log(tmp_path, reset_logging):
    config = MemoryXConfig(workspace_path=tmp_path, event_log_filename="events.jsonl", embedding={"provider": "hash", "dimension": 16})
    engine = MemoryEngine.from_config(config)
    try:
        assert isinstance(engine.store, SQLiteMemoryStore)
        result = engine.remember("Postgres runs on port 5432", entities=["Postgres"])
        assert engine.store.get_embedding(result.semantic_id).shape == (16,)
    finally:
        engine.close()

    assert (tmp_path / "memoryx.db").exists()
    lines = (tmp_path / "events.jsonl").read_text(encoding="utf-8").splitlines()
    record = json.loads(lines[0])
    assert record["event"] == "memory:created"
    assert record["payload"]["semantic_id"] == result.semantic_id


def test_from_config_applies_logging_settings(tmp_path, reset_logging):
    config = MemoryXConfig(workspace_path=tmp_path, storage="memory", log_level="debug", log_json=True)
    MemoryEngine.from_config(config).close()

    root = logging.getLogger("memoryx")
    assert LogManager._handler in root.handlers
    assert root.level == logging.DEBUG
    formatter = LogManager._handler.formatter
    assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
    assert isinstance(formatter.processors[-1], structlog.processors.JSONRenderer)
