import io
import json
import logging
from pathlib import Path

import pytest
import structlog

from memoryx.config import MemoryXConfig, load_config
from memoryx.errors import ConfigurationError
from memoryx.logging import EventLog, LogManager, build_record


@pytest.fixture
def log_stream():
    stream = io.StringIO()
    LogManager.setup(level="DEBUG", json_output=True, stream=stream)
    yield stream
    logging.getLogger("memoryx").removeHandler(LogManager._handler)
    LogManager._handler = None
    structlog.reset_defaults()


def test_defaults():
    config = load_config(environ={})
    assert config.storage == "auto"
    assert config.retrieval.max_tokens == 4000
    assert config.conflict.similarity_threshold == 0.85
    assert config.forgetting.archive_threshold == 0.3
    assert config.hierarchy.max_theme_size == 50
    assert config.auto_reflection.interval_minutes == 60
    assert config.rules_path == Path(".") / "META.md"
    assert config.event_log_path is None


def test_environment_variables(tmp_path):
    config = load_config(
        environ={
            "MEMORYX_WORKSPACE": str(tmp_path),
            "MEMORYX_STORAGE": "memory",
            "MEMORYX_LOG_JSON": "true",
            "MEMORYX_REFLECTION_INTERVAL_MINUTES": "15",
            "MEMORYX_EMBEDDING_PROVIDER": "",
        }
    )
    assert config.storage == "memory"
    assert config.log_json is True
    assert config.auto_reflection.interval_minutes == 15
    assert config.embedding.provider == "none"
    assert config.rules_path == tmp_path / "META.md"


def test_overrides_merge_with_environment():
    config = load_config(
        {"auto_reflection": {"min_theme_size": 8}, "forgetting": {"archive_threshold": 0.4}},
        environ={"MEMORYX_AUTO_REFLECTION": "false"},
    )
    assert config.auto_reflection.enabled is False
    assert config.auto_reflection.min_theme_size == 8
    assert config.forgetting.archive_threshold == 0.4


@pytest.mark.parametrize(
    "overrides,environ",
    [
        ({}, {"MEMORYX_STORAGE": "redis"}),
        ({"retrieval": {"max_tokens": 0}}, {}),
        ({"conflict": {"similarity_threshold": 1.5}}, {}),
        ({"unknown_knob": 1}, {}),
    ],
)
def test_invalid_configuration(overrides, environ):
    with pytest.raises(ConfigurationError):
        load_config(overrides, environ=environ)


def test_event_log_path_under_workspace(tmp_path):
    config = MemoryXConfig(workspace_path=tmp_path, event_log_filename="events.jsonl")
    assert config.event_log_path == tmp_path / "events.jsonl"


def test_stdlib_logs_render_as_json(log_stream):
    logging.getLogger("memoryx.runtime.memory.test").info("sweep finished")
    record = json.loads(log_stream.getvalue().splitlines()[-1])
    assert record["event"] == "sweep finished"
    assert record["level"] == "info"
    assert record["logger"] == "memoryx.runtime.memory.test"
    assert "timestamp" in record


def test_structlog_context_is_bound(log_stream):
    LogManager.get_logger("memoryx.store", backend="sqlite").warning("slow query", elapsed_ms=12)
    record = json.loads(log_stream.getvalue().splitlines()[-1])
    assert record["event"] == "slow query"
    assert record["backend"] == "sqlite"
    assert record["elapsed_ms"] == 12


def test_setup_replaces_previous_handler(log_stream):
    LogManager.setup(level="INFO", json_output=True, stream=log_stream)
    handlers = [h for h in logging.getLogger("memoryx").handlers if h is LogManager._handler]
    assert len(handlers) == 1
    assert len(logging.getLogger("memoryx").handlers) == 1


def test_event_log_appends_jsonl(tmp_path):
    sink = EventLog(tmp_path / "logs" / "events.jsonl")
    sink("memory:created", {"semantic_id": "sem-1"})
    sink("memory:deleted", {"id": "sem-1"})

    lines = (tmp_path / "logs" / "events.jsonl").read_text(encoding="utf-8").splitlines()
    records = [json.loads(line) for line in lines]
    assert [r["event"] for r in records] == ["memory:created", "memory:deleted"]
    assert records[1]["payload"] == {"id": "sem-1"}


def test_build_record_shape():
    record = build_record("memory:forget", {"deleted": 2})
    assert set(record) == {"event", "timestamp", "payload"}
