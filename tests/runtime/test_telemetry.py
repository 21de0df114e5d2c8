import logging

import pytest

from memoryx.runtime.memory.telemetry import (
    CaptureTelemetryClient,
    LoggingTelemetryClient,
    NoOpTelemetryClient,
    TelemetryClient,
)


def test_span_records_success_and_attributes():
    client = CaptureTelemetryClient()
    with client.span("memoryx.recall", attributes={"max_tokens": 100}) as span:
        span.set_attribute("themes", 2)

    ((name, attributes),) = client.spans
    assert name == "memoryx.recall"
    assert attributes["max_tokens"] == 100
    assert attributes["themes"] == 2
    assert attributes["success"] is True
    assert attributes["duration_ms"] >= 0


def test_span_records_failure_and_reraises():
    client = CaptureTelemetryClient()
    with pytest.raises(KeyError):
        with client.span("memoryx.forget"):
            raise KeyError("missing")

    _, attributes = client.spans[0]
    assert attributes["success"] is False
    assert attributes["error"] == "KeyError"


def test_noop_client_discards():
    with NoOpTelemetryClient().span("memoryx.status") as span:
        span.set_attribute("ignored", True)


def test_base_client_requires_sink():
    with pytest.raises(NotImplementedError):
        with TelemetryClient().span("memoryx.status"):
            pass


def test_logging_client_writes_debug(caplog):
    with caplog.at_level(logging.DEBUG, logger="memoryx.runtime.memory.telemetry"):
        with LoggingTelemetryClient().span("memoryx.reason", attributes={"max_hops": 2}):
            pass
    assert "[telemetry] memoryx.reason" in caplog.text
    assert "'max_hops': 2" in caplog.text
