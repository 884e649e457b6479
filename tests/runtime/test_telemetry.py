import logging

import pytest

from halcore.runtime.memory.telemetry import ConsoleTelemetryClient, NoOpTelemetryClient, RecordingTelemetryClient


def test_span_records_failure_and_reraises():
    telemetry = RecordingTelemetryClient()
    with pytest.raises(KeyError):
        with telemetry.span("memory.search", attributes={"threshold": 0.3}):
            raise KeyError("boom")

    name, attrs = telemetry.spans[0]
    assert name == "memory.search"
    assert attrs["success"] is False
    assert attrs["error"] == "KeyError"
    assert attrs["threshold"] == 0.3
    assert attrs["duration_ms"] >= 0


def test_console_client_logs_spans(caplog):
    caplog.set_level(logging.INFO, logger="halcore.runtime.memory.telemetry")
    with ConsoleTelemetryClient().span("memory.import") as span:
        span.set_attribute("chunks", 3)
    assert "memory.import" in caplog.text
    assert "'chunks': 3" in caplog.text


def test_noop_client_accepts_spans():
    with NoOpTelemetryClient().span("memory.summarize") as span:
        span.set_attribute("messages", 2)
