"""
Tests for structured JSONL request logging.
"""

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

import httpx
import pytest

from conftest import MockBackend, connect_error
from persona_relay.application.use_cases import SendRequestUseCase
from persona_relay.infrastructure.adapters import RequestLoggerAdapter
from persona_relay.infrastructure.errors import ServiceUnavailableError
from persona_relay.telemetry import structured_logging
from persona_relay.telemetry.structured_logging import REQUEST_LOGGER, log_request_event


@pytest.fixture
def captured_lines(monkeypatch):
    """Capture formatted JSON lines instead of reading the log file."""
    lines = []

    class ListHandler(logging.Handler):
        def emit(self, record):
            lines.append(record.getMessage())

    handler = ListHandler()
    REQUEST_LOGGER.addHandler(handler)
    yield lines
    REQUEST_LOGGER.removeHandler(handler)


class TestLogRequestEvent:
    """Tests for log_request_event."""

    def test_writes_one_json_object_per_event(self, captured_lines):
        log_request_event({"event": "ai_request", "status": "success", "latency_ms": 12.5})
        record = json.loads(captured_lines[-1])
        assert record["event"] == "ai_request"
        assert record["latency_ms"] == 12.5

    def test_injects_timestamp_when_missing(self, captured_lines):
        log_request_event({"event": "ai_request", "status": "success"})
        record = json.loads(captured_lines[-1])
        assert datetime.fromisoformat(record["timestamp"]).tzinfo is not None

    def test_caller_event_not_mutated(self, captured_lines):
        event = {"event": "ai_request", "status": "success"}
        log_request_event(event)
        assert event == {"event": "ai_request", "status": "success"}
        assert "timestamp" in json.loads(captured_lines[-1])

    def test_keeps_existing_timestamp(self, captured_lines):
        log_request_event({"event": "x", "status": "success", "timestamp": "2024-01-01T00:00:00+00:00"})
        assert json.loads(captured_lines[-1])["timestamp"] == "2024-01-01T00:00:00+00:00"

    def test_serializes_datetimes_and_paths(self, captured_lines):
        when = datetime(2024, 5, 1, 8, 30, tzinfo=UTC)
        log_request_event({"event": "x", "status": "success", "at": when, "file": Path("/tmp/a")})
        record = json.loads(captured_lines[-1])
        assert datetime.fromisoformat(record["at"].replace("Z", "+00:00")) == when
        assert record["file"] == "/tmp/a"

    def test_logger_does_not_propagate(self):
        assert REQUEST_LOGGER.propagate is False

    def test_log_file_lives_in_configured_directory(self):
        handlers = [h for h in REQUEST_LOGGER.handlers if isinstance(h, logging.FileHandler)]
        assert handlers
        assert Path(handlers[0].baseFilename).parent == structured_logging.LOGS_DIR
        assert Path(handlers[0].baseFilename).name == structured_logging.REQUEST_LOG_FILENAME


@pytest.mark.asyncio
class TestRequestLifecycleEvents:
    """Tests for the records SendRequestUseCase writes through RequestLoggerAdapter."""

    async def test_failed_then_successful_attempts(self, captured_lines, make_adapter, make_request):
        backend = MockBackend(connect_error, httpx.Response(200, json={"text": "ok"}))
        use_case = SendRequestUseCase(
            make_adapter(backend, max_retries=1), logger=RequestLoggerAdapter()
        )
        request = make_request()

        with pytest.raises(ServiceUnavailableError):
            await use_case.execute(request)
        await use_case.retry(request)

        records = [json.loads(line) for line in captured_lines]
        lifecycle = [r for r in records if r["event"] == "request_lifecycle"]
        transport = [r for r in records if r["event"] == "ai_request"]

        assert [(r["status"], r["attempt"]) for r in lifecycle] == [("error", 1), ("success", 2)]
        assert lifecycle[0]["error_code"] == "SERVICE_UNAVAILABLE"
        assert lifecycle[0]["request_status"] == "failed"
        assert lifecycle[1]["request_status"] == "completed"
        assert lifecycle[1]["personality_id"] == "friendly-bot"
        assert [r["status"] for r in transport] == ["error", "success"]
        assert all(r["request_id"] == request.id for r in records)
