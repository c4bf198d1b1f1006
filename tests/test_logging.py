"""
Tests for the logging module.

Tests verify:
- JSON lines carry ECS field names and the service name
- Bound context (session_id, request_id) reaches every line
- DEBUG logs are suppressed at INFO level
"""

import io
import json

import pytest

from categorizer.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)


@pytest.fixture
def stream():
    buffer = io.StringIO()
    configure_logging(level="INFO", json_format=True, service="categorizer-test", stream=buffer)
    yield buffer
    clear_context()
    configure_logging(level="WARNING", json_format=False)


def _lines(buffer: io.StringIO) -> list[dict]:
    return [json.loads(line) for line in buffer.getvalue().splitlines() if line.strip()]


class TestJsonOutput:
    def test_ecs_fields(self, stream):
        get_logger("tests.ecs").info("engine.chunk_complete", chunk=1)
        (line,) = _lines(stream)
        assert line["event"] == "engine.chunk_complete"
        assert line["chunk"] == 1
        assert line["log.level"] == "info"
        assert line["service.name"] == "categorizer-test"
        assert "@timestamp" in line

    def test_debug_suppressed_at_info(self, stream):
        log = get_logger("tests.levels")
        log.debug("hidden")
        log.warning("shown")
        assert [line["event"] for line in _lines(stream)] == ["shown"]


class TestContext:
    def test_bind_and_unbind(self, stream):
        log = get_logger("tests.bind")
        bind_context(request_id="req-1")
        log.info("with")
        unbind_context("request_id")
        log.info("without")
        first, second = _lines(stream)
        assert first["request_id"] == "req-1"
        assert "request_id" not in second

    def test_log_context_manager(self, stream):
        log = get_logger("tests.scoped")
        with LogContext(session_id="session_1"):
            log.info("inside")
        log.info("outside")
        inside, outside = _lines(stream)
        assert inside["session_id"] == "session_1"
        assert "session_id" not in outside

    @pytest.mark.asyncio
    async def test_async_log_context(self, stream):
        log = get_logger("tests.async_scoped")
        async with LogContext(session_id="session_2", chunk=3):
            log.info("inside")
        (line,) = _lines(stream)
        assert (line["session_id"], line["chunk"]) == ("session_2", 3)
