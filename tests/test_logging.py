"""
Tests for the structlog setup in coalescer.utils.logging.
"""

import json
import logging

import pytest
import structlog

from coalescer.core import Batcher
from coalescer.utils.logging import logging_context, setup_logging
from tests.mocks.executors import RecordingExecutor


def _json_events(caplog) -> list[dict]:
    return [
        json.loads(record.getMessage())
        for record in caplog.records
        if record.name.startswith("coalescer")
    ]


@pytest.mark.asyncio
async def test_json_logs_render_batcher_events(caplog):
    """Test that batcher events come out as JSON objects carrying the bound context."""
    caplog.set_level(logging.DEBUG, logger="coalescer")
    setup_logging(level=logging.DEBUG, json_logs=True)
    batcher = Batcher(RecordingExecutor(), period_seconds=10, name="users")

    with logging_context(command="demo"):
        first = batcher.run("a")
        second = batcher.run("b")
        await batcher.flush()
        assert await first == "a"
        assert await second == "b"
    await batcher.close()

    events = _json_events(caplog)
    flushed = [event for event in events if event["event"] == "Flushing batch"]
    assert len(flushed) == 1
    assert flushed[0]["request_count"] == 2
    assert flushed[0]["batcher"] == "users"
    assert flushed[0]["command"] == "demo"
    assert flushed[0]["level"] == "debug"
    assert flushed[0]["logger"] == "coalescer.core"


def test_level_filters_library_events(caplog):
    """Test that debug events are dropped below the configured level."""
    caplog.set_level(logging.DEBUG, logger="coalescer")
    setup_logging(level=logging.WARNING, json_logs=True)
    log = structlog.get_logger("coalescer.core")

    log.debug(event="Queued request for batch", pending_count=1)
    log.warning(event="Batch executor returned with unsettled requests", unsettled_count=1)

    events = _json_events(caplog)
    assert [event["event"] for event in events] == [
        "Batch executor returned with unsettled requests"
    ]


def test_console_logs_are_plain_text(caplog):
    """Test that the default renderer writes key=value lines, not JSON."""
    setup_logging(level=logging.INFO)
    structlog.get_logger("coalescer.core").info(event="Batcher closed", batcher="users")

    messages = [record.getMessage() for record in caplog.records if record.name == "coalescer.core"]
    assert len(messages) == 1
    assert "Batcher closed" in messages[0]
    assert "batcher=users" in messages[0]
    assert not messages[0].startswith("{")


def test_logging_context_keeps_bound_keys():
    """Test that an outer binding wins over the same key passed to an inner block."""
    with logging_context(command="demo"):
        with logging_context(command="other", batcher="users"):
            assert structlog.contextvars.get_contextvars() == {
                "command": "demo",
                "batcher": "users",
            }
        assert structlog.contextvars.get_contextvars() == {"command": "demo"}
    assert structlog.contextvars.get_contextvars() == {}
