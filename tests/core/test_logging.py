"""Tests for cronspine.core.logging."""

import json

import pytest
import structlog

from cronspine.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)


@pytest.fixture(autouse=True)
def _restore_structlog():
    yield
    clear_context()
    structlog.reset_defaults()


class TestConfigureLogging:
    def test_json_output_is_ecs_compatible(self, capsys):
        configure_logging(level="INFO", json_format=True, service="cronspine-test")
        get_logger("test.json").info("tick.completed", pushed=3)

        line = capsys.readouterr().out.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "tick.completed"
        assert record["pushed"] == 3
        assert record["service.name"] == "cronspine-test"
        assert record["log.level"] == "info"
        assert "@timestamp" in record
        assert record["logger"] == "test.json"

    def test_each_call_is_written_out(self, capsys):
        configure_logging(level="INFO", json_format=True)
        logger = get_logger("test.stream")

        logger.info("first")
        first = capsys.readouterr().out
        logger.info("second")
        second = capsys.readouterr().out

        assert "first" in first
        assert "second" in second and "first" not in second

    def test_unnamed_logger(self, capsys):
        configure_logging(level="INFO", json_format=True)
        get_logger().info("anonymous")
        record = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert record["event"] == "anonymous"
        assert "logger" not in record

    def test_level_filters(self, capsys):
        configure_logging(level="WARNING", json_format=True)
        get_logger("test.filter").info("should.not.appear")
        assert "should.not.appear" not in capsys.readouterr().out


class TestContext:
    def test_log_context_binds_and_unbinds(self, capsys):
        configure_logging(level="INFO", json_format=True)
        logger = get_logger("test.ctx")

        with LogContext(schedule="nightly", tick=7):
            logger.info("inside")
        logger.info("outside")

        inside, outside = (json.loads(l) for l in capsys.readouterr().out.strip().splitlines()[-2:])
        assert inside["schedule"] == "nightly"
        assert inside["tick"] == 7
        assert "schedule" not in outside

    @pytest.mark.asyncio
    async def test_log_context_async(self):
        async with LogContext(replica="r1"):
            assert structlog.contextvars.get_contextvars()["replica"] == "r1"
        assert "replica" not in structlog.contextvars.get_contextvars()

    def test_clear_context(self):
        bind_context(replica="r1")
        clear_context()
        assert structlog.contextvars.get_contextvars() == {}
