"""Tests for structured logging configuration."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
import structlog

from dayplanner.core.logging import (
    _NOISE_LOGGERS,
    _planner_context,
    add_otel_context,
    add_planner_context,
    configure_logging,
    get_planner_context,
    set_planner_context,
)

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _reset_logging():
    """Reset logging and planner context between tests."""
    token = _planner_context.set(None)
    yield
    _planner_context.reset(token)
    root = logging.getLogger()
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()
    root.setLevel(logging.WARNING)


class TestPlannerContext:
    def test_set_and_get(self):
        set_planner_context("work")
        assert get_planner_context() == "work"

    def test_default_is_none(self):
        assert get_planner_context() is None

    def test_processor_injects_planner_name(self):
        set_planner_context("home")

        result = add_planner_context(None, "info", {"event": "test"})

        assert result["planner"] == "home"

    def test_processor_handles_unset_context(self):
        result = add_planner_context(None, "info", {"event": "test"})

        assert result["planner"] is None


class TestAddOtelContext:
    def test_zeroed_ids_when_no_span(self):
        result = add_otel_context(None, "info", {"event": "test"})

        assert result["trace_id"] == "0" * 32
        assert result["span_id"] == "0" * 16

    def test_real_ids_when_span_active(self):
        from opentelemetry.sdk.trace import TracerProvider

        provider = TracerProvider()
        tracer = provider.get_tracer("test")
        with tracer.start_as_current_span("test-span"):
            result = add_otel_context(None, "info", {"event": "test"})
            assert result["trace_id"] != "0" * 32
            assert len(result["trace_id"]) == 32
            assert len(result["span_id"]) == 16
        provider.shutdown()


class TestConfigureLogging:
    def test_text_format_installs_console_renderer(self):
        configure_logging(fmt="text")

        formatter = logging.getLogger().handlers[0].formatter
        assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
        assert isinstance(formatter.processors[-1], structlog.dev.ConsoleRenderer)

    def test_json_format_installs_json_renderer(self):
        configure_logging(fmt="json")

        formatter = logging.getLogger().handlers[0].formatter
        assert isinstance(formatter.processors[-1], structlog.processors.JSONRenderer)

    def test_reconfiguring_does_not_duplicate_handlers(self):
        configure_logging()
        configure_logging()

        assert len(logging.getLogger().handlers) == 1

    def test_sets_planner_context(self):
        configure_logging(planner_name="work")

        assert get_planner_context() == "work"

    def test_noise_loggers_suppressed(self):
        configure_logging(level="DEBUG")

        for name in _NOISE_LOGGERS:
            assert logging.getLogger(name).level >= logging.WARNING

    def test_log_level_applied(self):
        configure_logging(level="DEBUG")

        assert logging.getLogger().level == logging.DEBUG


class TestLogFile:
    def test_file_is_named_after_planner(self, tmp_path: Path):
        configure_logging(log_root=tmp_path / "nested", planner_name="work")

        file_handlers = [
            h for h in logging.getLogger().handlers if isinstance(h, logging.FileHandler)
        ]
        assert len(file_handlers) == 1
        assert file_handlers[0].baseFilename.endswith("nested/work.log")

    def test_file_output_is_json_even_for_text_console(self, tmp_path: Path):
        configure_logging(fmt="text", level="INFO", log_root=tmp_path, planner_name="jsontest")

        logging.getLogger("dayplanner.test").info("hello structured world")

        line = (tmp_path / "jsontest.log").read_text().strip().splitlines()[-1]
        data = json.loads(line)
        assert data["event"] == "hello structured world"
        assert data["planner"] == "jsontest"
        assert data["level"] == "info"
