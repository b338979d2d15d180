"""Tests for structured logging."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
import structlog
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider

from gridsync.core.logging import (
    _NOISE_LOGGERS,
    LOG_FILE_NAME,
    _resource_context,
    add_otel_context,
    add_resource_context,
    configure_logging,
    get_resource_context,
    set_resource_context,
)

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _reset_logging():
    """Reset logging and resource context between tests."""
    token = _resource_context.set(None)
    yield
    _resource_context.reset(token)
    root = logging.getLogger()
    for handler in root.handlers:
        handler.close()
    root.handlers.clear()
    root.setLevel(logging.WARNING)


class TestResourceContext:
    def test_default_is_none(self):
        assert get_resource_context() is None

    def test_set_and_get(self):
        set_resource_context("subuser:alice")
        assert get_resource_context() == "subuser:alice"

    def test_processor_injects_resource(self):
        set_resource_context("api_key:key-1")
        event_dict = add_resource_context(None, "info", {"event": "x"})
        assert event_dict["resource"] == "api_key:key-1"

    def test_processor_handles_unset_context(self):
        event_dict = add_resource_context(None, "info", {"event": "x"})
        assert event_dict["resource"] is None


class TestAddOtelContext:
    def test_zeroed_ids_when_no_span(self):
        event_dict = add_otel_context(None, "info", {"event": "x"})
        assert event_dict["trace_id"] == "0" * 32
        assert event_dict["span_id"] == "0" * 16

    def test_real_ids_when_span_active(self):
        tracer = TracerProvider().get_tracer("test")
        with tracer.start_as_current_span("op") as span:
            event_dict = add_otel_context(None, "info", {"event": "x"})
            ctx = span.get_span_context()
        assert event_dict["trace_id"] == format(ctx.trace_id, "032x")
        assert event_dict["span_id"] == format(ctx.span_id, "016x")
        assert trace.get_current_span().get_span_context().trace_id == 0


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

    def test_reconfigure_replaces_handlers(self):
        configure_logging()
        configure_logging()
        assert len(logging.getLogger().handlers) == 1

    def test_log_level_applied(self):
        configure_logging(level="debug")
        assert logging.getLogger().level == logging.DEBUG

    def test_noise_loggers_suppressed(self):
        configure_logging(level="DEBUG")
        for name in _NOISE_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_file_output_is_json_with_resource(self, tmp_path: Path):
        log_root = tmp_path / "logs"
        configure_logging(fmt="text", log_root=log_root)
        set_resource_context("subuser:alice")
        logging.getLogger("gridsync.test").info("hello structured world")

        log_file = log_root / LOG_FILE_NAME
        assert log_file.exists()
        lines = [json.loads(line) for line in log_file.read_text().splitlines() if line]
        record = next(r for r in lines if r["event"] == "hello structured world")
        assert record["resource"] == "subuser:alice"
        assert record["level"] == "info"
        assert record["logger"] == "gridsync.test"
