"""Tests for gridsync.core.telemetry: tracer setup and lifecycle spans."""

from __future__ import annotations

import pytest
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

import gridsync.core.telemetry as _telemetry_mod
from gridsync.core.logging import get_resource_context, set_resource_context
from gridsync.core.telemetry import init_telemetry, lifecycle_span

pytestmark = pytest.mark.unit


def _reset_otel_global_state():
    trace._TRACER_PROVIDER_SET_ONCE = trace.Once()
    trace._TRACER_PROVIDER = None
    _telemetry_mod._tracer_provider_installed = False


@pytest.fixture
def otel_exporter():
    """Install an in-memory TracerProvider for the test, then tear down."""
    _reset_otel_global_state()
    exporter = InMemorySpanExporter()
    provider = TracerProvider(resource=Resource.create({"service.name": "gridsync-test"}))
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    yield exporter
    provider.shutdown()
    _reset_otel_global_state()


class TestInitTelemetry:
    def test_noop_without_endpoint(self, monkeypatch):
        _reset_otel_global_state()
        monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
        tracer = init_telemetry("gridsync-test")
        with tracer.start_as_current_span("op") as span:
            assert span is not None
        assert _telemetry_mod._tracer_provider_installed is False

    def test_installs_provider_with_endpoint(self, monkeypatch):
        _reset_otel_global_state()
        monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
        try:
            init_telemetry("gridsync-test")
            provider = trace.get_tracer_provider()
            assert isinstance(provider, TracerProvider)
            assert provider.resource.attributes["service.name"] == "gridsync-test"
            assert _telemetry_mod._tracer_provider_installed is True

            # Second call keeps the installed provider.
            init_telemetry("gridsync-test")
            assert trace.get_tracer_provider() is provider
        finally:
            provider = trace.get_tracer_provider()
            if isinstance(provider, TracerProvider):
                provider.shutdown()
            _reset_otel_global_state()


class TestLifecycleSpan:
    def test_span_name_and_attributes(self, otel_exporter):
        with lifecycle_span("subuser", "create", identifier="alice"):
            pass

        [span] = otel_exporter.get_finished_spans()
        assert span.name == "gridsync.subuser.create"
        assert span.attributes["gridsync.resource_type"] == "subuser"
        assert span.attributes["gridsync.identifier"] == "alice"

    def test_resource_context_set_and_restored(self, otel_exporter):
        set_resource_context("outer")
        with lifecycle_span("api_key", "read", identifier="key-1"):
            assert get_resource_context() == "api_key:key-1"
        assert get_resource_context() == "outer"
        set_resource_context(None)

    def test_without_identifier(self, otel_exporter):
        with lifecycle_span("subuser", "create", identifier=None):
            assert get_resource_context() == "subuser"

        [span] = otel_exporter.get_finished_spans()
        assert "gridsync.identifier" not in span.attributes

    def test_exception_recorded_and_reraised(self, otel_exporter):
        with pytest.raises(RuntimeError, match="boom"):
            with lifecycle_span("subuser", "delete", identifier="alice"):
                raise RuntimeError("boom")

        [span] = otel_exporter.get_finished_spans()
        assert span.status.status_code == trace.StatusCode.ERROR
        assert any(event.name == "exception" for event in span.events)

    def test_nested_spans_share_trace(self, otel_exporter):
        with lifecycle_span("subuser", "update", identifier="alice"):
            with lifecycle_span("subuser", "read", identifier="alice"):
                pass

        inner, outer = otel_exporter.get_finished_spans()
        assert inner.context.trace_id == outer.context.trace_id
        assert inner.parent.span_id == outer.context.span_id
