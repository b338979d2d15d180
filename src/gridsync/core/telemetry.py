"""OpenTelemetry initialization and span wrappers for lifecycle operations."""

from __future__ import annotations

import logging
import os

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider

from gridsync.core.logging import get_resource_context, set_resource_context

logger = logging.getLogger(__name__)

_TRACER_NAME = "gridsync"

# Guard flag: True once the global TracerProvider has been installed.
_tracer_provider_installed: bool = False


def init_telemetry(service_name: str = "gridsync") -> trace.Tracer:
    """Initialize OpenTelemetry tracing for the process.

    When ``OTEL_EXPORTER_OTLP_ENDPOINT`` is set, installs a TracerProvider
    with an OTLP gRPC exporter on the first call.  Otherwise the default
    no-op tracer is returned.
    """
    global _tracer_provider_installed

    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not endpoint:
        logger.debug("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op tracer")
        return trace.get_tracer(service_name)

    if _tracer_provider_installed:
        return trace.get_tracer(service_name)

    # Import exporter only when needed
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    _tracer_provider_installed = True
    logger.info("Telemetry initialized: endpoint=%s", endpoint)
    return trace.get_tracer(service_name)


class lifecycle_span:
    """Span around one lifecycle operation, named ``gridsync.<resource>.<operation>``.

    While the span is open the resource label is also set as the logging
    context, so every log line emitted inside carries it.  Exceptions are
    recorded on the span and re-raised.
    """

    def __init__(self, resource_type: str, operation: str, *, identifier: str | None) -> None:
        self._resource_type = resource_type
        self._operation = operation
        self._identifier = identifier
        self._span: trace.Span | None = None
        self._token: object | None = None
        self._previous_resource: str | None = None

    def __enter__(self) -> trace.Span:
        tracer = trace.get_tracer(_TRACER_NAME)
        self._span = tracer.start_span(f"gridsync.{self._resource_type}.{self._operation}")
        self._span.set_attribute("gridsync.resource_type", self._resource_type)
        if self._identifier:
            self._span.set_attribute("gridsync.identifier", self._identifier)
        self._token = trace.context_api.attach(trace.set_span_in_context(self._span))
        self._previous_resource = get_resource_context()
        label = f"{self._resource_type}:{self._identifier}" if self._identifier else None
        set_resource_context(label or self._resource_type)
        return self._span

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        set_resource_context(self._previous_resource)
        if self._span is None:
            return
        if exc_val is not None:
            self._span.set_status(trace.StatusCode.ERROR, str(exc_val))
            self._span.record_exception(exc_val)
        self._span.end()
        if self._token is not None:
            trace.context_api.detach(self._token)
