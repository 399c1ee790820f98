"""
Distributed tracing with OpenTelemetry.

Routing and batch execution open spans so a request can be followed from
the router to the shard that applied it. Until ``setup_tracing`` is called,
spans come from the API's default provider and are not recorded.
"""

import logging
from typing import Dict, Any, Optional, ContextManager
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.trace import Status, StatusCode, Span

logger = logging.getLogger(__name__)

# Global tracer instance
_tracer: Optional[trace.Tracer] = None
_tracer_provider: Optional[TracerProvider] = None


def setup_tracing(
    service_name: str,
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
    exporter: Optional[SpanExporter] = None,
) -> trace.Tracer:
    """
    Initialize OpenTelemetry tracing for the relay.

    Args:
        service_name: Name of the service (e.g., "credit-relay")
        otlp_endpoint: OTLP collector endpoint (e.g., "http://localhost:4317")
        console_export: If True, also export spans to console for debugging
        exporter: Extra exporter attached with a synchronous processor

    Returns:
        Configured tracer instance
    """
    global _tracer, _tracer_provider

    resource = Resource(attributes={SERVICE_NAME: service_name})
    _tracer_provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )

        otlp_exporter = OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True)
        _tracer_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        logger.info(f"Configured OTLP exporter: {otlp_endpoint}")

    if console_export:
        _tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.info("Configured console span exporter")

    if exporter is not None:
        _tracer_provider.add_span_processor(SimpleSpanProcessor(exporter))

    # Take the tracer from our provider directly; the global provider can
    # only be set once per process.
    _tracer = _tracer_provider.get_tracer(__name__)

    logger.info(f"Initialized tracing for service: {service_name}")

    return _tracer


def get_tracer() -> trace.Tracer:
    """Return the configured tracer, or the API default when tracing is off."""
    if _tracer is None:
        return trace.get_tracer(__name__)
    return _tracer


def shutdown_tracing() -> None:
    """Flush pending spans and disable tracing."""
    global _tracer, _tracer_provider

    if _tracer_provider is not None:
        _tracer_provider.shutdown()
    _tracer = None
    _tracer_provider = None


@contextmanager
def create_span(
    name: str,
    attributes: Optional[Dict[str, Any]] = None,
    kind: trace.SpanKind = trace.SpanKind.INTERNAL,
) -> ContextManager[Span]:
    """
    Create a trace span with optional attributes.

    Usage:
        with create_span("route_identity", {"relay.shard_index": 2}):
            ...

    Args:
        name: Span name
        attributes: Optional span attributes (None values are skipped)
        kind: Span kind

    Yields:
        Active span
    """
    tracer = get_tracer()

    with tracer.start_as_current_span(
        name, kind=kind, record_exception=False, set_status_on_exception=False
    ) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value if isinstance(value, (int, bool)) else str(value))

        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise
