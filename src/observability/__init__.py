"""
Observability for the credit relay: Prometheus metrics and OpenTelemetry tracing.
"""

from .tracing import setup_tracing, create_span, get_tracer, shutdown_tracing
from .metrics import metrics_collector, track_operation, MetricsCollector

__all__ = [
    "setup_tracing",
    "create_span",
    "get_tracer",
    "shutdown_tracing",
    "metrics_collector",
    "track_operation",
    "MetricsCollector",
]
