"""Observability: JSON logging, OpenTelemetry tracing and Prometheus metrics."""

from nlpromql.observability.context import bind_context, get_trace_context, set_trace_context, trace_context
from nlpromql.observability.logging import JsonFormatter, configure_logging
from nlpromql.observability.metrics import (
    BUILD_DURATION,
    INDEX_KNOWN_NAMES,
    RESOLVE_LATENCY,
    SYNONYM_BATCHES,
    get_metrics,
    get_metrics_content_type,
    init_metrics,
)
from nlpromql.observability.tracing import create_span, get_tracer, init_tracing


__all__ = [
    "BUILD_DURATION",
    "INDEX_KNOWN_NAMES",
    "RESOLVE_LATENCY",
    "SYNONYM_BATCHES",
    "JsonFormatter",
    "bind_context",
    "configure_logging",
    "create_span",
    "get_metrics",
    "get_metrics_content_type",
    "get_trace_context",
    "get_tracer",
    "init_metrics",
    "init_tracing",
    "set_trace_context",
    "trace_context",
]
