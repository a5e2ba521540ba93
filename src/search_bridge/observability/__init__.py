"""Observability module for OpenTelemetry-aligned tracing, metrics, and logging."""

from search_bridge.observability.context import (
    callback_role,
    callback_scope,
    get_trace_context,
    set_trace_context,
    trace_context,
)
from search_bridge.observability.logging import JsonFormatter, configure_logging
from search_bridge.observability.metrics import (
    CALLBACK_FAILURES,
    CALLBACK_INVOCATIONS,
    HANDLES_LIVE,
    REGISTRATIONS_LIVE,
    SEARCH_LATENCY,
    get_metrics,
    get_metrics_content_type,
    init_metrics,
    track_latency,
)
from search_bridge.observability.tracing import create_span, get_tracer, init_tracing


__all__ = [
    "CALLBACK_FAILURES",
    "CALLBACK_INVOCATIONS",
    "HANDLES_LIVE",
    "REGISTRATIONS_LIVE",
    "SEARCH_LATENCY",
    "JsonFormatter",
    "callback_role",
    "callback_scope",
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
