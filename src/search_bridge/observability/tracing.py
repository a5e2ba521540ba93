"""OpenTelemetry spans around engine calls.

The bridge only creates spans. Exporting them is up to the application,
which can add span processors to the provider returned by ``init_tracing``
or install its own provider before the first span is created.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.trace import SpanKind, Status, StatusCode

from search_bridge.observability.context import callback_role, trace_context, with_otel_span


if TYPE_CHECKING:
    from collections.abc import Generator

    from opentelemetry.trace import Span, Tracer

logger = logging.getLogger(__name__)

_tracer_holder: dict[str, Tracer | None] = {"tracer": None}


def init_tracing(
    service_name: str = "search-bridge",
    resource_attributes: dict[str, str] | None = None,
) -> TracerProvider:
    """Install an SDK tracer provider and bind the bridge's tracer to it."""
    resource = Resource.create({"service.name": service_name, **(resource_attributes or {})})
    provider = TracerProvider(resource=resource)
    trace.set_tracer_provider(provider)
    _tracer_holder["tracer"] = provider.get_tracer(__name__)
    logger.info("Tracing initialized for service: %s", service_name)
    return provider


def get_tracer() -> Tracer:
    """Get the configured tracer.

    Falls back to the globally registered provider, which is a no-op until
    ``init_tracing`` or the application installs one.
    """
    if _tracer_holder["tracer"] is None:
        _tracer_holder["tracer"] = trace.get_tracer(__name__)
    return _tracer_holder["tracer"]  # type: ignore[return-value]


@contextmanager
def create_span(
    name: str,
    kind: SpanKind = SpanKind.INTERNAL,
    attributes: dict[str, Any] | None = None,
) -> Generator[Span, None, None]:
    """Run the block inside a span named after the engine operation.

    Log records emitted inside the block carry the span's ids. A span opened
    from inside a callback records the callback role as ``bridge.callback_role``.
    """
    span_attributes = dict(attributes or {})
    if role := callback_role.get():
        span_attributes["bridge.callback_role"] = role

    with get_tracer().start_as_current_span(
        name, kind=kind, attributes=span_attributes, record_exception=False, set_status_on_exception=False
    ) as span:
        ctx = trace_context.get() or {}
        ids = with_otel_span(span) if span.get_span_context().is_valid else {}
        token = trace_context.set({**ctx, **ids})
        try:
            yield span
        except Exception as exc:
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            span.record_exception(exc)
            raise
        finally:
            trace_context.reset(token)
