"""Unit tests for the observability package."""

import json
import logging
from pathlib import Path
import sys
from types import SimpleNamespace

from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode
from prometheus_client import REGISTRY
import pytest

from search_bridge.callbacks import RegistrationKey
from search_bridge.config import reset_settings
from search_bridge.database import DbFlags
from search_bridge.observability import (
    REGISTRATIONS_LIVE,
    SEARCH_LATENCY,
    JsonFormatter,
    callback_scope,
    configure_logging,
    create_span,
    get_metrics,
    get_metrics_content_type,
    get_trace_context,
    init_metrics,
    init_tracing,
    set_trace_context,
    track_latency,
)
from search_bridge.observability import metrics as metrics_module, tracing as tracing_module
from search_bridge.observability.context import callback_role, trace_context, with_otel_span


def _record(msg="test message", name="search_bridge.callbacks", exc_info=None):
    return logging.LogRecord(
        name=name,
        level=logging.INFO,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    level, handlers = root.level, root.handlers[:]
    yield root
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def span_exporter():
    """Route spans from ``create_span`` into memory."""
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    previous = tracing_module._tracer_holder["tracer"]
    tracing_module._tracer_holder["tracer"] = provider.get_tracer("tests")
    yield exporter
    tracing_module._tracer_holder["tracer"] = previous


@pytest.mark.unit
class TestJsonFormatter:
    """Tests for JSON log formatting."""

    def test_format_basic_message(self):
        data = json.loads(JsonFormatter().format(_record()))

        assert data["message"] == "test message"
        assert data["level"] == "INFO"
        assert data["logger"] == "search_bridge.callbacks"
        assert data["component"] == "callbacks"
        assert len(data["trace_id"]) == 32
        assert "callback_role" not in data

    def test_format_includes_callback_role(self):
        with callback_scope("match_decider"):
            data = json.loads(JsonFormatter().format(_record()))
        assert data["callback_role"] == "match_decider"
        assert callback_role.get() is None

    def test_format_includes_extra_fields(self):
        record = _record()
        record.registration_id = 7
        data = json.loads(JsonFormatter().format(record))
        assert data["registration_id"] == 7

    def test_format_truncates_and_redacts(self):
        record = _record(msg="x" * 5000)
        record.token = "hunter2"
        record.detail = "y" * 800
        data = json.loads(JsonFormatter().format(record))

        assert data["message"].endswith("...")
        assert len(data["message"]) == JsonFormatter.MAX_MESSAGE_LEN + 3
        assert data["token"] == "[REDACTED]"
        assert len(data["detail"]) == 503

    def test_format_includes_exception(self):
        try:
            raise RuntimeError("callback blew up")
        except RuntimeError:
            record = _record(exc_info=sys.exc_info())
        data = json.loads(JsonFormatter().format(record))
        assert "RuntimeError: callback blew up" in data["exception"]

    def test_json_default_handles_common_types(self):
        formatter = JsonFormatter()
        assert formatter._json_default({3, 1, 2}) == [1, 2, 3]
        assert formatter._json_default(b"ok") == "ok"
        assert formatter._json_default(Path("/tmp/db")) == "/tmp/db"
        assert formatter._json_default(ValueError("bad")) == "bad"

    def test_json_default_handles_engine_values(self):
        formatter = JsonFormatter()
        assert formatter._json_default(b"caf\xe9") == "caf\\xe9"
        assert formatter._json_default(DbFlags.RETRY_LOCK) == "RETRY_LOCK"
        assert formatter._json_default(RegistrationKey(3, 2)) == {"index": 3, "generation": 2}

    def test_json_default_handles_unorderable_set(self):
        value = JsonFormatter()._json_default({1, "a"})
        assert isinstance(value, list)
        assert len(value) == 2


@pytest.mark.unit
class TestTraceContext:
    """Tests for trace context propagation."""

    def test_get_trace_context_generates_ids(self):
        trace_context.set(None)
        ctx = get_trace_context()
        assert len(ctx["trace_id"]) == 32
        assert len(ctx["span_id"]) == 16
        assert get_trace_context() is ctx

    def test_set_trace_context_preserves_extra(self):
        set_trace_context("ab" * 16, "cd" * 8, index="books")
        ctx = get_trace_context()
        assert ctx["trace_id"] == "ab" * 16
        assert ctx["span_id"] == "cd" * 8
        assert ctx["index"] == "books"

    def test_missing_ids_are_minted_keeping_extras(self):
        trace_context.set({"index": "books"})
        ctx = get_trace_context()
        assert ctx["index"] == "books"
        assert len(ctx["trace_id"]) == 32

    def test_with_otel_span_extracts_context(self):
        span_ctx = SimpleNamespace(trace_id=0x1234, span_id=0x5678)
        fake_span = SimpleNamespace(get_span_context=lambda: span_ctx)
        ctx = with_otel_span(fake_span)
        assert ctx["trace_id"] == format(0x1234, "032x")
        assert ctx["span_id"] == format(0x5678, "016x")

    def test_callback_scope_nests(self):
        with callback_scope("stopper"):
            with callback_scope("field_processor"):
                assert callback_role.get() == "field_processor"
            assert callback_role.get() == "stopper"
        assert callback_role.get() is None


@pytest.mark.unit
class TestTracing:
    """Tests for OpenTelemetry tracing."""

    def test_init_tracing_applies_resource_attributes(self):
        provider = init_tracing("test-service", resource_attributes={"service.version": "2.0.0"})
        assert provider.resource.attributes["service.name"] == "test-service"
        assert provider.resource.attributes["service.version"] == "2.0.0"

    def test_get_tracer_initializes_when_missing(self):
        tracing_module._tracer_holder["tracer"] = None
        assert tracing_module.get_tracer() is not None

    def test_create_span_records_attributes(self, span_exporter):
        with create_span("enquire.mset", attributes={"search.size": 10}) as span:
            span_id = format(span.get_span_context().span_id, "016x")
            assert get_trace_context()["span_id"] == span_id

        (finished,) = span_exporter.get_finished_spans()
        assert finished.name == "enquire.mset"
        assert finished.attributes["search.size"] == 10

    def test_create_span_marks_errors(self, span_exporter):
        with pytest.raises(RuntimeError), create_span("database.commit"):
            raise RuntimeError("disk full")

        (finished,) = span_exporter.get_finished_spans()
        assert finished.status.status_code is StatusCode.ERROR
        assert finished.status.description == "disk full"
        assert [event.name for event in finished.events] == ["exception"]

    def test_create_span_restores_trace_context(self, span_exporter):
        set_trace_context("aa" * 16, "bb" * 8, index="books")
        with create_span("queryparser.parse_query"):
            assert get_trace_context()["index"] == "books"
            assert get_trace_context()["span_id"] != "bb" * 8
        assert get_trace_context() == {"trace_id": "aa" * 16, "span_id": "bb" * 8, "index": "books"}

    def test_create_span_inside_callback_records_role(self, span_exporter):
        with callback_scope("field_processor"), create_span("enquire.mset"):
            pass
        (finished,) = span_exporter.get_finished_spans()
        assert finished.attributes["bridge.callback_role"] == "field_processor"


@pytest.mark.unit
class TestMetrics:
    """Tests for Prometheus metrics and their OTel mirrors."""

    def test_get_metrics_returns_bytes(self):
        output = get_metrics()
        assert isinstance(output, bytes)
        assert b"search_bridge_operation_latency_seconds" in output

    def test_get_metrics_content_type(self):
        assert get_metrics_content_type() == metrics_module.CONTENT_TYPE_LATEST

    def test_track_latency_records_histogram(self):
        labels = {"operation": "tests.track"}
        before = REGISTRY.get_sample_value("search_bridge_operation_latency_seconds_count", labels) or 0.0
        with track_latency(SEARCH_LATENCY, operation="tests.track"):
            pass
        after = REGISTRY.get_sample_value("search_bridge_operation_latency_seconds_count", labels)
        assert after == before + 1

    def test_track_latency_records_on_error(self):
        labels = {"operation": "tests.failing"}
        before = REGISTRY.get_sample_value("search_bridge_operation_latency_seconds_count", labels) or 0.0
        with pytest.raises(KeyError), track_latency(SEARCH_LATENCY, operation="tests.failing"):
            raise KeyError("missing")
        assert REGISTRY.get_sample_value("search_bridge_operation_latency_seconds_count", labels) == before + 1

    def test_gauge_set_and_dec(self):
        bound = REGISTRATIONS_LIVE.labels(role="tests", regime="gauge")
        bound.set(3)
        bound.dec()
        labels = {"role": "tests", "regime": "gauge"}
        assert REGISTRY.get_sample_value("search_bridge_registrations_live", labels) == 2.0

    def test_metric_bridge_unknown_kind_raises(self):
        bad_metric = metrics_module.MetricBridge(
            metrics_module.CALLBACK_INVOCATIONS._prom_metric,
            otel_name="bad_metric",
            otel_description="bad",
            otel_kind="unknown",
        )
        with pytest.raises(ValueError, match="Unknown metric kind"):
            bad_metric.inc({"role": "tests"}, 1.0)

    def test_init_metrics_creates_provider_once(self):
        saved = dict(metrics_module._meter_holder)
        metrics_module._meter_holder.update({"meter": None, "provider": None})
        try:
            provider = init_metrics("test-service", {"service.version": "1.0.0"})
            assert isinstance(provider, MeterProvider)
            assert init_metrics("other-service") is provider
            assert metrics_module._meter_holder["meter"] is not None
        finally:
            metrics_module._meter_holder.update(saved)


@pytest.mark.unit
class TestConfigureLogging:
    """Tests for logging configuration."""

    def test_configure_logging_sets_level(self, restore_root_logger):
        configure_logging(level="DEBUG", json_output=True)
        assert restore_root_logger.level == logging.DEBUG
        assert isinstance(restore_root_logger.handlers[0].formatter, JsonFormatter)

    def test_configure_logging_replaces_handlers(self, restore_root_logger):
        configure_logging(level="INFO")
        configure_logging(level="INFO")
        assert len(restore_root_logger.handlers) == 1

    def test_configure_logging_non_json_formatter(self, restore_root_logger):
        configure_logging(level="INFO", json_output=False)
        formatter = restore_root_logger.handlers[0].formatter
        assert not isinstance(formatter, JsonFormatter)
        assert "%(asctime)s" in formatter._style._fmt

    def test_configure_logging_logger_overrides(self, restore_root_logger):
        configure_logging(level="INFO", logger_levels={"search_bridge.callbacks": "error"})
        assert logging.getLogger("search_bridge.callbacks").level == logging.ERROR
        logging.getLogger("search_bridge.callbacks").setLevel(logging.NOTSET)

    def test_configure_logging_defaults_from_settings(self, restore_root_logger, monkeypatch):
        monkeypatch.setenv("SEARCH_BRIDGE_LOG_LEVEL", "warning")
        monkeypatch.setenv("SEARCH_BRIDGE_LOG_JSON", "true")
        reset_settings()
        configure_logging()
        assert restore_root_logger.level == logging.WARNING
        assert isinstance(restore_root_logger.handlers[0].formatter, JsonFormatter)
