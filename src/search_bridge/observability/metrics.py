"""Bridge metrics: Prometheus collectors mirrored to OpenTelemetry instruments.

Prometheus is always populated so ``get_metrics()`` works without any setup.
The OpenTelemetry side records into whatever ``MeterProvider`` ``init_metrics``
installed, created lazily on first use.
"""

from __future__ import annotations

from contextlib import contextmanager
import time
from typing import TYPE_CHECKING, Any

from opentelemetry import metrics as otel_metrics
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader
from opentelemetry.sdk.resources import Resource
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest


if TYPE_CHECKING:
    from collections.abc import Generator


_meter_holder: dict[str, Any] = {"meter": None, "provider": None}

_KIND_BY_TYPE = {Counter: "counter", Histogram: "histogram", Gauge: "gauge"}


def init_metrics(
    service_name: str = "search-bridge",
    resource_attributes: dict[str, str] | None = None,
    metric_readers: list[MetricReader] | None = None,
) -> MeterProvider:
    """Install the OpenTelemetry meter provider; later calls return the first one."""
    provider = _meter_holder.get("provider")
    if isinstance(provider, MeterProvider):
        return provider

    resource = Resource.create({"service.name": service_name, **(resource_attributes or {})})
    provider = MeterProvider(resource=resource, metric_readers=metric_readers or [])
    otel_metrics.set_meter_provider(provider)
    _meter_holder["provider"] = provider
    _meter_holder["meter"] = provider.get_meter(__name__)
    return provider


def _get_meter():
    if _meter_holder.get("meter") is None:
        init_metrics()
    return _meter_holder["meter"]


class _BoundMetric:
    def __init__(self, wrapper: MetricBridge, labels: dict[str, str]) -> None:
        self._wrapper = wrapper
        self._labels = labels

    def inc(self, amount: float = 1.0) -> None:
        self._wrapper.inc(self._labels, amount)

    def dec(self, amount: float = 1.0) -> None:
        self._wrapper.inc(self._labels, -amount)

    def observe(self, value: float) -> None:
        self._wrapper.observe(self._labels, value)

    def set(self, value: float) -> None:
        self._wrapper.set(self._labels, value)


class MetricBridge:
    """A Prometheus metric and its OpenTelemetry twin, updated together.

    The OTel instrument kind, name and description default to the
    Prometheus metric's type, name and help text. Gauges map to up-down
    counters, so ``set`` records the change since the last value seen for
    the same labels.
    """

    def __init__(
        self,
        prom_metric: Counter | Histogram | Gauge,
        *,
        otel_kind: str | None = None,
        otel_name: str | None = None,
        otel_description: str | None = None,
    ) -> None:
        self._prom_metric = prom_metric
        self._otel_kind = otel_kind or _KIND_BY_TYPE.get(type(prom_metric), "")
        self._otel_name = otel_name or prom_metric._name
        self._otel_description = otel_description or prom_metric._documentation
        self._otel_instrument = None
        self._last_values: dict[tuple[tuple[str, str], ...], float] = {}

    def labels(self, **labels: str) -> _BoundMetric:
        return _BoundMetric(self, labels)

    def _instrument(self):
        if self._otel_instrument is None:
            meter = _get_meter()
            create = {
                "counter": meter.create_counter,
                "histogram": meter.create_histogram,
                "gauge": meter.create_up_down_counter,
            }.get(self._otel_kind)
            if create is None:
                raise ValueError(f"Unknown metric kind: {self._otel_kind}")
            self._otel_instrument = create(self._otel_name, description=self._otel_description)
        return self._otel_instrument

    def inc(self, labels: dict[str, str], amount: float) -> None:
        self._prom_metric.labels(**labels).inc(amount)
        self._instrument().add(amount, labels)
        if self._otel_kind == "gauge":
            key = tuple(sorted(labels.items()))
            self._last_values[key] = self._last_values.get(key, 0.0) + amount

    def observe(self, labels: dict[str, str], value: float) -> None:
        self._prom_metric.labels(**labels).observe(value)
        self._instrument().record(value, labels)

    def set(self, labels: dict[str, str], value: float) -> None:
        self._prom_metric.labels(**labels).set(value)
        key = tuple(sorted(labels.items()))
        delta = value - self._last_values.get(key, 0.0)
        if delta:
            self._instrument().add(delta, labels)
        self._last_values[key] = value


CALLBACK_INVOCATIONS = MetricBridge(
    Counter(
        "search_bridge_callback_invocations_total",
        "Trampoline invocations by callback role",
        ["role"],
    )
)

# outcome: failed (the callback raised) or declined (a field processor returned None)
CALLBACK_FAILURES = MetricBridge(
    Counter(
        "search_bridge_callback_failures_total",
        "Callback calls that failed or declined, contained at the trampoline",
        ["role", "outcome"],
    )
)

# regime: transient (one engine call) or durable (retained by an engine object)
REGISTRATIONS_LIVE = MetricBridge(
    Gauge(
        "search_bridge_registrations_live",
        "Live callback registrations",
        ["role", "regime"],
    )
)

HANDLES_LIVE = MetricBridge(
    Gauge(
        "search_bridge_handles_live",
        "Live engine handles owned by the bridge",
        ["type"],
    )
)

SEARCH_LATENCY = MetricBridge(
    Histogram(
        "search_bridge_operation_latency_seconds",
        "Latency of engine operations driven through the bridge",
        ["operation"],
        buckets=(0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
    )
)


@contextmanager
def track_latency(histogram: MetricBridge, **labels: str) -> Generator[None, None, None]:
    """Observe the block's wall time, including when it raises."""
    start = time.perf_counter()
    try:
        yield
    finally:
        histogram.labels(**labels).observe(time.perf_counter() - start)


def get_metrics() -> bytes:
    """Prometheus text exposition of the default registry."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
