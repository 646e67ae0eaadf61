"""Tracing and sync metrics: OpenTelemetry OTLP export, Prometheus scrape fallback.

Both exporters are optional extras (``pip install lifesync[observability]``)
and are imported only when enabled. With neither enabled every helper here is
a no-op, so call sites never check configuration themselves.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from fastapi import FastAPI

from lifesync import config

logger = logging.getLogger("lifesync.observability")


@dataclass(frozen=True)
class _Metric:
    kind: str  # "counter" | "histogram"
    unit: str
    description: str
    labels: tuple[str, ...]


_METRICS: dict[str, _Metric] = {
    "lifesync_sync_runs_total": _Metric(
        "counter", "1", "Count of sync runs by trigger and outcome", ("run_type", "result"),
    ),
    "lifesync_sync_run_duration_ms": _Metric(
        "histogram", "ms", "Wall-clock duration of sync runs", ("run_type",),
    ),
    "lifesync_sync_issues_recorded_total": _Metric(
        "counter", "1", "New issues written to the ledger by layer and type", ("layer", "type"),
    ),
    "lifesync_reasoning_calls_total": _Metric(
        "counter", "1", "Reasoning service calls by layer and outcome", ("layer", "result"),
    ),
}


@dataclass
class _State:
    initialized: bool = False
    tracer: Any = None
    trace_provider: Any = None
    meter_provider: Any = None
    instrumentor: Any = None
    otel: dict[str, Any] = field(default_factory=dict)
    prom: dict[str, Any] = field(default_factory=dict)


_state = _State()


def _otlp_endpoint(signal: str) -> str | None:
    base = (config.OTEL_ENDPOINT or "").strip().rstrip("/")
    if not base:
        return None
    if base.endswith(f"/v1/{signal}"):
        return base
    if base.endswith("/v1"):
        return f"{base}/{signal}"
    return f"{base}/v1/{signal}"


def _labels(metric: str, **values: Any) -> dict[str, str]:
    return {name: str(values.get(name) or "").strip() or "unknown" for name in _METRICS[metric].labels}


def _init_otel(app: FastAPI | None) -> None:
    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable, install the observability extra: %s", exc)
        return

    resource = Resource.create({"service.name": config.OTEL_SERVICE_NAME, "service.namespace": "lifesync"})

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=_otlp_endpoint("traces"))))
    trace.set_tracer_provider(trace_provider)

    reader = PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=_otlp_endpoint("metrics")))
    meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("lifesync.sync")

    for name, metric in _METRICS.items():
        create = meter.create_counter if metric.kind == "counter" else meter.create_histogram
        _state.otel[name] = create(name, unit=metric.unit, description=metric.description)

    _state.trace_provider = trace_provider
    _state.meter_provider = meter_provider
    _state.tracer = trace.get_tracer("lifesync.sync")
    _state.instrumentor = FastAPIInstrumentor()
    if app:
        _state.instrumentor.instrument_app(app)
    logger.info("OpenTelemetry initialized (service=%s endpoint=%s)", config.OTEL_SERVICE_NAME, config.OTEL_ENDPOINT)


def _init_prometheus() -> None:
    try:
        from prometheus_client import Counter, Histogram, start_http_server
    except ImportError as exc:
        logger.warning("prometheus_client unavailable, install the observability extra: %s", exc)
        return
    try:
        start_http_server(config.PROM_PORT)
    except OSError as exc:
        logger.warning("Prometheus metrics server not started on port %s: %s", config.PROM_PORT, exc)
        return
    for name, metric in _METRICS.items():
        factory = Counter if metric.kind == "counter" else Histogram
        _state.prom[name] = factory(name, metric.description, list(metric.labels))
    logger.info("Prometheus metrics server listening on port %s", config.PROM_PORT)


def initialize(app: FastAPI | None = None) -> None:
    if _state.initialized:
        if app and _state.instrumentor:
            _state.instrumentor.instrument_app(app)
        return
    _state.initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (LIFESYNC_OTEL_ENABLED=false)")
        return
    _init_otel(app)
    if config.PROM_PORT > 0:
        _init_prometheus()


def shutdown(app: FastAPI | None = None) -> None:
    if app and _state.instrumentor:
        _state.instrumentor.uninstrument_app(app)
    for provider in (_state.meter_provider, _state.trace_provider):
        if provider is None:
            continue
        try:
            provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Telemetry provider shutdown failed: %s", exc)
    _state.tracer = None
    _state.trace_provider = None
    _state.meter_provider = None
    _state.otel.clear()


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if _state.tracer is None:
        yield None
        return
    with _state.tracer.start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


def _emit(name: str, amount: float, **values: Any) -> None:
    labels = _labels(name, **values)
    instrument = _state.otel.get(name)
    if instrument is not None:
        if _METRICS[name].kind == "counter":
            instrument.add(amount, labels)
        else:
            instrument.record(amount, labels)
    prom = _state.prom.get(name)
    if prom is not None:
        child = prom.labels(**labels)
        if _METRICS[name].kind == "counter":
            child.inc(amount)
        else:
            child.observe(amount)


def record_sync_run(run_type: str, result: str, duration_ms: float) -> None:
    _emit("lifesync_sync_runs_total", 1, run_type=run_type, result=result)
    _emit("lifesync_sync_run_duration_ms", max(0.0, float(duration_ms)), run_type=run_type)


def record_issues(layer: int, issue_type: str, count: int) -> None:
    if count > 0:
        _emit("lifesync_sync_issues_recorded_total", int(count), layer=layer, type=issue_type)


def record_reasoning_call(layer: int, result: str) -> None:
    _emit("lifesync_reasoning_calls_total", 1, layer=layer, result=result)
