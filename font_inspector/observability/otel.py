"""OpenTelemetry + Prometheus fallback wiring for the Font Inspector backend."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from font_inspector import config

logger = logging.getLogger("fontinspector.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_inspection_counter: Any | None = None
_inspection_latency_hist: Any | None = None
_link_counter: Any | None = None
_rebuild_counter: Any | None = None

_prom_enabled = False
_prom_inspection_counter: Any | None = None
_prom_inspection_latency_hist: Any | None = None
_prom_link_counter: Any | None = None
_prom_rebuild_counter: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def _prom_labels(**values: str) -> dict[str, str]:
    return {key: (value or "").strip() or "unknown" for key, value in values.items()}


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _inspection_counter, _inspection_latency_hist, _link_counter, _rebuild_counter
    global _prom_enabled
    global _prom_inspection_counter, _prom_inspection_latency_hist, _prom_link_counter, _prom_rebuild_counter

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (FONTINSPECTOR_OTEL_ENABLED=false)")
        return

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
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "font-inspector-backend"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "fontinspector",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer("fontinspector.backend")

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("fontinspector.backend")

    _inspection_counter = meter.create_counter(
        "fontinspector_inspections_total",
        unit="1",
        description="Inspections processed, by result",
    )
    _inspection_latency_hist = meter.create_histogram(
        "fontinspector_inspection_latency_ms",
        unit="ms",
        description="Wall time of a single page inspection",
    )
    _link_counter = meter.create_counter(
        "fontinspector_link_operations_total",
        unit="1",
        description="Project/inspection link maintenance calls, by kind and result",
    )
    _rebuild_counter = meter.create_counter(
        "fontinspector_link_rebuilds_total",
        unit="1",
        description="Link rebuild runs",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = tracer
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, Histogram, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_enabled = True
            _prom_inspection_counter = Counter(
                "fontinspector_inspections_total",
                "Inspections processed, by result",
                ["result"],
            )
            _prom_inspection_latency_hist = Histogram(
                "fontinspector_inspection_latency_ms",
                "Wall time of a single page inspection",
                ["result"],
            )
            _prom_link_counter = Counter(
                "fontinspector_link_operations_total",
                "Project/inspection link maintenance calls, by kind and result",
                ["kind", "result"],
            )
            _prom_rebuild_counter = Counter(
                "fontinspector_link_rebuilds_total",
                "Link rebuild runs",
                ["result", "mode"],
            )
            logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Prometheus fallback not started: %s", exc)
            _prom_enabled = False

    logger.info(
        "OpenTelemetry initialized (service=%s endpoint=%s)",
        service_name,
        config.OTEL_ENDPOINT,
    )


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    try:
        if app and _fastapi_instrumentor:
            _fastapi_instrumentor.uninstrument_app(app)
    except Exception as exc:  # noqa: BLE001
        logger.debug("FastAPI uninstrument failed: %s", exc)
    for provider in (_meter_provider, _trace_provider):
        try:
            if provider is not None:
                provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Telemetry provider shutdown failed: %s", exc)
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_inspection(result: str, duration_ms: float) -> None:
    labels = {"result": result or "unknown"}
    if _enabled and _inspection_counter is not None:
        _inspection_counter.add(1, labels)
    if _enabled and _inspection_latency_hist is not None:
        _inspection_latency_hist.record(max(0.0, float(duration_ms)), labels)
    if _prom_enabled and _prom_inspection_counter is not None:
        _prom_inspection_counter.labels(**_prom_labels(result=result)).inc()
    if _prom_enabled and _prom_inspection_latency_hist is not None:
        _prom_inspection_latency_hist.labels(**_prom_labels(result=result)).observe(max(0.0, float(duration_ms)))


def record_link_operation(kind: str, result: str) -> None:
    labels = {"kind": kind or "unknown", "result": result or "unknown"}
    if _enabled and _link_counter is not None:
        _link_counter.add(1, labels)
    if _prom_enabled and _prom_link_counter is not None:
        _prom_link_counter.labels(**_prom_labels(kind=kind, result=result)).inc()


def record_rebuild(result: str, *, dry_run: bool = False) -> None:
    mode = "dry_run" if dry_run else "apply"
    labels = {"result": result or "unknown", "mode": mode}
    if _enabled and _rebuild_counter is not None:
        _rebuild_counter.add(1, labels)
    if _prom_enabled and _prom_rebuild_counter is not None:
        _prom_rebuild_counter.labels(**_prom_labels(result=result, mode=mode)).inc()
