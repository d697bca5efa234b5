"""OpenTelemetry + Prometheus fallback wiring for the tracelog API.

Every recorder is a no-op until ``initialize`` has enabled at least one sink,
so the parse engine can call them unconditionally.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from tracelog import config

logger = logging.getLogger("tracelog.observability")

PARSES = "parses"
PARSE_LATENCY = "parse_latency"
PARSER_FAILURES = "parser_failures"
STEP_FAILURES = "step_failures"
TOKENS = "tokens"

# name, kind, unit, description, prometheus label names
_INSTRUMENTS: tuple[tuple[str, str, str, str, tuple[str, ...]], ...] = (
    (PARSES, "counter", "1", "Count of run-log parse operations", ("format", "result")),
    (PARSE_LATENCY, "histogram", "ms", "Latency of run-log parse operations", ("format",)),
    (PARSER_FAILURES, "counter", "1", "Count of payloads rejected before normalization", ("stage",)),
    (STEP_FAILURES, "counter", "1", "Steps that reported a failure with an exception message", ("step_type",)),
    (TOKENS, "counter", "1", "Token totals by model observed in parsed runs", ("model", "direction")),
)

_state: dict[str, Any] = {
    "initialized": False,
    "tracer": None,
    "trace_provider": None,
    "meter_provider": None,
    "instrumentor": None,
}
_otel: dict[str, Any] = {}
_prom: dict[str, Any] = {}


def _metric_name(name: str, kind: str, unit: str) -> str:
    if kind == "histogram":
        return f"tracelog_{name}_{unit}"
    return f"tracelog_{name}_total"


def _signal_endpoint(base_endpoint: str, signal_path: str) -> str:
    """Append an OTLP signal path (``/v1/traces``) unless the endpoint already has it."""
    endpoint = (base_endpoint or "").strip().rstrip("/")
    if not endpoint or endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/v1"):
        endpoint = endpoint[: -len("/v1")]
    return endpoint + signal_path


def _label(value: Any) -> str:
    return (str(value) if value is not None else "").strip() or "unknown"


def _token_count(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def _start_prometheus() -> None:
    try:
        from prometheus_client import Counter, Histogram, start_http_server

        start_http_server(config.PROM_PORT)
        for name, kind, unit, description, label_names in _INSTRUMENTS:
            factory = Histogram if kind == "histogram" else Counter
            _prom[name] = factory(_metric_name(name, kind, unit), description, list(label_names))
        logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Prometheus fallback not started: %s", exc)
        _prom.clear()


def _create_otel_instruments(meter: Any) -> None:
    for name, kind, unit, description, _ in _INSTRUMENTS:
        create = meter.create_histogram if kind == "histogram" else meter.create_counter
        _otel[name] = create(_metric_name(name, kind, unit), unit=unit, description=description)


def initialize(app: FastAPI | None = None) -> None:
    if _state["initialized"]:
        if _otel and app and _state["instrumentor"]:
            _state["instrumentor"].instrument_app(app)
        return
    _state["initialized"] = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (TRACELOG_OTEL_ENABLED=false)")
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

    service_name = config.OTEL_SERVICE_NAME or "tracelog-api"
    resource = Resource.create({"service.name": service_name, "service.namespace": "tracelog"})

    span_exporter = OTLPSpanExporter(endpoint=_signal_endpoint(config.OTEL_ENDPOINT, "/v1/traces") or None)
    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(span_exporter))
    trace.set_tracer_provider(trace_provider)

    metric_exporter = OTLPMetricExporter(endpoint=_signal_endpoint(config.OTEL_ENDPOINT, "/v1/metrics") or None)
    meter_provider = MeterProvider(
        resource=resource,
        metric_readers=[PeriodicExportingMetricReader(metric_exporter)],
    )
    metrics.set_meter_provider(meter_provider)

    _create_otel_instruments(metrics.get_meter("tracelog.api"))
    _state.update(
        tracer=trace.get_tracer("tracelog.api"),
        trace_provider=trace_provider,
        meter_provider=meter_provider,
        instrumentor=FastAPIInstrumentor(),
    )
    if app:
        _state["instrumentor"].instrument_app(app)

    if config.PROM_PORT > 0:
        _start_prometheus()

    logger.info("OpenTelemetry initialized (service=%s endpoint=%s)", service_name, config.OTEL_ENDPOINT)


def shutdown(app: FastAPI | None = None) -> None:
    if not _state["initialized"]:
        return
    instrumentor = _state["instrumentor"]
    try:
        if app and instrumentor:
            instrumentor.uninstrument_app(app)
    except Exception:
        logger.debug("FastAPI instrumentation already removed", exc_info=True)
    for key in ("meter_provider", "trace_provider"):
        provider = _state[key]
        if provider is None:
            continue
        try:
            provider.shutdown()
        except Exception:
            logger.debug("Telemetry provider %s shutdown failed", key, exc_info=True)
    _otel.clear()
    _state["tracer"] = None


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    tracer = _state["tracer"]
    if tracer is None:
        yield None
        return
    with tracer.start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


def _add(name: str, amount: float, labels: dict[str, str]) -> None:
    if amount <= 0:
        return
    instrument = _otel.get(name)
    if instrument is not None:
        instrument.add(amount, labels)
    prom_metric = _prom.get(name)
    if prom_metric is not None:
        prom_metric.labels(**labels).inc(amount)


def record_parse(log_format: str, result: str, duration_ms: float) -> None:
    format_label = _label(log_format)
    _add(PARSES, 1, {"format": format_label, "result": _label(result)})
    latency = max(0.0, float(duration_ms))
    if PARSE_LATENCY in _otel:
        _otel[PARSE_LATENCY].record(latency, {"format": format_label})
    if PARSE_LATENCY in _prom:
        _prom[PARSE_LATENCY].labels(format=format_label).observe(latency)


def record_parser_failure(stage: str) -> None:
    _add(PARSER_FAILURES, 1, {"stage": _label(stage)})


def record_step_failures(step_type: str, count: int = 1) -> None:
    _add(STEP_FAILURES, max(0, int(count)), {"step_type": _label(step_type)})


def record_token_usage(model: str, token_input: Any, token_output: Any) -> None:
    model_label = _label(model if model != "N/A" else "")
    _add(TOKENS, _token_count(token_input), {"model": model_label, "direction": "input"})
    _add(TOKENS, _token_count(token_output), {"model": model_label, "direction": "output"})
