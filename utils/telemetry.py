"""OpenTelemetry bootstrap and span helpers for wizard operations."""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Dict, Iterator, Mapping

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter
from opentelemetry.sdk.trace.sampling import (
    ALWAYS_OFF,
    ALWAYS_ON,
    ParentBased,
    Sampler,
    TraceIdRatioBased,
)

LOGGER = logging.getLogger("notary_intake.telemetry")

_INITIALISED = False
_TRACER_NAME = "notary_intake.wizard"


def _parse_headers(raw: str | None) -> Dict[str, str]:
    """Parse comma-separated ``key=value`` OTLP headers."""

    headers: Dict[str, str] = {}
    if not raw:
        return headers
    for fragment in raw.split(","):
        key, sep, value = fragment.partition("=")
        if sep and key.strip():
            headers[key.strip()] = value.strip()
    return headers


def _coerce_ratio(raw: str, *, default: float) -> float:
    """Convert ``raw`` to a float ratio within [0.0, 1.0]."""

    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        LOGGER.warning("Invalid OTEL_TRACES_SAMPLER_ARG '%s'; using default %.2f", raw, default)
        return default
    return max(0.0, min(1.0, value))


def _build_sampler() -> Sampler:
    sampler_name = os.getenv("OTEL_TRACES_SAMPLER", "").strip().lower()
    ratio = _coerce_ratio(os.getenv("OTEL_TRACES_SAMPLER_ARG", "").strip(), default=1.0)
    if sampler_name in {"", "parentbased_traceidratio"}:
        return ParentBased(TraceIdRatioBased(ratio))
    if sampler_name == "traceidratio":
        return TraceIdRatioBased(ratio)
    if sampler_name == "always_on":
        return ALWAYS_ON
    if sampler_name == "always_off":
        return ALWAYS_OFF
    LOGGER.warning("Unknown OTEL_TRACES_SAMPLER '%s'; defaulting to parentbased_traceidratio", sampler_name)
    return ParentBased(TraceIdRatioBased(ratio))


def _create_otlp_exporter() -> SpanExporter | None:
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "").strip()
    if not endpoint:
        LOGGER.info("OTLP endpoint not configured; spans stay local")
        return None
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

    timeout_raw = os.getenv("OTEL_EXPORTER_OTLP_TIMEOUT", "").strip()
    timeout: int | None = None
    if timeout_raw:
        try:
            timeout = int(float(timeout_raw))
        except ValueError:
            LOGGER.warning("Invalid OTEL_EXPORTER_OTLP_TIMEOUT '%s'; ignoring", timeout_raw)
    return OTLPSpanExporter(
        endpoint=endpoint,
        headers=_parse_headers(os.getenv("OTEL_EXPORTER_OTLP_HEADERS")) or None,
        timeout=timeout,
    )


def setup_tracing(*, force: bool = False) -> None:
    """Configure the global tracer provider if an OTLP endpoint is set."""

    global _INITIALISED
    if _INITIALISED and not force:
        return
    if os.getenv("OTEL_TRACES_ENABLED", "1").strip().lower() in {"0", "false", "off"}:
        LOGGER.info("Telemetry disabled via OTEL_TRACES_ENABLED")
        return
    exporter = _create_otlp_exporter()
    if exporter is None:
        return
    service_name = os.getenv("OTEL_SERVICE_NAME", "notary-intake")
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}), sampler=_build_sampler())
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    _INITIALISED = True
    LOGGER.info("OpenTelemetry tracing initialised for service '%s'", service_name)


@contextmanager
def traced_operation(name: str, attributes: Mapping[str, str | int | float | bool] | None = None) -> Iterator[None]:
    """Wrap a wizard operation (sync, account, checkout) in a span."""

    tracer = trace.get_tracer(_TRACER_NAME)
    with tracer.start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            span.set_attribute(f"wizard.{key}", value)
        yield


__all__ = ["setup_tracing", "traced_operation"]
