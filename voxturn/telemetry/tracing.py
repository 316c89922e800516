from __future__ import annotations

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from voxturn import __version__
from voxturn.telemetry.logging import get_logger

ATTRIBUTE_PREFIX = "voxturn."

_configured = False


def configure_tracing(service_name: str, endpoint: str | None) -> None:
    """Export spans over OTLP/HTTP; without an endpoint every tracer stays a no-op."""
    global _configured
    if _configured or endpoint is None:
        return

    provider = TracerProvider(resource=Resource.create({SERVICE_NAME: service_name, SERVICE_VERSION: __version__}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    get_logger(__name__).info("tracing.enabled", endpoint=endpoint, service_name=service_name)
    _configured = True


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def annotate(span: trace.Span, **attributes: str | int | float | bool | None) -> None:
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(ATTRIBUTE_PREFIX + key, value)


__all__ = ["configure_tracing", "get_tracer", "annotate"]
