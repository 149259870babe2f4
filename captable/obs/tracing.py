"""OpenTelemetry wiring for the ownership API and its persistence calls."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.trace import Span
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

_propagator = TraceContextTextMapPropagator()


def _span_processor(endpoint: str | None) -> SpanProcessor:
    if endpoint:
        return BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True))
    return SimpleSpanProcessor(ConsoleSpanExporter())


def _create_tracer_provider(service_name: str, endpoint: str | None) -> TracerProvider:
    provider = TracerProvider(resource=Resource.create({SERVICE_NAME: service_name}))
    provider.add_span_processor(_span_processor(endpoint))
    return provider


def initialise_tracing(
    *,
    service_name: str,
    endpoint: str | None = None,
    instrument_logging: bool = True,
) -> None:
    """Install the global tracer provider once per service name.

    Repeated application factories (tests build several) reuse the provider
    that is already in place.
    """

    current = trace.get_tracer_provider()
    if isinstance(current, TracerProvider) and current.resource.attributes.get(SERVICE_NAME) == service_name:
        return

    trace.set_tracer_provider(_create_tracer_provider(service_name, endpoint))
    if instrument_logging:
        LoggingInstrumentor().instrument(set_logging_format=True)


def instrument_fastapi_app(app: FastAPI) -> None:
    FastAPIInstrumentor().instrument_app(app)


def instrument_sqlalchemy_engine(engine: Any) -> None:
    """Trace audit store statements issued through ``engine``."""
    SQLAlchemyInstrumentor().instrument(engine=engine)


def outbound_headers(headers: dict[str, str]) -> dict[str, str]:
    """Copy ``headers`` and add the current ``traceparent`` for the persistence service."""

    carrier = dict(headers)
    _propagator.inject(carrier)
    return carrier


@contextmanager
def traced(name: str, **attributes: Any) -> Iterator[Span]:
    """Run the block inside a span; ``None`` attributes are left off."""

    tracer = trace.get_tracer(__name__)
    with tracer.start_as_current_span(name) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


__all__ = [
    "initialise_tracing",
    "instrument_fastapi_app",
    "instrument_sqlalchemy_engine",
    "outbound_headers",
    "traced",
]
