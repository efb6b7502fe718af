"""OpenTelemetry tracing helpers for publishers and consumers.

Spans are only exported once `start_tracing` installs a provider; until then
the OpenTelemetry API hands out no-op tracers, so library code can always
create spans.
"""

from __future__ import annotations

from opentelemetry import trace  # type: ignore
from opentelemetry.sdk.resources import Resource  # type: ignore
from opentelemetry.sdk.trace import TracerProvider  # type: ignore
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor  # type: ignore
from opentelemetry.trace import Tracer  # type: ignore

TRACER_NAME = "logical-queues"


def start_tracing(service_name: str = TRACER_NAME) -> Tracer:
    """Initialize a TracerProvider exporting spans to the console."""
    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    return trace.get_tracer(service_name)


def get_tracer(service_name: str = TRACER_NAME) -> Tracer:
    return trace.get_tracer(service_name)


def record_failure(span, error: BaseException) -> None:
    """Mark ``span`` as failed with ``error`` attached."""
    span.record_exception(error)
    span.set_attribute("error", True)
    code = getattr(error, "code", None)
    if code is not None:
        span.set_attribute("error.code", str(code))
