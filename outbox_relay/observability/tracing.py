"""
OpenTelemetry tracing for claims, event dispatch and job execution.

Spans are always opened through ``span``; until ``setup_tracing`` runs the
global provider is a no-op one, so the processor and the worker trace
unconditionally.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, Status, StatusCode, Tracer

from outbox_relay import __version__
from outbox_relay.config import get_settings
from outbox_relay.types.job import HandlerOutcome

_tracer: Tracer | None = None


def setup_tracing(enable_console_export: bool = False) -> Tracer:
    """
    Install a tracer provider exporting over OTLP/gRPC.

    Args:
        enable_console_export: Also print finished spans, for local debugging.

    Returns:
        Tracer: The tracer used by ``span``.
    """
    global _tracer

    settings = get_settings()

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.otel_service_name,
                "service.version": __version__,
                "deployment.environment": settings.app_env,
            }
        )
    )
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint, insecure=True)
        )
    )
    if enable_console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer("outbox_relay", __version__)
    return _tracer


def instrument_fastapi(app: Any) -> None:
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine: Any) -> None:
    """Instrument a SQLAlchemy engine (pass ``AsyncEngine.sync_engine``)."""
    SQLAlchemyInstrumentor().instrument(engine=engine)


def get_tracer() -> Tracer:
    if _tracer is None:
        return trace.get_tracer("outbox_relay", __version__)
    return _tracer


@contextmanager
def span(name: str, **attributes: Any) -> Iterator[Span]:
    """
    Open a span as the current span, with the non-None attributes set.

    Example:
        with span(SPAN_EXECUTE_JOB, job_id=message.id, job_type=message.type) as s:
            outcome = await execute_job(message)
            record_outcome(s, outcome)
    """
    with get_tracer().start_as_current_span(name) as current:
        for key, value in attributes.items():
            if value is not None:
                current.set_attribute(key, value)
        yield current


def record_outcome(current: Span, outcome: HandlerOutcome) -> None:
    """Tag a span with a handler outcome; failures mark the span as errored."""
    current.set_attribute("outcome", outcome.kind.value)
    if not outcome.succeeded:
        current.set_status(Status(StatusCode.ERROR, outcome.error))
