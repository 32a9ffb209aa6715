"""
Structured logging on structlog.

Modules log through ``logging.getLogger(__name__)`` with fields in
``extra=``; structlog renders those stdlib records. Per-process fields
(processor or worker id) are bound once with ``bind_context``; per-event
and per-job fields are scoped with ``log_context`` so concurrent
dispatches in one batch do not leak ids into each other's lines.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from opentelemetry import trace

from outbox_relay.config import get_settings

_QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "redis")


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Attach trace_id/span_id while a span is recording."""
    current = trace.get_current_span()
    if current.is_recording():
        ctx = current.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def add_namespace(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Tag every record with the KV key namespace, so dev and prod lines never mix."""
    event_dict.setdefault("env", get_settings().app_env)
    return event_dict


def setup_logging() -> None:
    """
    Route all stdlib logging through structlog.

    Output is JSON unless ``LOG_FORMAT=console``.
    """
    settings = get_settings()

    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_trace_context,
        add_namespace,
        structlog.processors.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    if settings.log_format == "console":
        renderer: Any = structlog.dev.ConsoleRenderer(colors=True)
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_context(**kwargs: Any) -> None:
    """Bind fields (e.g. processor_id) to every later line in this context."""
    structlog.contextvars.bind_contextvars(**kwargs)


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Bind fields for the duration of one event dispatch or job run."""
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield
