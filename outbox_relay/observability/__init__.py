"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from outbox_relay.observability.logging import bind_context, log_context, setup_logging
from outbox_relay.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from outbox_relay.observability.tracing import record_outcome, setup_tracing, span

__all__ = [
    "setup_logging",
    "bind_context",
    "log_context",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "span",
    "record_outcome",
]
