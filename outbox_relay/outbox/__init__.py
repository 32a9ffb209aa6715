"""
Outbox module.
Contains the event writer, the default handlers and the processor.
"""

from outbox_relay.outbox.handlers import EventHandler, default_handlers
from outbox_relay.outbox.processor import OutboxProcessor, evaluate_health
from outbox_relay.outbox.scheduler import PollScheduler
from outbox_relay.outbox.writer import append_event, append_events

__all__ = [
    "append_event",
    "append_events",
    "EventHandler",
    "default_handlers",
    "OutboxProcessor",
    "PollScheduler",
    "evaluate_health",
]
