"""
Database module.
Contains the connection lifecycle, the outbox model and its repository.
"""

from outbox_relay.db.connection import (
    close_db,
    get_engine,
    get_session_context,
    init_db,
    ping_db,
)
from outbox_relay.db.models import Base, OutboxEvent
from outbox_relay.db.repository import OutboxRepository
from outbox_relay.db.store import EventStore

__all__ = [
    "get_session_context",
    "get_engine",
    "init_db",
    "close_db",
    "ping_db",
    "Base",
    "OutboxEvent",
    "OutboxRepository",
    "EventStore",
]
