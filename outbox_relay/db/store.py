"""
Session-scoped facade over OutboxRepository for the processor.

Each operation runs in its own short transaction, so a claim is committed
before any handler runs and every outcome is persisted independently.
"""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from outbox_relay.db.connection import get_session_context
from outbox_relay.db.models import OutboxEvent
from outbox_relay.db.repository import OutboxRepository
from outbox_relay.types.events import NewOutboxEvent
from outbox_relay.types.stats import OutboxStats

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class EventStore:
    """Transactional outbox operations used by the processor and the API."""

    def __init__(self, session_factory: SessionFactory | None = None):
        self._session_factory = session_factory or get_session_context

    async def append(self, event: NewOutboxEvent) -> tuple[OutboxEvent, bool]:
        """Validate and append one event in its own transaction."""
        row = event.to_row()
        async with self._session_factory() as session:
            return await OutboxRepository(session).append(**row)

    async def claim_batch(
        self,
        batch_size: int,
        visibility_timeout_seconds: int,
    ) -> Sequence[OutboxEvent]:
        async with self._session_factory() as session:
            return await OutboxRepository(session).claim_batch(
                batch_size, visibility_timeout_seconds
            )

    async def mark_succeeded(self, event_id: UUID) -> bool:
        async with self._session_factory() as session:
            return await OutboxRepository(session).mark_succeeded(event_id)

    async def mark_failed(self, event_id: UUID, error: str, give_up: bool) -> bool:
        async with self._session_factory() as session:
            return await OutboxRepository(session).mark_failed(event_id, error, give_up)

    async def get_stats(self) -> OutboxStats:
        async with self._session_factory() as session:
            return await OutboxRepository(session).get_stats()

    async def list_failed(self, limit: int = 50) -> Sequence[OutboxEvent]:
        async with self._session_factory() as session:
            return await OutboxRepository(session).list_failed(limit)
