"""
Outbox repository for database operations.
Implements the data access patterns for the event outbox.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import and_, select, text, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from outbox_relay.constants import DEFAULT_EVENT_VERSION, LAST_ERROR_MAX_LENGTH
from outbox_relay.db.models import OutboxEvent
from outbox_relay.types.stats import OutboxStats

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _truncate_error(error: str) -> str:
    return error[:LAST_ERROR_MAX_LENGTH]


class OutboxRepository:
    """
    Repository for outbox database operations.

    Works on a caller-supplied session and never commits, so appends join
    the caller's business transaction.

    Implements atomic operations for:
    - Event append with idempotency
    - Batch claims with FOR UPDATE SKIP LOCKED
    - Success/failure transitions
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    async def append(
        self,
        aggregate_id: str,
        aggregate_type: str,
        event_type: str,
        payload: dict[str, Any],
        idempotency_key: str | None = None,
        event_version: str = DEFAULT_EVENT_VERSION,
        created_by: str | None = None,
    ) -> tuple[OutboxEvent, bool]:
        """
        Insert a new event.

        A repeated idempotency key returns the existing event instead of
        inserting (INSERT ... ON CONFLICT DO NOTHING).

        Returns:
            Tuple of (OutboxEvent, created).
        """
        stmt = insert(OutboxEvent).values(
            aggregate_id=aggregate_id,
            aggregate_type=aggregate_type,
            event_type=event_type,
            event_version=event_version,
            payload=payload,
            processed=False,
            processing_attempts=0,
            idempotency_key=idempotency_key,
            created_by=created_by,
        )
        if idempotency_key is not None:
            stmt = stmt.on_conflict_do_nothing(
                index_elements=["idempotency_key"],
                index_where=text("idempotency_key IS NOT NULL"),
            )
        stmt = stmt.returning(OutboxEvent)

        result = await self._session.execute(stmt)
        event = result.scalar_one_or_none()

        if event is not None:
            logger.debug(
                "Appended outbox event",
                extra={"event_id": str(event.id), "event_type": event_type},
            )
            return event, True

        existing = await self.get_event_by_idempotency_key(idempotency_key)
        if existing is None:
            raise RuntimeError("Outbox event should exist after conflict")

        logger.info(
            "Returned existing outbox event (idempotent)",
            extra={"event_id": str(existing.id), "idempotency_key": idempotency_key},
        )
        return existing, False

    async def get_event(self, event_id: UUID) -> OutboxEvent | None:
        """Get an event by ID."""
        result = await self._session.execute(
            select(OutboxEvent).where(OutboxEvent.id == event_id)
        )
        return result.scalar_one_or_none()

    async def get_event_by_idempotency_key(self, idempotency_key: str | None) -> OutboxEvent | None:
        """Get an event by its idempotency key."""
        if idempotency_key is None:
            return None
        result = await self._session.execute(
            select(OutboxEvent).where(OutboxEvent.idempotency_key == idempotency_key)
        )
        return result.scalar_one_or_none()

    async def claim_batch(
        self,
        batch_size: int,
        visibility_timeout_seconds: int,
    ) -> Sequence[OutboxEvent]:
        """
        Claim due events using FOR UPDATE SKIP LOCKED.

        This is the critical path for horizontal scaling. A single
        statement selects unprocessed events that were never attempted or
        whose last attempt is older than the visibility timeout, skips
        rows locked by concurrent claimants, and records the attempt
        (processing_attempts + 1, last_attempt_at = now) before any
        handler runs.

        Args:
            batch_size: Maximum events to claim.
            visibility_timeout_seconds: Reclaim window for attempted events.

        Returns:
            Claimed events in created_at order, with the incremented
            attempt count.
        """
        now = _utcnow()
        visible_before = now - timedelta(seconds=visibility_timeout_seconds)

        sql = text("""
            UPDATE outbox_events
            SET
                processing_attempts = processing_attempts + 1,
                last_attempt_at = :now
            WHERE id IN (
                SELECT id FROM outbox_events
                WHERE processed = false
                AND (last_attempt_at IS NULL OR last_attempt_at < :visible_before)
                ORDER BY created_at ASC
                LIMIT :batch_size
                FOR UPDATE SKIP LOCKED
            )
            RETURNING *
        """)

        result = await self._session.execute(
            sql,
            {
                "now": now,
                "visible_before": visible_before,
                "batch_size": batch_size,
            },
        )
        rows = result.fetchall()

        if rows:
            logger.info(f"Claimed {len(rows)} outbox events", extra={"event_count": len(rows)})

        events = [
            OutboxEvent(
                id=row.id,
                aggregate_id=row.aggregate_id,
                aggregate_type=row.aggregate_type,
                event_type=row.event_type,
                event_version=row.event_version,
                payload=row.payload,
                processed=row.processed,
                processed_at=row.processed_at,
                processing_attempts=row.processing_attempts,
                last_attempt_at=row.last_attempt_at,
                last_error=row.last_error,
                created_at=row.created_at,
                created_by=row.created_by,
                idempotency_key=row.idempotency_key,
            )
            for row in rows
        ]
        # UPDATE ... RETURNING does not preserve the subquery order
        events.sort(key=lambda e: e.created_at)
        return events

    async def mark_succeeded(self, event_id: UUID) -> bool:
        """
        Mark an event as processed and clear any previous error.

        Returns:
            True if the event transitioned.
        """
        stmt = (
            update(OutboxEvent)
            .where(and_(OutboxEvent.id == event_id, OutboxEvent.processed.is_(False)))
            .values(processed=True, processed_at=_utcnow(), last_error=None)
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def mark_failed(self, event_id: UUID, error: str, give_up: bool) -> bool:
        """
        Record a failed attempt.

        Args:
            event_id: The event UUID.
            error: Error message, truncated to the column size.
            give_up: If True the event is marked processed with the error
                kept; otherwise it stays pending for reclaim.

        Returns:
            True if the event transitioned.
        """
        values: dict[str, Any] = {"last_error": _truncate_error(error)}
        if give_up:
            values["processed"] = True
            values["processed_at"] = _utcnow()

        stmt = (
            update(OutboxEvent)
            .where(and_(OutboxEvent.id == event_id, OutboxEvent.processed.is_(False)))
            .values(**values)
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def list_failed(self, limit: int = 50) -> Sequence[OutboxEvent]:
        """List events that were given up on, most recent first."""
        stmt = (
            select(OutboxEvent)
            .where(
                and_(
                    OutboxEvent.processed.is_(True),
                    OutboxEvent.last_error.is_not(None),
                )
            )
            .order_by(OutboxEvent.processed_at.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def get_stats(self) -> OutboxStats:
        """Compute pending/processed/failed counts and average latency."""
        result = await self._session.execute(text("""
            SELECT
                COUNT(*) FILTER (WHERE processed = false) AS pending,
                COUNT(*) FILTER (WHERE processed = true AND last_error IS NULL) AS processed,
                COUNT(*) FILTER (WHERE processed = true AND last_error IS NOT NULL) AS failed,
                AVG(EXTRACT(EPOCH FROM (processed_at - created_at)))
                    FILTER (WHERE processed_at IS NOT NULL) AS avg_processing_time_seconds
            FROM outbox_events
        """))
        row = result.one()

        return OutboxStats(
            pending=row.pending or 0,
            processed=row.processed or 0,
            failed=row.failed or 0,
            avg_processing_time_seconds=float(row.avg_processing_time_seconds or 0),
        )
