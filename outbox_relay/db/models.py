"""
SQLAlchemy database models.
Defines the outbox_events table.
"""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Boolean, DateTime, Index, Integer, String, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from outbox_relay.constants import DEFAULT_EVENT_VERSION


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class OutboxEvent(Base):
    """
    A domain event awaiting asynchronous dispatch.

    Rows are written by producers inside their own business transaction
    and mutated only by the outbox processor. Rows are never deleted;
    exhausted events stay with ``last_error`` populated for audit.

    Key constraints:
    - processed flips to true exactly once
    - processing_attempts never decreases
    - idempotency_key is unique when present
    """

    __tablename__ = "outbox_events"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )

    # Which aggregate this event belongs to
    aggregate_id: Mapped[str] = mapped_column(String(255), nullable=False)
    aggregate_type: Mapped[str] = mapped_column(String(100), nullable=False)

    # Event details
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    event_version: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default=DEFAULT_EVENT_VERSION,
        server_default=DEFAULT_EVENT_VERSION,
    )
    payload: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)

    # Processing state
    processed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    processing_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default=text("0"),
    )
    last_attempt_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    last_error: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Metadata
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        # Claim polling: unprocessed rows in creation order
        Index("idx_outbox_processed", "processed", "created_at"),
        Index("idx_outbox_aggregate", "aggregate_id", "aggregate_type"),
        Index("idx_outbox_event_type", "event_type"),
        Index(
            "uq_outbox_idempotency_key",
            "idempotency_key",
            unique=True,
            postgresql_where=text("idempotency_key IS NOT NULL"),
        ),
    )

    def snapshot(self) -> dict[str, Any]:
        """JSON-compatible copy of the row, used for deadletter triage."""
        return {
            "id": str(self.id),
            "aggregate_id": self.aggregate_id,
            "aggregate_type": self.aggregate_type,
            "event_type": self.event_type,
            "event_version": self.event_version,
            "payload": self.payload,
            "processing_attempts": self.processing_attempts,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "created_by": self.created_by,
            "idempotency_key": self.idempotency_key,
        }

    def __repr__(self) -> str:
        return (
            f"OutboxEvent(id={self.id}, type={self.event_type}, "
            f"aggregate={self.aggregate_type}:{self.aggregate_id}, "
            f"processed={self.processed}, attempts={self.processing_attempts})"
        )
