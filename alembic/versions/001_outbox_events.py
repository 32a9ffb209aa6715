"""Outbox events table

Revision ID: 001
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "outbox_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("aggregate_id", sa.String(255), nullable=False),
        sa.Column("aggregate_type", sa.String(100), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("event_version", sa.String(10), nullable=False, server_default="1.0"),
        sa.Column("payload", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("processed", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.String(1000), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.Column("idempotency_key", sa.String(255), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("processing_attempts >= 0", name="ck_outbox_attempts_non_negative"),
    )

    # Claim polling scans unprocessed rows in creation order
    op.create_index("idx_outbox_processed", "outbox_events", ["processed", "created_at"])
    op.create_index("idx_outbox_aggregate", "outbox_events", ["aggregate_id", "aggregate_type"])
    op.create_index("idx_outbox_event_type", "outbox_events", ["event_type"])

    op.execute("""
        CREATE UNIQUE INDEX uq_outbox_idempotency_key
        ON outbox_events (idempotency_key)
        WHERE idempotency_key IS NOT NULL
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS uq_outbox_idempotency_key")
    op.drop_index("idx_outbox_event_type")
    op.drop_index("idx_outbox_aggregate")
    op.drop_index("idx_outbox_processed")

    op.drop_table("outbox_events")
