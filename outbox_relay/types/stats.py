"""
Observability snapshots returned by the processor and the job queue.
"""

from pydantic import BaseModel


class OutboxStats(BaseModel):
    """Counts computed from the outbox table."""

    pending: int = 0
    processed: int = 0
    failed: int = 0
    avg_processing_time_seconds: float = 0.0


class QueueStats(BaseModel):
    """Sizes of the three collections of one named queue."""

    ready: int = 0
    scheduled: int = 0
    dead: int = 0
