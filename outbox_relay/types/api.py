"""
API request and response type definitions.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from outbox_relay.types.stats import OutboxStats, QueueStats


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Overall health status")
    version: str = Field(..., description="API version")
    database: str = Field(..., description="Database connection status")
    kv: str = Field(..., description="Key/value store connection status")
    timestamp: datetime = Field(..., description="Current server time")


class OutboxHealth(BaseModel):
    """Derived health of the outbox backlog."""

    healthy: bool
    alerts: list[str] = []


class OutboxStatusResponse(BaseModel):
    """Outbox processor status."""

    success: bool = True
    running: bool
    stats: OutboxStats
    health: OutboxHealth


class FailedEventResponse(BaseModel):
    """An outbox event that was given up on."""

    id: UUID
    aggregate_id: str
    aggregate_type: str
    event_type: str
    processing_attempts: int
    last_error: str | None = None
    created_at: datetime
    processed_at: datetime | None = None


class FailedEventsResponse(BaseModel):
    """Failed outbox events, most recent first."""

    events: list[FailedEventResponse]


class ProcessorControlRequest(BaseModel):
    """Start or stop the outbox processor."""

    action: str = Field(..., description='Either "start" or "stop"')


class ProcessorControlResponse(BaseModel):
    """Result of a processor control action."""

    success: bool = True
    message: str
    running: bool


class QueueStatsResponse(BaseModel):
    """Queue sizes for one named queue."""

    queue: str
    stats: QueueStats


class ProcessQueueResponse(BaseModel):
    """Result of one queue processing run."""

    processed: int = 0
    failed: int = 0
    flushed: int = 0
    skipped: bool = False
    message: str | None = None


class DeadletterListResponse(BaseModel):
    """Deadlettered messages of one queue, oldest first."""

    queue: str
    messages: list[dict[str, Any]]


class RetryDeadletterResponse(BaseModel):
    """Result of moving deadlettered messages back to ready."""

    queue: str
    retried: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str = Field(..., description="Error message")
    detail: str | None = Field(default=None, description="Additional error details")
