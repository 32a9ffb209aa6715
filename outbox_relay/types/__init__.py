"""
Type definitions for the delivery core.
Contains payload models, queue messages, outcomes and API types.
"""

from outbox_relay.types.api import (
    DeadletterListResponse,
    ErrorResponse,
    FailedEventResponse,
    FailedEventsResponse,
    HealthResponse,
    OutboxHealth,
    OutboxStatusResponse,
    ProcessorControlRequest,
    ProcessorControlResponse,
    ProcessQueueResponse,
    QueueStatsResponse,
    RetryDeadletterResponse,
)
from outbox_relay.types.events import (
    EventPayload,
    NewOutboxEvent,
    QRGenerationRequestedPayload,
    ShipStationSyncRequestedPayload,
    WorkspaceCreatedPayload,
    register_event_payload,
    validate_event_payload,
)
from outbox_relay.types.job import (
    AlertJob,
    DeadLetterJob,
    HandlerOutcome,
    JobPayload,
    QRGenerationJob,
    QueueMessage,
    TagSyncJob,
    WebhookJob,
    register_job_payload,
    validate_job_payload,
)
from outbox_relay.types.stats import OutboxStats, QueueStats

__all__ = [
    # API types
    "HealthResponse",
    "OutboxHealth",
    "OutboxStatusResponse",
    "ProcessorControlRequest",
    "ProcessorControlResponse",
    "QueueStatsResponse",
    "ProcessQueueResponse",
    "DeadletterListResponse",
    "RetryDeadletterResponse",
    "ErrorResponse",
    "FailedEventResponse",
    "FailedEventsResponse",
    # Event payloads
    "EventPayload",
    "NewOutboxEvent",
    "WorkspaceCreatedPayload",
    "QRGenerationRequestedPayload",
    "ShipStationSyncRequestedPayload",
    "register_event_payload",
    "validate_event_payload",
    # Job types
    "QueueMessage",
    "JobPayload",
    "QRGenerationJob",
    "AlertJob",
    "WebhookJob",
    "TagSyncJob",
    "DeadLetterJob",
    "HandlerOutcome",
    "register_job_payload",
    "validate_job_payload",
    # Stats
    "OutboxStats",
    "QueueStats",
]
