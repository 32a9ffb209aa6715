"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class QueueName(StrEnum):
    """Named job queues backed by the key/value store."""

    JOBS = "jobs"
    ALERTS = "alerts"
    WEBHOOKS = "webhooks"


class AggregateType(StrEnum):
    """Aggregates that append events to the outbox."""

    WORKSPACE = "workspace"
    FREIGHT_ORDER = "freight_order"
    INSPECTION = "inspection"
    CONTAINER = "container"


class EventType(StrEnum):
    """Domain event types with a registered payload model."""

    WORKSPACE_CREATED = "WorkspaceCreated"
    QR_GENERATION_REQUESTED = "QRGenerationRequested"
    SHIPSTATION_SYNC_REQUESTED = "ShipStationSyncRequested"


class JobType(StrEnum):
    """Job types accepted by the job queue."""

    QR_GENERATION = "qr_generation"
    ALERT = "alert"
    WEBHOOK = "webhook"
    TAG_SYNC = "tag_sync"
    DEAD_LETTER = "dead_letter"


class OutcomeKind(StrEnum):
    """
    Result of a single handler invocation.

    - SUCCESS: the work is done
    - RETRYABLE: count the attempt and try again later
    - PERMANENT: give up immediately and deadletter
    """

    SUCCESS = "success"
    RETRYABLE = "retryable"
    PERMANENT = "permanent"


# Default values
DEFAULT_EVENT_VERSION = "1.0"
DEFAULT_QUEUE_MAX_RETRIES = 3
DEDUP_TTL_SECONDS = 60 * 60 * 24
FINGERPRINT_LENGTH = 32
LAST_ERROR_MAX_LENGTH = 1000

# Outbox health thresholds
OUTBOX_PENDING_ALERT_THRESHOLD = 1000
OUTBOX_FAILED_ALERT_THRESHOLD = 100

# API constants
API_V1_PREFIX = "/v1"

# Metrics names
METRIC_OUTBOX_CLAIMED = "outbox_events_claimed_total"
METRIC_OUTBOX_PROCESSED = "outbox_events_processed_total"
METRIC_OUTBOX_DURATION = "outbox_event_duration_seconds"
METRIC_QUEUE_DEPTH = "job_queue_depth"
METRIC_JOBS_ENQUEUED = "jobs_enqueued_total"
METRIC_JOBS_DUPLICATE = "jobs_duplicate_total"
METRIC_JOBS_COMPLETED = "jobs_completed_total"
METRIC_JOB_DURATION = "job_duration_seconds"
METRIC_LOCK_SKIPPED = "lock_skipped_total"

# Trace span names
SPAN_CLAIM_EVENTS = "claim_outbox_events"
SPAN_DISPATCH_EVENT = "dispatch_outbox_event"
SPAN_EXECUTE_JOB = "execute_job"
