"""
Job-related type definitions: queue messages, job payloads and handler outcomes.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from outbox_relay.constants import DEFAULT_QUEUE_MAX_RETRIES, JobType, OutcomeKind
from outbox_relay.exceptions import InvalidPayloadError, UnknownJobTypeError


class QueueMessage(BaseModel):
    """
    A job as stored in the key/value queue.

    Serialized with camelCase keys (``maxRetries``, ``lastError``, ...).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    type: str
    payload: Any = None
    timestamp: datetime
    attempts: int = 0
    last_attempt: datetime | None = None
    max_retries: int = DEFAULT_QUEUE_MAX_RETRIES
    last_error: str | None = None

    @property
    def is_exhausted(self) -> bool:
        """Check if the retry budget is used up."""
        return self.attempts >= self.max_retries

    def to_json(self) -> str:
        """Serialize for storage."""
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "QueueMessage":
        """Parse a stored message. Raises pydantic.ValidationError on bad input."""
        return cls.model_validate_json(raw)


class JobPayload(BaseModel):
    """Base class for job payloads. Unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid")


class QRGenerationJob(JobPayload):
    """Generate QR labels for a workspace."""

    action: Literal["generate_qr", "generate_qr_codes"] = "generate_qr"
    workspace_id: str
    order_id: int
    order_number: str
    items: list[dict[str, Any]] = []
    strategy: str | None = None


class AlertJob(JobPayload):
    """Record an operational alert against a workspace."""

    workspace_id: str
    alert_type: str
    message: str | None = None
    metadata: dict[str, Any] = {}


class WebhookJob(JobPayload):
    """Deliver an outbound HTTP callback."""

    url: str
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"
    headers: dict[str, str] = {}
    body: dict[str, Any] | list[Any] | None = None


class TagSyncJob(JobPayload):
    """Push order tag changes to the fulfilment system."""

    order_id: int
    tag_ids: list[int] = []
    source_event_id: str | None = None


class DeadLetterJob(JobPayload):
    """An outbox event that exhausted its retries, parked for manual triage."""

    original_event: dict[str, Any]
    error: str
    failed_at: datetime


_payload_models: dict[str, type[JobPayload]] = {
    JobType.QR_GENERATION: QRGenerationJob,
    JobType.ALERT: AlertJob,
    JobType.WEBHOOK: WebhookJob,
    JobType.TAG_SYNC: TagSyncJob,
    JobType.DEAD_LETTER: DeadLetterJob,
}


def register_job_payload(job_type: str, model: type[JobPayload]) -> None:
    """Register the payload model for a job type."""
    _payload_models[job_type] = model


def get_job_payload_model(job_type: str) -> type[JobPayload] | None:
    """Get the payload model for a job type, if registered."""
    return _payload_models.get(job_type)


def validate_job_payload(job_type: str, payload: Any) -> dict[str, Any]:
    """
    Validate a job payload against its registered model.

    Args:
        job_type: The job type name.
        payload: Raw payload (dict or model instance).

    Returns:
        The normalized, JSON-compatible payload.

    Raises:
        UnknownJobTypeError: If no model is registered for the type.
        InvalidPayloadError: If the payload does not match the model.
    """
    model = get_job_payload_model(job_type)
    if model is None:
        raise UnknownJobTypeError(job_type)

    if isinstance(payload, model):
        return payload.model_dump(mode="json")

    try:
        return model.model_validate(payload).model_dump(mode="json")
    except ValidationError as e:
        raise InvalidPayloadError(job_type, e.errors(include_url=False)) from e


class HandlerOutcome(BaseModel):
    """
    Result of running an event or job handler.

    Handlers return one of these instead of raising, so retry and
    deadletter decisions are made explicitly by the caller.
    """

    kind: OutcomeKind
    error: str | None = None
    output: dict[str, Any] | None = None

    @classmethod
    def success(cls, output: dict[str, Any] | None = None) -> "HandlerOutcome":
        return cls(kind=OutcomeKind.SUCCESS, output=output)

    @classmethod
    def retry(cls, error: str) -> "HandlerOutcome":
        return cls(kind=OutcomeKind.RETRYABLE, error=error)

    @classmethod
    def permanent(cls, error: str) -> "HandlerOutcome":
        return cls(kind=OutcomeKind.PERMANENT, error=error)

    @property
    def succeeded(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS

    @property
    def is_permanent(self) -> bool:
        return self.kind == OutcomeKind.PERMANENT
