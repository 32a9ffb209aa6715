"""
Exception hierarchy for the delivery core.

Handler and job failures never surface as exceptions past the dispatch
boundary; these cover the producer-facing edges (append, enqueue) and
misconfiguration.
"""

from typing import Any


class RelayError(Exception):
    """Base exception for outbox-relay."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class InvalidPayloadError(RelayError):
    """Raised when a payload does not match the model for its type."""

    def __init__(self, kind: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(
            f"Invalid payload for {kind}",
            {"type": kind, "errors": errors or []},
        )
        self.kind = kind


class UnknownEventTypeError(RelayError):
    """Raised when appending an event type with no registered payload model."""

    def __init__(self, event_type: str):
        super().__init__(f"Unknown event type: {event_type}", {"event_type": event_type})
        self.event_type = event_type


class UnknownJobTypeError(RelayError):
    """Raised when enqueueing a job type with no registered payload model."""

    def __init__(self, job_type: str):
        super().__init__(f"Unknown job type: {job_type}", {"job_type": job_type})
        self.job_type = job_type


class StoreUnavailableError(RelayError):
    """Raised when a backing store is used before it was initialized."""
