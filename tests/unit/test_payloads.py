"""
Unit tests for event and job payload models.
"""

import pytest
from pydantic import ValidationError

from outbox_relay.constants import EventType, JobType, OutcomeKind
from outbox_relay.exceptions import (
    InvalidPayloadError,
    UnknownEventTypeError,
    UnknownJobTypeError,
)
from outbox_relay.types import (
    HandlerOutcome,
    NewOutboxEvent,
    validate_event_payload,
    validate_job_payload,
)


class TestEventPayloads:
    """Tests for event payload validation."""

    def test_valid_payload_is_normalized(self, qr_payload):
        """Test that a valid payload comes back as plain JSON data."""
        normalized = validate_event_payload(EventType.QR_GENERATION_REQUESTED, qr_payload)

        assert normalized == qr_payload

    def test_defaults_are_filled_in(self):
        """Test that optional fields get their defaults."""
        normalized = validate_event_payload(
            EventType.SHIPSTATION_SYNC_REQUESTED, {"order_id": 9}
        )

        assert normalized == {"order_id": 9, "tag_ids": [], "workspace_id": None}

    def test_unknown_fields_are_rejected(self, qr_payload):
        """Test that extra keys fail validation."""
        with pytest.raises(InvalidPayloadError) as exc_info:
            validate_event_payload(
                EventType.QR_GENERATION_REQUESTED, {**qr_payload, "colour": "red"}
            )

        assert exc_info.value.kind == EventType.QR_GENERATION_REQUESTED
        assert exc_info.value.details["errors"]

    def test_missing_field_is_rejected(self):
        """Test that required fields are enforced."""
        with pytest.raises(InvalidPayloadError):
            validate_event_payload(EventType.WORKSPACE_CREATED, {"workspace_id": "ws-1"})

    def test_unknown_event_type(self):
        """Test that unregistered event types are refused."""
        with pytest.raises(UnknownEventTypeError) as exc_info:
            validate_event_payload("OrderShipped", {})

        assert exc_info.value.event_type == "OrderShipped"


class TestNewOutboxEvent:
    """Tests for the append envelope."""

    def test_to_row_validates_payload(self, qr_payload):
        """Test that to_row produces column values with a normalized payload."""
        event = NewOutboxEvent(
            aggregate_id="ws-123",
            aggregate_type="workspace",
            event_type=EventType.QR_GENERATION_REQUESTED,
            payload=qr_payload,
            idempotency_key="qr-ws-123",
        )

        row = event.to_row()

        assert row["aggregate_type"] == "workspace"
        assert row["event_version"] == "1.0"
        assert row["idempotency_key"] == "qr-ws-123"
        assert row["payload"] == qr_payload

    def test_unknown_aggregate_type_rejected(self, qr_payload):
        """Test that aggregate types are a closed set."""
        with pytest.raises(ValidationError):
            NewOutboxEvent(
                aggregate_id="ws-123",
                aggregate_type="invoice",
                event_type=EventType.QR_GENERATION_REQUESTED,
                payload=qr_payload,
            )

    def test_empty_aggregate_id_rejected(self):
        """Test that aggregate ids must be non-empty."""
        with pytest.raises(ValidationError):
            NewOutboxEvent(
                aggregate_id="",
                aggregate_type="workspace",
                event_type=EventType.WORKSPACE_CREATED,
            )

    def test_to_row_rejects_bad_payload(self):
        """Test that payload errors surface from to_row, not construction."""
        event = NewOutboxEvent(
            aggregate_id="ws-1",
            aggregate_type="workspace",
            event_type=EventType.WORKSPACE_CREATED,
            payload={"workspace_id": "ws-1"},
        )

        with pytest.raises(InvalidPayloadError):
            event.to_row()


class TestJobPayloads:
    """Tests for job payload validation."""

    def test_qr_generation_defaults_action(self, qr_payload):
        """Test that qr_generation jobs default their action."""
        normalized = validate_job_payload(JobType.QR_GENERATION, qr_payload)

        assert normalized["action"] == "generate_qr"
        assert normalized["strategy"] is None

    def test_webhook_method_is_restricted(self):
        """Test that webhook methods are a closed set."""
        with pytest.raises(InvalidPayloadError):
            validate_job_payload(
                JobType.WEBHOOK, {"url": "https://example.com", "method": "TRACE"}
            )

    def test_dead_letter_serializes_timestamp(self):
        """Test that dead_letter payloads are JSON-compatible."""
        normalized = validate_job_payload(
            JobType.DEAD_LETTER,
            {
                "original_event": {"id": "e-1"},
                "error": "boom",
                "failed_at": "2024-01-01T00:00:00Z",
            },
        )

        assert isinstance(normalized["failed_at"], str)
        assert normalized["failed_at"].startswith("2024-01-01T00:00:00")

    def test_unknown_job_type(self):
        """Test that unregistered job types are refused."""
        with pytest.raises(UnknownJobTypeError):
            validate_job_payload("send_fax", {})


class TestHandlerOutcome:
    """Tests for handler outcomes."""

    def test_constructors(self):
        """Test the three outcome kinds."""
        assert HandlerOutcome.success().succeeded is True
        assert HandlerOutcome.retry("timeout").kind == OutcomeKind.RETRYABLE
        assert HandlerOutcome.retry("timeout").is_permanent is False

        permanent = HandlerOutcome.permanent("HTTP 404")
        assert permanent.is_permanent is True
        assert permanent.succeeded is False
        assert permanent.error == "HTTP 404"
