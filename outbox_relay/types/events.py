"""
Outbox event payload definitions.

Every event type appended to the outbox has a payload model registered
here. Payloads are validated at the append boundary so that malformed
events never reach the table.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from outbox_relay.constants import DEFAULT_EVENT_VERSION, AggregateType, EventType
from outbox_relay.exceptions import InvalidPayloadError, UnknownEventTypeError


class EventPayload(BaseModel):
    """Base class for event payloads. Unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid")


class WorkspaceCreatedPayload(EventPayload):
    """A workspace was created for an order."""

    workspace_id: str
    order_id: int
    order_number: str


class QRGenerationRequestedPayload(EventPayload):
    """QR labels should be generated for an order's workspace."""

    workspace_id: str
    order_id: int
    order_number: str
    items: list[dict[str, Any]] = []


class ShipStationSyncRequestedPayload(EventPayload):
    """Order tags changed and must be pushed to the fulfilment system."""

    order_id: int
    tag_ids: list[int] = []
    workspace_id: str | None = None


_payload_models: dict[str, type[EventPayload]] = {
    EventType.WORKSPACE_CREATED: WorkspaceCreatedPayload,
    EventType.QR_GENERATION_REQUESTED: QRGenerationRequestedPayload,
    EventType.SHIPSTATION_SYNC_REQUESTED: ShipStationSyncRequestedPayload,
}


def register_event_payload(event_type: str, model: type[EventPayload]) -> None:
    """
    Register the payload model for an event type.

    Args:
        event_type: The event type name.
        model: Pydantic model validating the payload.
    """
    _payload_models[event_type] = model


def get_event_payload_model(event_type: str) -> type[EventPayload] | None:
    """Get the payload model for an event type, if registered."""
    return _payload_models.get(event_type)


def validate_event_payload(event_type: str, payload: Any) -> dict[str, Any]:
    """
    Validate an event payload against its registered model.

    Args:
        event_type: The event type name.
        payload: Raw payload (dict or model instance).

    Returns:
        The normalized, JSON-compatible payload.

    Raises:
        UnknownEventTypeError: If no model is registered for the type.
        InvalidPayloadError: If the payload does not match the model.
    """
    model = get_event_payload_model(event_type)
    if model is None:
        raise UnknownEventTypeError(event_type)

    if isinstance(payload, model):
        return payload.model_dump(mode="json")

    try:
        return model.model_validate(payload).model_dump(mode="json")
    except ValidationError as e:
        raise InvalidPayloadError(event_type, e.errors(include_url=False)) from e


class NewOutboxEvent(BaseModel):
    """An event a producer wants to append, before it has a row."""

    aggregate_id: str = Field(..., min_length=1, max_length=255)
    aggregate_type: AggregateType
    event_type: str = Field(..., min_length=1, max_length=100)
    payload: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: str | None = Field(default=None, max_length=255)
    event_version: str = Field(default=DEFAULT_EVENT_VERSION, max_length=10)
    created_by: str | None = Field(default=None, max_length=255)

    def to_row(self) -> dict[str, Any]:
        """
        Column values for the outbox row, with the payload validated.

        Raises:
            UnknownEventTypeError: If the event type has no payload model.
            InvalidPayloadError: If the payload does not match the model.
        """
        return {
            "aggregate_id": self.aggregate_id,
            "aggregate_type": self.aggregate_type.value,
            "event_type": self.event_type,
            "payload": validate_event_payload(self.event_type, self.payload),
            "idempotency_key": self.idempotency_key,
            "event_version": self.event_version,
            "created_by": self.created_by,
        }
