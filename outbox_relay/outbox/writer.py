"""
Outbox event writer.

Producers call these helpers inside the same database transaction as
their business write, so the event exists if and only if the write
committed. Nothing here dispatches: the processor picks rows up later.

Example:
    async with get_session_context() as session:
        session.add(workspace)
        await append_event(
            session,
            aggregate_id=str(order_id),
            aggregate_type="workspace",
            event_type="WorkspaceCreated",
            payload={"workspace_id": ws_id, "order_id": order_id, "order_number": number},
        )
"""

import logging
from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from outbox_relay.constants import DEFAULT_EVENT_VERSION
from outbox_relay.db.models import OutboxEvent
from outbox_relay.db.repository import OutboxRepository
from outbox_relay.exceptions import InvalidPayloadError
from outbox_relay.types.events import NewOutboxEvent

logger = logging.getLogger(__name__)


def _draft(fields: dict[str, Any]) -> NewOutboxEvent:
    try:
        return NewOutboxEvent.model_validate(fields)
    except ValidationError as e:
        raise InvalidPayloadError("outbox_event", e.errors(include_url=False)) from e


async def append_event(
    session: AsyncSession,
    aggregate_id: str,
    aggregate_type: str,
    event_type: str,
    payload: dict[str, Any],
    idempotency_key: str | None = None,
    event_version: str = DEFAULT_EVENT_VERSION,
    created_by: str | None = None,
) -> tuple[OutboxEvent, bool]:
    """
    Append one event within the caller's transaction.

    Args:
        session: The caller's session. Not committed here.
        aggregate_id: Identifier of the aggregate the event belongs to.
        aggregate_type: One of the known aggregate types.
        event_type: Event type with a registered payload model.
        payload: Event payload.
        idempotency_key: Optional key; a repeat returns the existing event.
        event_version: Payload schema version.
        created_by: Optional actor.

    Returns:
        Tuple of (OutboxEvent, created).

    Raises:
        UnknownEventTypeError: If the event type has no payload model.
        InvalidPayloadError: If the envelope or payload is invalid.
    """
    draft = _draft(
        {
            "aggregate_id": aggregate_id,
            "aggregate_type": aggregate_type,
            "event_type": event_type,
            "payload": payload,
            "idempotency_key": idempotency_key,
            "event_version": event_version,
            "created_by": created_by,
        }
    )
    return await OutboxRepository(session).append(**draft.to_row())


async def append_events(
    session: AsyncSession,
    events: Iterable[NewOutboxEvent | dict[str, Any]],
) -> list[OutboxEvent]:
    """
    Append several events emitted by one business operation.

    Every event is validated before the first insert, so an invalid entry
    leaves the session untouched.

    Returns:
        The stored events, in input order. Idempotent repeats are
        returned as the existing rows.
    """
    drafts = [e if isinstance(e, NewOutboxEvent) else _draft(e) for e in events]
    rows = [draft.to_row() for draft in drafts]

    repo = OutboxRepository(session)
    stored: list[OutboxEvent] = []
    for row in rows:
        event, _ = await repo.append(**row)
        stored.append(event)

    logger.info("Appended outbox events", extra={"event_count": len(stored)})
    return stored
