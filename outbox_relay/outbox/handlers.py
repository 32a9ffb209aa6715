"""
Default outbox event handlers.

These cover the event types producers emit today. Most of them forward
the work onto the job queue, where retry and deadletter are handled per
job; a registration with ``OutboxProcessor.on`` overrides any of them.
"""

import logging
from collections.abc import Awaitable, Callable

from outbox_relay.constants import EventType, JobType, QueueName
from outbox_relay.db.models import OutboxEvent
from outbox_relay.exceptions import InvalidPayloadError
from outbox_relay.queue.job_queue import JobQueue
from outbox_relay.types.job import HandlerOutcome

logger = logging.getLogger(__name__)

EventHandler = Callable[[OutboxEvent], Awaitable[HandlerOutcome | None]]

QR_GENERATION_MAX_RETRIES = 3


async def handle_workspace_created(event: OutboxEvent) -> HandlerOutcome:
    logger.info(
        "Workspace created",
        extra={
            "event_id": str(event.id),
            "aggregate_id": event.aggregate_id,
            "workspace_id": event.payload.get("workspace_id"),
        },
    )
    return HandlerOutcome.success()


def make_qr_generation_handler(job_queue: JobQueue) -> EventHandler:
    """Forward ``QRGenerationRequested`` to a ``qr_generation`` job, once per order."""

    async def handle_qr_generation_requested(event: OutboxEvent) -> HandlerOutcome:
        payload = event.payload
        order_id = payload.get("order_id")
        try:
            job_id = await job_queue.enqueue(
                QueueName.JOBS,
                JobType.QR_GENERATION,
                {
                    "action": "generate_qr",
                    "workspace_id": payload.get("workspace_id"),
                    "order_id": order_id,
                    "order_number": payload.get("order_number"),
                    "items": payload.get("items") or [],
                },
                max_retries=QR_GENERATION_MAX_RETRIES,
                fingerprint=f"qr_gen_{order_id}",
            )
        except InvalidPayloadError as e:
            return HandlerOutcome.permanent(e.message)

        logger.info(
            "QR generation requested",
            extra={"event_id": str(event.id), "order_id": order_id, "job_id": job_id},
        )
        return HandlerOutcome.success({"job_id": job_id})

    return handle_qr_generation_requested


def make_tag_sync_handler(job_queue: JobQueue) -> EventHandler:
    """Forward ``ShipStationSyncRequested`` to a ``tag_sync`` job, once per event."""

    async def handle_shipstation_sync_requested(event: OutboxEvent) -> HandlerOutcome:
        payload = event.payload
        try:
            job_id = await job_queue.enqueue(
                QueueName.JOBS,
                JobType.TAG_SYNC,
                {
                    "order_id": payload.get("order_id"),
                    "tag_ids": payload.get("tag_ids") or [],
                    "source_event_id": str(event.id),
                },
                fingerprint=f"tag_sync_{event.id}",
            )
        except InvalidPayloadError as e:
            return HandlerOutcome.permanent(e.message)

        return HandlerOutcome.success({"job_id": job_id})

    return handle_shipstation_sync_requested


def default_handlers(job_queue: JobQueue | None) -> dict[str, EventHandler]:
    """
    Build the default handler table.

    Without a job queue only the log-only handlers are available.
    """
    handlers: dict[str, EventHandler] = {
        EventType.WORKSPACE_CREATED: handle_workspace_created,
    }
    if job_queue is not None:
        handlers[EventType.QR_GENERATION_REQUESTED] = make_qr_generation_handler(job_queue)
        handlers[EventType.SHIPSTATION_SYNC_REQUESTED] = make_tag_sync_handler(job_queue)
    return handlers
