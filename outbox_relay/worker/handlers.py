"""
Job handlers registry and implementations.

Job handlers must be idempotent - the queue delivers at least once, so a
handler may run more than once for the same logical job.

A handler receives the validated payload model and the queue message,
and returns a HandlerOutcome:
- success: the job is done
- retry: count the attempt and reschedule with backoff
- permanent: deadletter immediately
"""

import logging
from typing import Any, Awaitable, Callable

import httpx

from outbox_relay.constants import JobType
from outbox_relay.exceptions import InvalidPayloadError, UnknownJobTypeError
from outbox_relay.types.job import (
    AlertJob,
    DeadLetterJob,
    HandlerOutcome,
    JobPayload,
    QRGenerationJob,
    QueueMessage,
    TagSyncJob,
    WebhookJob,
    get_job_payload_model,
)

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[Any, QueueMessage], Awaitable[HandlerOutcome]]

# Handler registry
_handlers: dict[str, JobHandler] = {}

WEBHOOK_TIMEOUT_SECONDS = 30.0


def http_client_factory() -> httpx.AsyncClient:
    """Client used by the webhook handler."""
    return httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT_SECONDS)


def register_handler(job_type: str) -> Callable[[JobHandler], JobHandler]:
    """
    Decorator to register a job handler.

    Args:
        job_type: The job type this handler processes.

    Returns:
        Decorator function.

    Example:
        @register_handler("alert")
        async def handle_alert(job: AlertJob, message: QueueMessage) -> HandlerOutcome:
            ...
    """
    def decorator(handler: JobHandler) -> JobHandler:
        _handlers[job_type] = handler
        logger.debug(f"Registered handler for job type: {job_type}")
        return handler
    return decorator


def get_handler(job_type: str) -> JobHandler | None:
    """Get the handler for a job type, or None if not found."""
    return _handlers.get(job_type)


def list_handlers() -> list[str]:
    """List all registered job types."""
    return list(_handlers.keys())


# ============================================================================
# Built-in job handlers
# ============================================================================


@register_handler(JobType.QR_GENERATION)
async def handle_qr_generation(job: QRGenerationJob, message: QueueMessage) -> HandlerOutcome:
    """
    Hand QR label generation for a workspace to the label service.

    Runs once per order thanks to the ``qr_gen_{order_id}`` fingerprint.
    """
    logger.info(
        "QR generation job executing",
        extra={
            "job_id": message.id,
            "workspace_id": job.workspace_id,
            "order_id": job.order_id,
            "item_count": len(job.items),
            "attempt": message.attempts + 1,
        },
    )
    return HandlerOutcome.success(
        {"workspace_id": job.workspace_id, "order_id": job.order_id, "item_count": len(job.items)}
    )


@register_handler(JobType.ALERT)
async def handle_alert(job: AlertJob, message: QueueMessage) -> HandlerOutcome:
    logger.warning(
        f"Alert raised: {job.alert_type}",
        extra={
            "job_id": message.id,
            "workspace_id": job.workspace_id,
            "alert_type": job.alert_type,
            "alert_message": job.message,
        },
    )
    return HandlerOutcome.success()


@register_handler(JobType.TAG_SYNC)
async def handle_tag_sync(job: TagSyncJob, message: QueueMessage) -> HandlerOutcome:
    """Push tag changes for an order to the fulfilment system."""
    logger.info(
        "Tag sync job executing",
        extra={
            "job_id": message.id,
            "order_id": job.order_id,
            "tag_ids": job.tag_ids,
            "source_event_id": job.source_event_id,
        },
    )
    return HandlerOutcome.success({"order_id": job.order_id, "tag_count": len(job.tag_ids)})


@register_handler(JobType.WEBHOOK)
async def handle_webhook(job: WebhookJob, message: QueueMessage) -> HandlerOutcome:
    """
    Deliver an HTTP callback.

    Network errors and 5xx responses are retried; 4xx responses are
    permanent since repeating the same request will not change them.
    """
    logger.info(
        "Webhook job",
        extra={"job_id": message.id, "method": job.method, "url": job.url},
    )

    try:
        async with http_client_factory() as client:
            response = await client.request(
                method=job.method,
                url=job.url,
                headers=job.headers,
                json=job.body if job.method in ("POST", "PUT", "PATCH") else None,
            )
    except httpx.HTTPError as e:
        return HandlerOutcome.retry(f"HTTP request failed: {e}")

    if response.is_success:
        return HandlerOutcome.success(
            {"status_code": response.status_code, "body": response.text[:1000]}
        )
    if response.status_code >= 500:
        return HandlerOutcome.retry(f"HTTP {response.status_code}")
    return HandlerOutcome.permanent(f"HTTP {response.status_code}")


@register_handler(JobType.DEAD_LETTER)
async def handle_dead_letter(job: DeadLetterJob, message: QueueMessage) -> HandlerOutcome:
    """Surface an outbox event that was given up on, for manual triage."""
    logger.error(
        "Outbox event dead-lettered",
        extra={
            "job_id": message.id,
            "event_id": job.original_event.get("id"),
            "event_type": job.original_event.get("event_type"),
            "error": job.error,
            "failed_at": job.failed_at.isoformat(),
        },
    )
    return HandlerOutcome.success()


def _parse_payload(message: QueueMessage) -> JobPayload:
    model = get_job_payload_model(message.type)
    if model is None:
        raise UnknownJobTypeError(message.type)
    try:
        return model.model_validate(message.payload)
    except ValueError as e:
        raise InvalidPayloadError(message.type) from e


async def execute_job(message: QueueMessage) -> HandlerOutcome:
    """
    Execute a job using the appropriate handler.

    A missing handler, an unknown type or an invalid payload is permanent;
    an exception raised by the handler is retryable.

    Args:
        message: The popped queue message.

    Returns:
        HandlerOutcome from the handler.
    """
    handler = get_handler(message.type)
    if handler is None:
        logger.error(
            f"No handler for job type: {message.type}",
            extra={"job_id": message.id},
        )
        return HandlerOutcome.permanent(f"No handler registered for job type: {message.type}")

    try:
        job = _parse_payload(message)
    except (UnknownJobTypeError, InvalidPayloadError) as e:
        logger.error(
            "Job payload rejected",
            extra={"job_id": message.id, "job_type": message.type, "error": e.message},
        )
        return HandlerOutcome.permanent(e.message)

    try:
        return await handler(job, message)
    except Exception as e:
        logger.exception(
            "Handler raised exception",
            extra={"job_id": message.id, "error": str(e)},
        )
        return HandlerOutcome.retry(f"Handler exception: {e}")
