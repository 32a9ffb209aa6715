"""
Job queue routes: stats, the processing trigger, and deadletter triage.
"""

import logging

from fastapi import APIRouter, Depends, Query

from outbox_relay.api.auth import AdminAuth, CronAuth
from outbox_relay.api.deps import get_job_queue, get_queue_worker, resolve_queue
from outbox_relay.queue.job_queue import JobQueue
from outbox_relay.types.api import (
    DeadletterListResponse,
    ProcessQueueResponse,
    QueueStatsResponse,
    RetryDeadletterResponse,
)
from outbox_relay.worker.main import QueueWorker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/queues", tags=["Queues"])


@router.get(
    "/{queue}/stats",
    response_model=QueueStatsResponse,
    summary="Queue stats",
    description="Ready, scheduled and deadletter counts for a queue.",
)
async def get_queue_stats(
    name: str = Depends(resolve_queue),
    job_queue: JobQueue = Depends(get_job_queue),
) -> QueueStatsResponse:
    return QueueStatsResponse(queue=name, stats=await job_queue.stats(name))


@router.api_route(
    "/{queue}/process",
    methods=["GET", "POST"],
    response_model=ProcessQueueResponse,
    summary="Process a queue",
    description="Flush due jobs and execute one batch. Meant to be hit by a cron trigger.",
    dependencies=[CronAuth],
)
async def process_queue(
    worker: QueueWorker = Depends(get_queue_worker),
) -> ProcessQueueResponse:
    """
    Run one worker pass over the queue.

    Returns a skipped response when another pass holds the queue lock.
    """
    result = await worker.process_once()

    if result.skipped:
        return ProcessQueueResponse(skipped=True, message="Another processor is running")

    logger.info(
        "Processed queue via API",
        extra={
            "queue": worker.queue,
            "processed": result.processed,
            "failed": result.failed,
            "flushed": result.flushed,
        },
    )
    return ProcessQueueResponse(
        processed=result.processed,
        failed=result.failed,
        flushed=result.flushed,
    )


@router.get(
    "/{queue}/deadletter",
    response_model=DeadletterListResponse,
    summary="List deadlettered jobs",
    description="Read-only listing, oldest first.",
)
async def list_deadletter(
    name: str = Depends(resolve_queue),
    limit: int = Query(default=50, ge=1, le=500),
    job_queue: JobQueue = Depends(get_job_queue),
) -> DeadletterListResponse:
    messages = await job_queue.peek_deadletter(name, limit)
    return DeadletterListResponse(
        queue=name,
        messages=[m.model_dump(mode="json", by_alias=True) for m in messages],
    )


@router.post(
    "/{queue}/deadletter/retry",
    response_model=RetryDeadletterResponse,
    summary="Retry deadlettered jobs",
    description="Admin only. Moves up to `count` deadlettered jobs back to ready.",
    dependencies=[AdminAuth],
)
async def retry_deadletter(
    name: str = Depends(resolve_queue),
    count: int = Query(default=10, ge=1, le=1000),
    job_queue: JobQueue = Depends(get_job_queue),
) -> RetryDeadletterResponse:
    retried = await job_queue.retry_deadletter(name, count)
    logger.info("Retried deadletter jobs via API", extra={"queue": name, "count": retried})
    return RetryDeadletterResponse(queue=name, retried=retried)
