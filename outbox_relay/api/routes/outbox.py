"""
Outbox status and control routes.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from outbox_relay.api.auth import AdminAuth
from outbox_relay.api.deps import get_processor
from outbox_relay.outbox.processor import OutboxProcessor, evaluate_health
from outbox_relay.types.api import (
    FailedEventResponse,
    FailedEventsResponse,
    OutboxStatusResponse,
    ProcessorControlRequest,
    ProcessorControlResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/outbox", tags=["Outbox"])


@router.get(
    "/status",
    response_model=OutboxStatusResponse,
    summary="Outbox status",
    description="Pending/processed/failed counts and backlog health.",
)
async def get_status(
    processor: OutboxProcessor = Depends(get_processor),
) -> OutboxStatusResponse:
    try:
        stats = await processor.get_stats()
    except Exception as e:
        logger.error("Failed to get outbox stats", extra={"error": str(e)})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        )

    return OutboxStatusResponse(
        running=processor.running,
        stats=stats,
        health=evaluate_health(stats),
    )


@router.post(
    "/status",
    response_model=ProcessorControlResponse,
    summary="Start or stop the processor",
    description='Admin only. Body: {"action": "start" | "stop"}.',
    dependencies=[AdminAuth],
)
async def control_processor(
    request: ProcessorControlRequest,
    processor: OutboxProcessor = Depends(get_processor),
) -> ProcessorControlResponse:
    """
    Start or stop the in-process outbox processor.

    Raises:
        HTTPException: 400 on an unknown action.
    """
    if request.action == "start":
        await processor.start()
        logger.info("Outbox processor started via API")
        return ProcessorControlResponse(message="Outbox processor started", running=processor.running)

    if request.action == "stop":
        await processor.stop()
        logger.info("Outbox processor stopped via API")
        return ProcessorControlResponse(message="Outbox processor stopped", running=processor.running)

    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail='Invalid action - must be "start" or "stop"',
    )


@router.get(
    "/failed",
    response_model=FailedEventsResponse,
    summary="List failed events",
    description="Events that were given up on, most recent first.",
)
async def list_failed(
    limit: int = Query(default=50, ge=1, le=500),
    processor: OutboxProcessor = Depends(get_processor),
) -> FailedEventsResponse:
    events = await processor.list_failed(limit)
    return FailedEventsResponse(
        events=[FailedEventResponse.model_validate(e, from_attributes=True) for e in events]
    )
