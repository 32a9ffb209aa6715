"""
Health check routes.
"""

from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import Response

from outbox_relay import __version__
from outbox_relay.db import ping_db
from outbox_relay.kv import get_kv
from outbox_relay.observability.metrics import get_metrics
from outbox_relay.types.api import HealthResponse

router = APIRouter(tags=["Health"])


async def _kv_healthy() -> bool:
    try:
        return await get_kv().ping()
    except Exception:
        return False


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health of the API, the database and the KV store.",
)
async def health_check() -> HealthResponse:
    """
    Perform a health check.

    Returns:
        HealthResponse with per-store status; ``degraded`` if any store is down.
    """
    db_status = "healthy" if await ping_db() else "unhealthy"
    kv_status = "healthy" if await _kv_healthy() else "unhealthy"

    healthy = db_status == "healthy" and kv_status == "healthy"
    return HealthResponse(
        status="healthy" if healthy else "degraded",
        version=__version__,
        database=db_status,
        kv=kv_status,
        timestamp=datetime.now(timezone.utc),
    )


@router.get(
    "/ready",
    summary="Readiness check",
    description="Check if the service is ready to receive traffic.",
)
async def readiness_check() -> dict:
    """Kubernetes readiness probe: both stores reachable."""
    return {"ready": await ping_db() and await _kv_healthy()}


@router.get(
    "/live",
    summary="Liveness check",
    description="Check if the service is alive.",
)
async def liveness_check() -> dict:
    """Kubernetes liveness probe endpoint."""
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics.",
)
async def metrics() -> Response:
    """Expose Prometheus metrics."""
    metrics_collector = get_metrics()
    return Response(
        content=metrics_collector.get_metrics(),
        media_type=metrics_collector.get_content_type(),
    )
