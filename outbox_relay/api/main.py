"""
FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from outbox_relay import __version__
from outbox_relay.api.routes import health_router, outbox_router, queues_router
from outbox_relay.config import get_settings
from outbox_relay.db import EventStore, close_db, get_engine, init_db
from outbox_relay.kv import close_kv, init_kv
from outbox_relay.observability.logging import setup_logging
from outbox_relay.observability.metrics import setup_metrics
from outbox_relay.observability.tracing import (
    instrument_fastapi,
    instrument_sqlalchemy,
    setup_tracing,
)
from outbox_relay.outbox.processor import OutboxProcessor
from outbox_relay.queue import DistributedLock, JobQueue

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Opens both stores, wires the queue and the processor onto
    ``app.state`` and, when configured, starts the processor.
    """
    settings = get_settings()

    # Startup
    setup_logging()
    setup_metrics()
    if app.state.enable_tracing and settings.otel_enabled:
        setup_tracing()
        instrument_sqlalchemy(get_engine().sync_engine)
    await init_db()
    kv = await init_kv()

    app.state.job_queue = JobQueue(kv)
    app.state.lock = DistributedLock(kv)
    app.state.workers = {}
    app.state.processor = OutboxProcessor(EventStore(), job_queue=app.state.job_queue)

    if settings.outbox_autostart:
        await app.state.processor.start()

    logger.info("Application started", extra={"kv_backend": settings.kv_backend})

    yield

    # Shutdown
    if app.state.processor.running:
        await app.state.processor.stop()
    await close_kv()
    await close_db()
    logger.info("Application shutdown")


def create_app(enable_tracing: bool = True) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        enable_tracing: Export spans and instrument FastAPI/SQLAlchemy.

    Returns:
        FastAPI: The configured application instance.
    """
    app = FastAPI(
        title="Outbox Relay API",
        description="Durable event outbox and retry-aware job queue",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.enable_tracing = enable_tracing

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health_router)
    app.include_router(outbox_router)
    app.include_router(queues_router)

    if enable_tracing:
        instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()
    app = create_app()

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    run()
