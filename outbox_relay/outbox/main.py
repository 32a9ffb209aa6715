"""
Standalone outbox processor process.

Runs the poll loop until SIGTERM/SIGINT, then drains for the configured
grace period and exits.

Usage:
    python -m outbox_relay.outbox.main
"""

import asyncio
import logging
import signal

from outbox_relay.config import get_settings
from outbox_relay.db import EventStore, close_db, init_db
from outbox_relay.kv import close_kv, init_kv
from outbox_relay.observability.logging import bind_context, setup_logging
from outbox_relay.observability.metrics import setup_metrics
from outbox_relay.observability.tracing import setup_tracing
from outbox_relay.outbox.processor import OutboxProcessor
from outbox_relay.queue import JobQueue

logger = logging.getLogger(__name__)


async def run_async() -> None:
    """Run the outbox processor asynchronously."""
    setup_logging()
    setup_metrics()
    if get_settings().otel_enabled:
        setup_tracing()
    await init_db()
    kv = await init_kv()

    processor = OutboxProcessor(EventStore(), job_queue=JobQueue(kv))
    bind_context(processor_id=processor.processor_id)
    shutdown = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.set)

    try:
        await processor.start()
        await shutdown.wait()
        await processor.stop()
    finally:
        await close_kv()
        await close_db()


def run() -> None:
    """Run the outbox processor."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
