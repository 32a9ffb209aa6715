"""
Outbox processor.

Polls the outbox table for due events and dispatches them to handlers.
Guarantees at-least-once delivery: an event whose outcome could not be
recorded is reclaimed once its visibility timeout elapses.

Event lifecycle:
    pending -> claimed (attempt recorded) -> processed
                  |
                  +-> failed, retryable -> pending (after visibility timeout)
                  +-> failed, permanent or exhausted -> processed + dead_letter job
"""

import asyncio
import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Sequence

from outbox_relay.config import get_settings
from outbox_relay.constants import (
    OUTBOX_FAILED_ALERT_THRESHOLD,
    OUTBOX_PENDING_ALERT_THRESHOLD,
    SPAN_CLAIM_EVENTS,
    SPAN_DISPATCH_EVENT,
    JobType,
    QueueName,
)
from outbox_relay.db.models import OutboxEvent
from outbox_relay.db.store import EventStore
from outbox_relay.observability.metrics import get_metrics
from outbox_relay.observability.logging import log_context
from outbox_relay.observability.tracing import record_outcome, span
from outbox_relay.outbox.handlers import EventHandler, default_handlers
from outbox_relay.outbox.scheduler import PollScheduler
from outbox_relay.queue.job_queue import JobQueue
from outbox_relay.types.api import OutboxHealth
from outbox_relay.types.job import HandlerOutcome
from outbox_relay.types.stats import OutboxStats

logger = logging.getLogger(__name__)


def evaluate_health(stats: OutboxStats) -> OutboxHealth:
    """Healthy while the backlog and the failure count stay under their thresholds."""
    alerts: list[str] = []
    if stats.pending >= OUTBOX_PENDING_ALERT_THRESHOLD:
        alerts.append("High backlog of pending events")
    if stats.failed >= OUTBOX_FAILED_ALERT_THRESHOLD:
        alerts.append("High failure rate")
    return OutboxHealth(healthy=not alerts, alerts=alerts)


class OutboxProcessor:
    """
    Claims due outbox events and dispatches them to handlers.

    Features:
    - Batch claims with FOR UPDATE SKIP LOCKED, safe across instances
    - Concurrent dispatch within a batch, all outcomes collected
    - Bounded retry through the visibility timeout
    - Dead letter job for events that are given up on
    - Graceful shutdown with a fixed grace period
    """

    def __init__(
        self,
        store: EventStore,
        job_queue: JobQueue | None = None,
        scheduler: PollScheduler | None = None,
        processor_id: str | None = None,
        batch_size: int | None = None,
        max_retries: int | None = None,
        visibility_timeout_seconds: int | None = None,
        shutdown_grace_seconds: float | None = None,
    ):
        """
        Initialize the processor.

        Args:
            store: Transactional access to the outbox table.
            job_queue: Queue used by the default handlers and for dead letters.
            scheduler: Poll loop driver. Defaults to the configured interval.
            processor_id: Identifier used in logs and metrics.
            batch_size: Maximum events claimed per tick.
            max_retries: Attempts after which a failing event is given up on.
            visibility_timeout_seconds: Delay before a failed attempt is reclaimed.
            shutdown_grace_seconds: How long ``stop`` waits for the in-flight batch.
        """
        settings = get_settings()

        self._store = store
        self._job_queue = job_queue
        self._scheduler = scheduler or PollScheduler(
            settings.outbox_poll_interval_seconds, name="outbox-processor"
        )
        self.processor_id = processor_id or f"{os.uname().nodename}-{os.getpid()}"
        self.batch_size = batch_size or settings.outbox_batch_size
        self.max_retries = max_retries or settings.outbox_max_retries
        self.visibility_timeout_seconds = (
            visibility_timeout_seconds or settings.outbox_visibility_timeout_seconds
        )
        self.shutdown_grace_seconds = (
            shutdown_grace_seconds
            if shutdown_grace_seconds is not None
            else settings.outbox_shutdown_grace_seconds
        )

        self._handlers: dict[str, EventHandler] = {}
        self._defaults = default_handlers(job_queue)
        self._metrics = get_metrics()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def on(self, event_type: str, handler: EventHandler) -> None:
        """
        Register a handler for an event type, replacing any previous one.

        The handler returns a ``HandlerOutcome`` (None counts as success);
        a raised exception counts as a retryable failure.
        """
        self._handlers[event_type] = handler
        logger.debug("Registered outbox event handler", extra={"event_type": event_type})

    def _resolve(self, event_type: str) -> EventHandler | None:
        return self._handlers.get(event_type) or self._defaults.get(event_type)

    async def start(self) -> None:
        """Start the poll loop. The first tick runs immediately."""
        if self.running:
            logger.warning("Outbox processor already running")
            return

        logger.info(
            "Starting outbox processor",
            extra={
                "processor_id": self.processor_id,
                "poll_interval": self._scheduler.interval_seconds,
                "batch_size": self.batch_size,
                "max_retries": self.max_retries,
            },
        )
        self._scheduler.start(self.process_batch)

    async def stop(self) -> None:
        """Stop polling and wait up to the grace period for the current batch."""
        logger.info("Stopping outbox processor", extra={"processor_id": self.processor_id})
        await self._scheduler.stop(self.shutdown_grace_seconds)
        logger.info("Outbox processor stopped", extra={"processor_id": self.processor_id})

    async def process_batch(self) -> int:
        """
        Run one tick: claim due events and dispatch them.

        Returns:
            Number of events claimed.
        """
        with span(SPAN_CLAIM_EVENTS, processor_id=self.processor_id) as claim_span:
            try:
                events = await self._store.claim_batch(
                    self.batch_size, self.visibility_timeout_seconds
                )
            except Exception as e:
                logger.exception(
                    f"Failed to claim outbox events: {e}",
                    extra={"processor_id": self.processor_id},
                )
                return 0
            claim_span.set_attribute("event_count", len(events))

        if not events:
            return 0

        self._metrics.record_events_claimed(self.processor_id, len(events))
        logger.info(
            "Processing outbox events",
            extra={"processor_id": self.processor_id, "event_count": len(events)},
        )

        results = await asyncio.gather(
            *(self._process_event(event) for event in events),
            return_exceptions=True,
        )
        for event, result in zip(events, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Unhandled error processing outbox event",
                    extra={"event_id": str(event.id), "error": str(result)},
                )

        return len(events)

    async def _process_event(self, event: OutboxEvent) -> None:
        start_time = time.time()
        event_id = str(event.id)

        with log_context(event_id=event_id, event_type=event.event_type), span(
            SPAN_DISPATCH_EVENT,
            event_id=event_id,
            event_type=event.event_type,
            attempt=event.processing_attempts,
        ) as dispatch_span:

            handler = self._resolve(event.event_type)
            if handler is None:
                logger.warning(
                    "No handler for event type",
                    extra={"event_id": event_id, "event_type": event.event_type},
                )
                await self._record(event, HandlerOutcome.success(), start_time, status="skipped")
                return

            logger.debug(
                "Processing outbox event",
                extra={
                    "event_id": event_id,
                    "event_type": event.event_type,
                    "aggregate_id": event.aggregate_id,
                    "attempt": event.processing_attempts,
                },
            )

            try:
                outcome = await handler(event) or HandlerOutcome.success()
            except Exception as e:
                logger.exception(
                    "Outbox handler raised exception",
                    extra={"event_id": event_id, "error": str(e)},
                )
                outcome = HandlerOutcome.retry(str(e) or e.__class__.__name__)

            record_outcome(dispatch_span, outcome)
            await self._record(event, outcome, start_time)

    async def _record(
        self,
        event: OutboxEvent,
        outcome: HandlerOutcome,
        start_time: float,
        status: str | None = None,
    ) -> None:
        """Persist the outcome. Failures here are logged; the event will be reclaimed."""
        event_id = str(event.id)
        try:
            if outcome.succeeded:
                await self._store.mark_succeeded(event.id)
                status = status or "succeeded"
                logger.info(
                    "Event processed successfully",
                    extra={
                        "event_id": event_id,
                        "event_type": event.event_type,
                        "duration": f"{time.time() - start_time:.3f}s",
                    },
                )
            else:
                status = await self._record_failure(event, outcome)
        except Exception as e:
            logger.exception(
                "Failed to record outbox event outcome",
                extra={"event_id": event_id, "error": str(e)},
            )
            status = "unrecorded"

        self._metrics.record_event_processed(
            event.event_type, status, time.time() - start_time
        )

    async def _record_failure(self, event: OutboxEvent, outcome: HandlerOutcome) -> str:
        error = outcome.error or "Unknown error"
        attempts = event.processing_attempts

        logger.error(
            "Event processing failed",
            extra={
                "event_id": str(event.id),
                "event_type": event.event_type,
                "error": error,
                "attempts": attempts,
                "max_retries": self.max_retries,
            },
        )

        if not outcome.is_permanent and attempts < self.max_retries:
            await self._store.mark_failed(event.id, error, give_up=False)
            return "retry"

        if outcome.is_permanent:
            last_error = f"Permanent failure: {error}"
        else:
            last_error = f"Max retries exceeded: {error}"

        await self._store.mark_failed(event.id, last_error, give_up=True)
        logger.error(
            "Event moved to dead letter queue",
            extra={"event_id": str(event.id), "event_type": event.event_type, "attempts": attempts},
        )
        await self._send_to_dead_letter(event, error)
        return "failed"

    async def _send_to_dead_letter(self, event: OutboxEvent, error: str) -> None:
        if self._job_queue is None:
            logger.warning(
                "No job queue configured, dead letter not published",
                extra={"event_id": str(event.id)},
            )
            return

        payload: dict[str, Any] = {
            "original_event": event.snapshot(),
            "error": error,
            "failed_at": datetime.now(timezone.utc),
        }
        try:
            await self._job_queue.enqueue(
                QueueName.JOBS, JobType.DEAD_LETTER, payload, max_retries=0
            )
        except Exception as e:
            logger.error(
                "Failed to send to dead letter queue",
                extra={"event_id": str(event.id), "error": str(e)},
            )

    async def get_stats(self) -> OutboxStats:
        """Get pending/processed/failed counts from the outbox table."""
        return await self._store.get_stats()

    async def list_failed(self, limit: int = 50) -> Sequence[OutboxEvent]:
        """List events that were given up on, most recent first."""
        return await self._store.list_failed(limit)
