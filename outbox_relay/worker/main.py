"""
Worker process for executing queued jobs.

The job queue is pull-based: this worker is what drives it. Each run,
under a per-queue distributed lock so only one instance works a queue at
a time, it moves due scheduled jobs to ready, pops a batch, and reports
every outcome back through the retry/deadletter path.

Usage:
    python -m outbox_relay.worker.main
"""

import asyncio
import logging
import os
import signal
import time
from dataclasses import dataclass

from outbox_relay.config import get_settings
from outbox_relay.constants import SPAN_EXECUTE_JOB
from outbox_relay.kv import close_kv, init_kv
from outbox_relay.observability.logging import bind_context, log_context, setup_logging
from outbox_relay.observability.metrics import get_metrics, setup_metrics
from outbox_relay.observability.tracing import record_outcome, setup_tracing, span
from outbox_relay.queue.job_queue import JobQueue
from outbox_relay.queue.lock import DistributedLock
from outbox_relay.types.job import QueueMessage
from outbox_relay.worker.handlers import execute_job

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    """Counts from one ``QueueWorker.process_once`` run."""

    processed: int = 0
    failed: int = 0
    flushed: int = 0
    skipped: bool = False


class QueueWorker:
    """
    Job worker that drains one named queue.

    Features:
    - One active worker per queue through a TTL-bound distributed lock
    - Completion dedup so the same logical job runs once per TTL window
    - Retry with exponential backoff, deadletter on exhaustion
    - Graceful shutdown on SIGTERM/SIGINT
    """

    def __init__(
        self,
        job_queue: JobQueue,
        lock: DistributedLock,
        queue: str | None = None,
        worker_id: str | None = None,
        batch_size: int | None = None,
        flush_limit: int | None = None,
        lock_ttl_seconds: int | None = None,
        poll_interval: float | None = None,
    ):
        """
        Initialize the worker.

        Args:
            job_queue: The queue to drain.
            lock: Lock shared by all workers of the same queue.
            queue: Queue name. Defaults to the configured worker queue.
            worker_id: Unique worker identifier. Defaults to hostname + PID.
            batch_size: Jobs popped per run.
            flush_limit: Scheduled jobs moved to ready per run.
            lock_ttl_seconds: Upper bound on one run.
            poll_interval: Seconds between runs when the queue is empty.
        """
        settings = get_settings()

        self.job_queue = job_queue
        self.lock = lock
        self.queue = queue or settings.worker_queue
        self.worker_id = worker_id or settings.worker_id or f"{os.uname().nodename}-{os.getpid()}"
        self.batch_size = batch_size or settings.worker_batch_size
        self.flush_limit = flush_limit or settings.worker_flush_limit
        self.lock_ttl_seconds = lock_ttl_seconds or settings.worker_lock_ttl_seconds
        self.poll_interval = poll_interval or settings.worker_poll_interval_seconds

        self._running = False
        self._stopped = asyncio.Event()
        self._metrics = get_metrics()

    @property
    def lock_name(self) -> str:
        return f"{self.queue}-processor"

    async def process_once(self) -> ProcessResult:
        """
        Flush, pop and execute one batch under the queue lock.

        Returns:
            ProcessResult, with ``skipped`` set if another worker holds the lock.
        """
        result = await self.lock.with_lock(
            self.lock_name, self.lock_ttl_seconds, self._drain
        )
        if result.skipped:
            return ProcessResult(skipped=True)
        return result.value

    async def _drain(self) -> ProcessResult:
        result = ProcessResult()
        result.flushed = await self.job_queue.flush_due(self.queue, self.flush_limit)

        messages = await self.job_queue.pop(self.queue, self.batch_size)
        if messages:
            logger.info(
                f"Popped {len(messages)} jobs",
                extra={"worker_id": self.worker_id, "queue": self.queue},
            )

        for message in messages:
            if await self._execute(message):
                result.processed += 1
            else:
                result.failed += 1

        return result

    async def _execute(self, message: QueueMessage) -> bool:
        """
        Execute a single job and record its outcome.

        Returns:
            True if the job succeeded or was a duplicate.
        """
        if await self.job_queue.is_duplicate(self.queue, message.type, message.payload):
            logger.info(
                "Skipping duplicate job",
                extra={"job_id": message.id, "job_type": message.type},
            )
            self._metrics.record_job_completed(self.queue, message.type, "duplicate")
            return True

        start_time = time.time()
        with log_context(job_id=message.id, job_type=message.type), span(
            SPAN_EXECUTE_JOB,
            job_id=message.id,
            job_type=message.type,
            attempt=message.attempts + 1,
        ) as job_span:
            outcome = await execute_job(message)
            record_outcome(job_span, outcome)

        duration = time.time() - start_time

        if outcome.succeeded:
            logger.info(
                "Job completed successfully",
                extra={"job_id": message.id, "duration": f"{duration:.2f}s"},
            )
            self._metrics.record_job_completed(
                self.queue, message.type, "succeeded", duration_seconds=duration
            )
            return True

        logger.warning(
            "Job failed",
            extra={
                "job_id": message.id,
                "error": outcome.error,
                "attempt": message.attempts + 1,
            },
        )
        self._metrics.record_job_completed(
            self.queue, message.type, "failed", duration_seconds=duration
        )

        # Release the completion claim so the retry is not mistaken for a duplicate
        await self.job_queue.forget_done(self.queue, message.type, message.payload)
        if outcome.is_permanent:
            await self.job_queue.deadletter(self.queue, message, outcome.error)
        else:
            await self.job_queue.retry_or_deadletter(self.queue, message, outcome.error)
        return False

    async def start(self) -> None:
        """Run until ``stop`` is called."""
        logger.info(
            "Worker starting",
            extra={"worker_id": self.worker_id, "queue": self.queue, "batch_size": self.batch_size},
        )

        self._running = True
        self._stopped.clear()

        while self._running:
            try:
                result = await self.process_once()
                idle = result.skipped or (result.processed + result.failed) == 0
            except Exception as e:
                logger.exception(
                    f"Error in worker loop: {e}",
                    extra={"worker_id": self.worker_id},
                )
                idle = True

            if idle and self._running:
                try:
                    await asyncio.wait_for(self._stopped.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass

        logger.info("Worker stopped", extra={"worker_id": self.worker_id})

    async def stop(self) -> None:
        """Stop the worker after the current run."""
        logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        self._running = False
        self._stopped.set()


async def run_async() -> None:
    """Run the worker asynchronously."""
    setup_logging()
    setup_metrics()
    if get_settings().otel_enabled:
        setup_tracing()
    kv = await init_kv()

    worker = QueueWorker(JobQueue(kv), DistributedLock(kv))
    bind_context(worker_id=worker.worker_id, queue=worker.queue)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(worker.stop())
        )

    try:
        await worker.start()
    finally:
        await close_kv()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
