"""
Multi-queue background job delivery on top of the KV store.

Each named queue owns three collections, plus an id index over the live
(ready and scheduled) entries:

- ready: FIFO list. Producers push on the tail, consumers pop the head.
- scheduled: sorted set scored by due time (epoch milliseconds).
- deadletter: FIFO list of messages that exhausted their retries.
- ids: hash of message id to its live entry, so a retry replaces the
  previous copy in one store-side step.

The queue is pull-based. Nothing here runs on its own: a worker or cron
trigger must call ``flush_due`` and ``pop`` on a cadence.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from outbox_relay.config import get_settings
from outbox_relay.constants import QueueName
from outbox_relay.kv.store import KVStore
from outbox_relay.observability.metrics import get_metrics
from outbox_relay.queue.dedup import Deduplicator
from outbox_relay.queue.keys import QueueKeys
from outbox_relay.types.job import QueueMessage, validate_job_payload
from outbox_relay.types.stats import QueueStats

logger = logging.getLogger(__name__)


def _queue_name(queue: str) -> str:
    """Validate a queue name against the known queues."""
    return QueueName(queue).value


class JobQueue:
    """
    KV-backed job queue with delay, bounded retry, backoff and deadletter.

    Delivery is at-least-once; job handlers must be idempotent.
    """

    def __init__(
        self,
        kv: KVStore,
        keys: QueueKeys | None = None,
        dedup: Deduplicator | None = None,
        backoff_base_ms: int | None = None,
        backoff_cap_ms: int | None = None,
        default_max_retries: int | None = None,
        clock: Callable[[], float] | None = None,
    ):
        """
        Initialize the queue.

        Args:
            kv: Backing key/value store.
            keys: Key layout. Defaults to the configured namespace.
            dedup: Deduplicator sharing the same store and keys.
            backoff_base_ms: Base delay for exponential backoff.
            backoff_cap_ms: Maximum retry delay.
            default_max_retries: Retry budget when enqueue doesn't give one.
            clock: Returns the current epoch time in seconds.
        """
        settings = get_settings()

        self._kv = kv
        self._keys = keys or QueueKeys()
        self._dedup = dedup or Deduplicator(kv, self._keys)
        self._clock = clock or time.time
        self.backoff_base_ms = backoff_base_ms or settings.queue_backoff_base_ms
        self.backoff_cap_ms = backoff_cap_ms or settings.queue_backoff_cap_ms
        self.default_max_retries = (
            default_max_retries
            if default_max_retries is not None
            else settings.queue_default_max_retries
        )
        self._metrics = get_metrics()

    @property
    def dedup(self) -> Deduplicator:
        return self._dedup

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def backoff_ms(self, attempts: int) -> int:
        """Retry delay after ``attempts`` failed attempts."""
        return min(self.backoff_base_ms * (2**attempts), self.backoff_cap_ms)

    async def enqueue(
        self,
        queue: str,
        job_type: str,
        payload: Any,
        delay_ms: int = 0,
        max_retries: int | None = None,
        fingerprint: str | None = None,
    ) -> str | None:
        """
        Submit a job.

        Args:
            queue: Queue name.
            job_type: Job type; its payload model validates ``payload``.
            payload: Job payload.
            delay_ms: Delay before the job becomes visible to ``pop``.
            max_retries: Retry budget for this job.
            fingerprint: Optional submission fingerprint for dedup.

        Returns:
            The message id, or None if the fingerprint was already seen.

        Raises:
            UnknownJobTypeError: If the job type has no payload model.
            InvalidPayloadError: If the payload does not match its model.
        """
        name = _queue_name(queue)
        normalized = validate_job_payload(job_type, payload)

        if fingerprint is not None:
            first = await self._dedup.mark_seen(name, job_type, fingerprint)
            if not first:
                logger.info(
                    "Duplicate job skipped",
                    extra={"queue": name, "job_type": job_type, "fingerprint": fingerprint},
                )
                self._metrics.record_job_duplicate(name, job_type)
                return None

        now_ms = self._now_ms()
        message = QueueMessage(
            id=f"msg_{now_ms}_{uuid4().hex[:9]}",
            type=job_type,
            payload=normalized,
            timestamp=self._now(),
            attempts=0,
            max_retries=max_retries if max_retries is not None else self.default_max_retries,
        )

        live = self._keys.live(name)
        if delay_ms > 0:
            await self._kv.place(live, message.id, message.to_json(), now_ms + delay_ms)
            logger.info(
                "Scheduled job",
                extra={"queue": name, "job_id": message.id, "job_type": job_type, "delay_ms": delay_ms},
            )
        else:
            await self._kv.place(live, message.id, message.to_json())
            logger.info(
                "Enqueued job",
                extra={"queue": name, "job_id": message.id, "job_type": job_type},
            )

        self._metrics.record_job_enqueued(name, job_type)
        return message.id

    async def flush_due(self, queue: str, limit: int = 100) -> int:
        """
        Move due scheduled jobs onto the ready list, earliest first.

        Returns:
            Number of jobs moved.
        """
        name = _queue_name(queue)
        moved = await self._kv.move_due(
            self._keys.scheduled(name),
            self._keys.ready(name),
            self._now_ms(),
            limit,
        )
        if moved:
            logger.info("Flushed due jobs", extra={"queue": name, "count": moved})
        return moved

    async def pop(self, queue: str, limit: int = 10) -> list[QueueMessage]:
        """
        Pop up to ``limit`` jobs from the head of the ready list.

        Entries that cannot be parsed are logged and dropped.
        """
        name = _queue_name(queue)
        ready_key = self._keys.ready(name)
        index_key = self._keys.index(name)
        messages: list[QueueMessage] = []

        for _ in range(limit):
            raw = await self._kv.rpop(ready_key)
            if raw is None:
                break
            try:
                message = QueueMessage.from_json(raw)
            except ValidationError as e:
                logger.error(
                    "Dropping malformed queue message",
                    extra={"queue": name, "error": str(e), "raw": raw[:200]},
                )
                continue

            await self._kv.unindex(index_key, message.id, raw)
            messages.append(message)

        return messages

    async def retry_or_deadletter(
        self,
        queue: str,
        message: QueueMessage,
        error: str | None = None,
    ) -> QueueMessage:
        """
        Record a failed attempt and either reschedule or deadletter.

        Any other live copy of the message id is replaced in the same
        store-side step. The retry delay is ``min(base * 2**attempts, cap)``.

        Args:
            queue: Queue name.
            message: The message that failed.
            error: Failure description.

        Returns:
            The message with updated bookkeeping.
        """
        name = _queue_name(queue)
        updated = message.model_copy(
            update={
                "attempts": message.attempts + 1,
                "last_attempt": self._now(),
                "last_error": error,
            }
        )
        live = self._keys.live(name)

        if updated.is_exhausted:
            await self._kv.bury(live, updated.id, updated.to_json(), self._keys.dead(name))
            logger.error(
                "Job moved to deadletter",
                extra={
                    "queue": name,
                    "job_id": updated.id,
                    "job_type": updated.type,
                    "attempts": updated.attempts,
                    "error": error,
                },
            )
            self._metrics.record_job_completed(name, updated.type, "deadletter")
            return updated

        delay = self.backoff_ms(updated.attempts)
        await self._kv.place(live, updated.id, updated.to_json(), self._now_ms() + delay)
        logger.info(
            "Retrying job",
            extra={
                "queue": name,
                "job_id": updated.id,
                "attempt": updated.attempts,
                "delay_ms": delay,
            },
        )
        self._metrics.record_job_completed(name, updated.type, "retry")
        return updated

    async def deadletter(
        self,
        queue: str,
        message: QueueMessage,
        error: str | None = None,
    ) -> QueueMessage:
        """Move a message straight to deadletter, skipping remaining retries."""
        name = _queue_name(queue)
        updated = message.model_copy(
            update={
                "attempts": message.attempts + 1,
                "last_attempt": self._now(),
                "last_error": error,
            }
        )
        await self._kv.bury(
            self._keys.live(name), updated.id, updated.to_json(), self._keys.dead(name)
        )
        logger.error(
            "Job deadlettered after permanent failure",
            extra={"queue": name, "job_id": updated.id, "job_type": updated.type, "error": error},
        )
        self._metrics.record_job_completed(name, updated.type, "deadletter")
        return updated

    async def is_duplicate(self, queue: str, job_type: str, payload: Any) -> bool:
        """
        Claim completion of a logical job.

        Returns:
            True if the same ``(job_type, payload)`` was already claimed
            within the dedup TTL.
        """
        return await self._dedup.is_duplicate(_queue_name(queue), job_type, payload)

    async def forget_done(self, queue: str, job_type: str, payload: Any) -> None:
        """Release a completion claim so a failed job can run again."""
        await self._dedup.forget(_queue_name(queue), job_type, payload)

    async def stats(self, queue: str) -> QueueStats:
        """Get ready/scheduled/dead counts for a queue."""
        name = _queue_name(queue)
        ready, scheduled, dead = await asyncio.gather(
            self._kv.llen(self._keys.ready(name)),
            self._kv.zcard(self._keys.scheduled(name)),
            self._kv.llen(self._keys.dead(name)),
        )
        self._metrics.update_queue_depth(name, ready + scheduled)
        return QueueStats(ready=ready or 0, scheduled=scheduled or 0, dead=dead or 0)

    async def peek_deadletter(self, queue: str, limit: int = 50) -> list[QueueMessage]:
        """List up to ``limit`` deadlettered messages, oldest first, without removing them."""
        name = _queue_name(queue)
        raw_items = await self._kv.lrange(self._keys.dead(name), -limit, -1)
        messages: list[QueueMessage] = []
        for raw in reversed(raw_items):
            try:
                messages.append(QueueMessage.from_json(raw))
            except ValidationError:
                logger.warning("Skipping malformed deadletter entry", extra={"queue": name})
        return messages

    async def retry_deadletter(self, queue: str, count: int = 10) -> int:
        """
        Move up to ``count`` deadlettered messages back to ready.

        Attempts are reset and the last error cleared; the message id is kept.

        Returns:
            Number of messages requeued.
        """
        name = _queue_name(queue)
        dead_key = self._keys.dead(name)
        retried = 0

        for _ in range(count):
            raw = await self._kv.rpop(dead_key)
            if raw is None:
                break
            try:
                message = QueueMessage.from_json(raw)
            except ValidationError as e:
                logger.error(
                    "Failed to retry deadletter message",
                    extra={"queue": name, "error": str(e)},
                )
                continue

            restored = message.model_copy(update={"attempts": 0, "last_error": None})
            await self._kv.place(self._keys.live(name), restored.id, restored.to_json())
            retried += 1

        if retried:
            logger.info("Requeued deadletter jobs", extra={"queue": name, "count": retried})
        return retried

    async def clear(self, queue: str) -> None:
        """Delete all collections of a queue and its id index. Destructive."""
        name = _queue_name(queue)
        await self._kv.delete(
            self._keys.ready(name),
            self._keys.scheduled(name),
            self._keys.dead(name),
            self._keys.index(name),
        )
        logger.warning("Cleared queue", extra={"queue": name})
