"""
Unit tests for the KV-backed job queue.
"""

from typing import Any

import pytest

from outbox_relay.constants import JobType, QueueName
from outbox_relay.exceptions import InvalidPayloadError, UnknownJobTypeError
from outbox_relay.kv.store import InMemoryKVStore, RedisKVStore
from outbox_relay.queue import JobQueue, QueueKeys
from outbox_relay.types.job import QueueMessage


def alert_payload(n: int = 1) -> dict[str, Any]:
    return {"workspace_id": f"ws-{n}", "alert_type": "hazmat_mismatch"}


class TestEnqueue:
    """Tests for job submission."""

    @pytest.mark.asyncio
    async def test_enqueue_goes_to_ready(self, job_queue: JobQueue):
        """Test that an immediate job is poppable with attempts at zero."""
        job_id = await job_queue.enqueue("jobs", JobType.ALERT, alert_payload())

        assert job_id is not None
        assert job_id.startswith("msg_")

        messages = await job_queue.pop("jobs", 10)
        assert len(messages) == 1
        assert messages[0].id == job_id
        assert messages[0].type == "alert"
        assert messages[0].attempts == 0
        assert messages[0].max_retries == 3
        assert messages[0].payload["alert_type"] == "hazmat_mismatch"

    @pytest.mark.asyncio
    async def test_enqueue_with_fingerprint_is_deduplicated(self, job_queue: JobQueue):
        """Test that a second submission with the same fingerprint is dropped."""
        first = await job_queue.enqueue(
            "jobs", JobType.ALERT, alert_payload(1), fingerprint="fp-1"
        )
        second = await job_queue.enqueue(
            "jobs", JobType.ALERT, alert_payload(2), fingerprint="fp-1"
        )

        assert first is not None
        assert second is None

        stats = await job_queue.stats("jobs")
        assert stats.ready == 1

    @pytest.mark.asyncio
    async def test_fingerprint_expires_after_ttl(self, job_queue: JobQueue, clock):
        """Test that the same fingerprint is accepted again after 24h."""
        await job_queue.enqueue("jobs", JobType.ALERT, alert_payload(), fingerprint="fp-1")

        clock.advance(24 * 60 * 60)

        assert await job_queue.enqueue(
            "jobs", JobType.ALERT, alert_payload(), fingerprint="fp-1"
        ) is not None

    @pytest.mark.asyncio
    async def test_delayed_job_invisible_until_flushed(self, job_queue: JobQueue, clock):
        """Test that a delayed job only becomes poppable once due and flushed."""
        job_id = await job_queue.enqueue("jobs", JobType.ALERT, alert_payload(), delay_ms=5000)

        assert await job_queue.pop("jobs", 10) == []
        assert await job_queue.flush_due("jobs") == 0

        clock.advance_ms(5000)

        assert await job_queue.flush_due("jobs") == 1
        messages = await job_queue.pop("jobs", 10)
        assert [m.id for m in messages] == [job_id]

    @pytest.mark.asyncio
    async def test_enqueue_rejects_unknown_job_type(self, job_queue: JobQueue):
        """Test that job types without a payload model are refused."""
        with pytest.raises(UnknownJobTypeError):
            await job_queue.enqueue("jobs", "send_fax", {})

    @pytest.mark.asyncio
    async def test_enqueue_rejects_invalid_payload(self, job_queue: JobQueue):
        """Test that payloads are validated before anything is written."""
        with pytest.raises(InvalidPayloadError):
            await job_queue.enqueue("jobs", JobType.ALERT, {"workspace_id": "ws-1"})

        stats = await job_queue.stats("jobs")
        assert stats.ready == 0

    @pytest.mark.asyncio
    async def test_enqueue_rejects_unknown_queue(self, job_queue: JobQueue):
        """Test that only the known queues are accepted."""
        with pytest.raises(ValueError):
            await job_queue.enqueue("emails", JobType.ALERT, alert_payload())


class TestPop:
    """Tests for consumption."""

    @pytest.mark.asyncio
    async def test_pop_is_fifo_and_respects_limit(self, job_queue: JobQueue):
        """Test that pop returns jobs in submission order, up to the limit."""
        ids = [await job_queue.enqueue("jobs", JobType.ALERT, alert_payload(n)) for n in range(5)]

        first = await job_queue.pop("jobs", 3)
        rest = await job_queue.pop("jobs", 10)

        assert [m.id for m in first] == ids[:3]
        assert [m.id for m in rest] == ids[3:]

    @pytest.mark.asyncio
    async def test_pop_drops_malformed_entries(
        self,
        job_queue: JobQueue,
        kv: InMemoryKVStore,
        keys: QueueKeys,
    ):
        """Test that unparseable entries are dropped and parsing continues."""
        await kv.place(keys.live("jobs"), "garbled", "{not json")
        job_id = await job_queue.enqueue("jobs", JobType.ALERT, alert_payload())

        messages = await job_queue.pop("jobs", 10)

        assert [m.id for m in messages] == [job_id]
        assert await kv.llen(keys.ready("jobs")) == 0

    @pytest.mark.asyncio
    async def test_message_round_trips_through_storage(self, job_queue: JobQueue, kv, keys):
        """Test that stored messages use camelCase keys and parse back unchanged."""
        await job_queue.enqueue("jobs", JobType.ALERT, alert_payload(), max_retries=7)

        raw = (await kv.lrange(keys.ready("jobs")))[0]
        assert '"maxRetries":7' in raw
        assert '"lastError":null' in raw

        [message] = await job_queue.pop("jobs", 1)
        assert QueueMessage.from_json(message.to_json()) == message


class TestRetryAndDeadletter:
    """Tests for failure handling."""

    @pytest.mark.asyncio
    async def test_retry_reschedules_with_backoff(self, job_queue: JobQueue, clock):
        """Test that a failed job comes back after the backoff delay."""
        await job_queue.enqueue("jobs", JobType.ALERT, alert_payload())
        [message] = await job_queue.pop("jobs", 1)

        updated = await job_queue.retry_or_deadletter("jobs", message, "boom")

        assert updated.id == message.id
        assert updated.attempts == 1
        assert updated.last_error == "boom"
        assert updated.last_attempt is not None

        stats = await job_queue.stats("jobs")
        assert stats.scheduled == 1
        assert stats.ready == 0

        # delay = min(1000 * 2**1, 60000)
        clock.advance_ms(1999)
        assert await job_queue.flush_due("jobs") == 0
        clock.advance_ms(1)
        assert await job_queue.flush_due("jobs") == 1

        [again] = await job_queue.pop("jobs", 1)
        assert again.id == message.id
        assert again.attempts == 1

    @pytest.mark.asyncio
    async def test_exhausted_job_deadlettered_exactly_once(self, job_queue: JobQueue, clock):
        """Test that a job failing max_retries times ends in deadletter once."""
        await job_queue.enqueue("jobs", JobType.ALERT, alert_payload(), max_retries=2)

        for _ in range(2):
            clock.advance(120)
            await job_queue.flush_due("jobs")
            [message] = await job_queue.pop("jobs", 1)
            await job_queue.retry_or_deadletter("jobs", message, "still failing")

        stats = await job_queue.stats("jobs")
        assert stats.dead == 1
        assert stats.ready == 0
        assert stats.scheduled == 0

        [dead] = await job_queue.peek_deadletter("jobs")
        assert dead.attempts == 2
        assert dead.last_error == "still failing"

    @pytest.mark.asyncio
    async def test_retry_purges_other_live_copies(self, job_queue: JobQueue):
        """Test that rescheduling removes stale copies of the same message id."""
        await job_queue.enqueue("jobs", JobType.ALERT, alert_payload())
        [message] = await job_queue.pop("jobs", 1)

        await job_queue.retry_or_deadletter("jobs", message, "first")
        await job_queue.retry_or_deadletter("jobs", message, "again")

        stats = await job_queue.stats("jobs")
        assert stats.scheduled == 1

    @pytest.mark.asyncio
    async def test_retry_replaces_copy_flushed_back_to_ready(self, job_queue: JobQueue, clock):
        """Test that a stale copy already flushed to ready is replaced, not duplicated."""
        await job_queue.enqueue("jobs", JobType.ALERT, alert_payload())
        [message] = await job_queue.pop("jobs", 1)
        await job_queue.retry_or_deadletter("jobs", message, "first")
        clock.advance(5)
        assert await job_queue.flush_due("jobs") == 1

        await job_queue.retry_or_deadletter("jobs", message, "again")

        stats = await job_queue.stats("jobs")
        assert (stats.ready, stats.scheduled) == (0, 1)

    @pytest.mark.asyncio
    async def test_retry_does_not_read_the_backlog(
        self,
        job_queue: JobQueue,
        kv: InMemoryKVStore,
        monkeypatch: pytest.MonkeyPatch,
    ):
        """Test that failing one job never lists the ready or scheduled collections."""
        for n in range(50):
            await job_queue.enqueue("jobs", JobType.ALERT, alert_payload(n))
            await job_queue.enqueue("jobs", JobType.ALERT, alert_payload(n), delay_ms=60000)
        [message] = await job_queue.pop("jobs", 1)

        async def no_listing(*args, **kwargs):
            raise AssertionError("backlog was listed")

        monkeypatch.setattr(kv, "lrange", no_listing)
        await job_queue.retry_or_deadletter("jobs", message, "boom")
        await job_queue.deadletter("jobs", message, "gone")

        stats = await job_queue.stats("jobs")
        assert (stats.ready, stats.scheduled, stats.dead) == (49, 50, 1)

    @pytest.mark.asyncio
    async def test_backoff_is_capped(self, job_queue: JobQueue):
        """Test the exponential backoff schedule and its cap."""
        assert job_queue.backoff_ms(0) == 1000
        assert job_queue.backoff_ms(1) == 2000
        assert job_queue.backoff_ms(3) == 8000
        assert job_queue.backoff_ms(10) == 60000

    @pytest.mark.asyncio
    async def test_deadletter_skips_remaining_retries(self, job_queue: JobQueue):
        """Test that a permanent failure goes straight to deadletter."""
        await job_queue.enqueue("jobs", JobType.ALERT, alert_payload(), max_retries=5)
        [message] = await job_queue.pop("jobs", 1)

        await job_queue.deadletter("jobs", message, "HTTP 404")

        stats = await job_queue.stats("jobs")
        assert stats.dead == 1
        assert stats.scheduled == 0

    @pytest.mark.asyncio
    async def test_retry_deadletter_resets_attempts(self, job_queue: JobQueue):
        """Test that requeued deadletters keep their id and start over."""
        await job_queue.enqueue("jobs", JobType.ALERT, alert_payload(), max_retries=1)
        [message] = await job_queue.pop("jobs", 1)
        await job_queue.retry_or_deadletter("jobs", message, "boom")

        assert await job_queue.retry_deadletter("jobs", 10) == 1

        [requeued] = await job_queue.pop("jobs", 1)
        assert requeued.id == message.id
        assert requeued.attempts == 0
        assert requeued.last_error is None
        assert (await job_queue.stats("jobs")).dead == 0

    @pytest.mark.asyncio
    async def test_retry_deadletter_oldest_first(self, job_queue: JobQueue):
        """Test that retry_deadletter drains the oldest entries first."""
        ids = []
        for n in range(3):
            job_id = await job_queue.enqueue("jobs", JobType.ALERT, alert_payload(n), max_retries=0)
            [message] = await job_queue.pop("jobs", 1)
            await job_queue.retry_or_deadletter("jobs", message, "boom")
            ids.append(job_id)

        assert [m.id for m in await job_queue.peek_deadletter("jobs")] == ids

        assert await job_queue.retry_deadletter("jobs", 2) == 2
        requeued = await job_queue.pop("jobs", 10)
        assert [m.id for m in requeued] == ids[:2]


class TestStatsAndClear:
    """Tests for observability and cleanup."""

    @pytest.mark.asyncio
    async def test_queues_are_isolated(self, job_queue: JobQueue):
        """Test that each named queue has its own collections."""
        await job_queue.enqueue(QueueName.JOBS, JobType.ALERT, alert_payload())
        await job_queue.enqueue(QueueName.ALERTS, JobType.ALERT, alert_payload(), delay_ms=1000)

        jobs = await job_queue.stats("jobs")
        alerts = await job_queue.stats("alerts")

        assert (jobs.ready, jobs.scheduled, jobs.dead) == (1, 0, 0)
        assert (alerts.ready, alerts.scheduled, alerts.dead) == (0, 1, 0)

    @pytest.mark.asyncio
    async def test_clear_removes_all_collections(self, job_queue: JobQueue):
        """Test that clear empties ready, scheduled and deadletter."""
        await job_queue.enqueue("jobs", JobType.ALERT, alert_payload(1))
        await job_queue.enqueue("jobs", JobType.ALERT, alert_payload(2), delay_ms=1000)
        await job_queue.enqueue("jobs", JobType.ALERT, alert_payload(3), max_retries=0)
        messages = await job_queue.pop("jobs", 10)
        await job_queue.retry_or_deadletter("jobs", messages[-1], "boom")

        await job_queue.clear("jobs")

        stats = await job_queue.stats("jobs")
        assert (stats.ready, stats.scheduled, stats.dead) == (0, 0, 0)


class TestJobQueueOnRedis:
    """Tests for the queue lifecycle over the Redis backend's Lua scripts."""

    @pytest.fixture
    def redis_queue(self, redis_kv: RedisKVStore, keys: QueueKeys, clock) -> JobQueue:
        return JobQueue(
            redis_kv,
            keys=keys,
            backoff_base_ms=1000,
            backoff_cap_ms=60000,
            default_max_retries=3,
            clock=clock,
        )

    @pytest.mark.asyncio
    async def test_delayed_job_flushes_in_due_order(self, redis_queue: JobQueue, clock):
        """Test that scheduled jobs become ready earliest first, behind ready ones."""
        ready_id = await redis_queue.enqueue("jobs", JobType.ALERT, alert_payload(1))
        late_id = await redis_queue.enqueue("jobs", JobType.ALERT, alert_payload(2), delay_ms=2000)
        early_id = await redis_queue.enqueue("jobs", JobType.ALERT, alert_payload(3), delay_ms=1000)

        assert await redis_queue.flush_due("jobs") == 0
        clock.advance(2)
        assert await redis_queue.flush_due("jobs") == 2

        messages = await redis_queue.pop("jobs", 10)
        assert [m.id for m in messages] == [ready_id, early_id, late_id]

    @pytest.mark.asyncio
    async def test_retry_then_deadletter(self, redis_queue: JobQueue, clock):
        """Test retries replacing earlier copies until the message is deadlettered."""
        await redis_queue.enqueue("jobs", JobType.ALERT, alert_payload(), max_retries=2)
        [message] = await redis_queue.pop("jobs", 1)

        await redis_queue.retry_or_deadletter("jobs", message, "first")
        await redis_queue.retry_or_deadletter("jobs", message, "again")
        assert (await redis_queue.stats("jobs")).scheduled == 1

        clock.advance(10)
        await redis_queue.flush_due("jobs")
        [retried] = await redis_queue.pop("jobs", 1)
        assert retried.attempts == 1

        dead = await redis_queue.retry_or_deadletter("jobs", retried, "final")

        assert dead.attempts == 2
        stats = await redis_queue.stats("jobs")
        assert (stats.ready, stats.scheduled, stats.dead) == (0, 0, 1)
        [peeked] = await redis_queue.peek_deadletter("jobs")
        assert peeked.last_error == "final"

    @pytest.mark.asyncio
    async def test_retry_deadletter_and_clear(self, redis_queue: JobQueue, fake_redis, keys):
        """Test requeueing deadletters and clearing every queue key."""
        await redis_queue.enqueue("jobs", JobType.ALERT, alert_payload(), max_retries=5)
        [message] = await redis_queue.pop("jobs", 1)
        await redis_queue.deadletter("jobs", message, "HTTP 404")

        assert await redis_queue.retry_deadletter("jobs", 10) == 1
        [restored] = await redis_queue.pop("jobs", 1)
        assert (restored.id, restored.attempts) == (message.id, 0)

        await redis_queue.enqueue("jobs", JobType.ALERT, alert_payload(2), delay_ms=5000)
        await redis_queue.clear("jobs")

        stats = await redis_queue.stats("jobs")
        assert (stats.ready, stats.scheduled, stats.dead) == (0, 0, 0)
        assert await fake_redis.exists(keys.index("jobs")) == 0
