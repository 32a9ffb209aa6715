"""
Unit tests for the KV store adapters.

Behavioural cases run against every backend through ``any_kv``: the
in-memory store, ``RedisKVStore`` over fakeredis (which executes the Lua
scripts), and a real Redis when ``TEST_REDIS_URL`` is set.
"""

import pytest

from outbox_relay.kv.store import InMemoryKVStore, KVStore, LiveKeys

LIVE = LiveKeys(index="ids", scheduled="scheduled", ready="ready")


class TestKVStore:
    """Tests shared by all KV backends."""

    @pytest.mark.asyncio
    async def test_set_nx_only_sets_once(self, any_kv: KVStore):
        """Test that set_nx refuses to overwrite a live key."""
        assert await any_kv.set_nx("k", "a", ttl_seconds=10) is True
        assert await any_kv.set_nx("k", "b", ttl_seconds=10) is False
        assert await any_kv.get("k") == "a"

    @pytest.mark.asyncio
    async def test_delete_if_equals(self, any_kv: KVStore):
        """Test compare-and-delete only removes a matching value."""
        await any_kv.set_nx("lock", "token-1", ttl_seconds=30)

        assert await any_kv.delete_if_equals("lock", "token-2") is False
        assert await any_kv.get("lock") == "token-1"

        assert await any_kv.delete_if_equals("lock", "token-1") is True
        assert await any_kv.get("lock") is None
        assert await any_kv.delete_if_equals("lock", "token-1") is False

    @pytest.mark.asyncio
    async def test_ready_list_is_fifo(self, any_kv: KVStore):
        """Test that members placed without a score pop in insertion order."""
        await any_kv.place(LIVE, "1", "first")
        await any_kv.place(LIVE, "2", "second")
        await any_kv.place(LIVE, "3", "third")

        assert await any_kv.llen("ready") == 3
        assert await any_kv.lrange("ready") == ["third", "second", "first"]
        assert await any_kv.lrange("ready", -2, -1) == ["second", "first"]
        assert await any_kv.rpop("ready") == "first"
        assert await any_kv.rpop("ready") == "second"
        assert await any_kv.rpop("ready") == "third"
        assert await any_kv.rpop("ready") is None

    @pytest.mark.asyncio
    async def test_place_replaces_scheduled_copy(self, any_kv: KVStore):
        """Test that placing an id again removes its previous scheduled entry."""
        assert await any_kv.place(LIVE, "m1", "m1-v1", score=100) == 0
        await any_kv.place(LIVE, "m2", "m2-v1", score=200)

        assert await any_kv.place(LIVE, "m1", "m1-v2", score=300) == 1

        assert await any_kv.zcard("scheduled") == 2
        assert await any_kv.move_due("scheduled", "ready", max_score=1000, limit=10) == 2
        assert await any_kv.rpop("ready") == "m2-v1"
        assert await any_kv.rpop("ready") == "m1-v2"

    @pytest.mark.asyncio
    async def test_place_replaces_copy_in_ready(self, any_kv: KVStore):
        """Test that a copy already moved to ready is removed by the next placement."""
        await any_kv.place(LIVE, "m1", "m1-v1", score=100)
        await any_kv.place(LIVE, "m2", "m2-v1")
        await any_kv.move_due("scheduled", "ready", max_score=100, limit=10)

        assert await any_kv.place(LIVE, "m1", "m1-v2", score=500) == 1

        assert await any_kv.lrange("ready") == ["m2-v1"]
        assert await any_kv.zcard("scheduled") == 1

    @pytest.mark.asyncio
    async def test_bury_moves_to_dead_and_unindexes(self, any_kv: KVStore):
        """Test that burying removes the live copy and forgets the id."""
        await any_kv.place(LIVE, "m1", "m1-v1", score=100)

        assert await any_kv.bury(LIVE, "m1", "m1-dead", "dead") == 1
        assert await any_kv.zcard("scheduled") == 0
        assert await any_kv.lrange("dead") == ["m1-dead"]

        # Nothing indexed anymore, so a second bury has nothing to purge
        assert await any_kv.bury(LIVE, "m1", "m1-dead-again", "dead") == 0
        assert await any_kv.llen("dead") == 2

    @pytest.mark.asyncio
    async def test_unindex_only_when_member_matches(self, any_kv: KVStore):
        """Test that a popped entry only clears the index if it is still current."""
        await any_kv.place(LIVE, "m1", "m1-v1")
        popped = await any_kv.rpop("ready")
        await any_kv.place(LIVE, "m1", "m1-v2", score=100)

        assert await any_kv.unindex("ids", "m1", popped) is False
        assert await any_kv.place(LIVE, "m1", "m1-v3", score=200) == 1

        await any_kv.move_due("scheduled", "ready", max_score=1000, limit=10)
        current = await any_kv.rpop("ready")
        assert current == "m1-v3"
        assert await any_kv.unindex("ids", "m1", current) is True
        assert await any_kv.place(LIVE, "m1", "m1-v4") == 0

    @pytest.mark.asyncio
    async def test_move_due_moves_earliest_first(self, any_kv: KVStore):
        """Test that due members move to the list in due-time order."""
        await any_kv.place(LIVE, "c", "c", score=30)
        await any_kv.place(LIVE, "a", "a", score=10)
        await any_kv.place(LIVE, "b", "b", score=20)
        await any_kv.place(LIVE, "future", "future", score=1000)

        moved = await any_kv.move_due("scheduled", "ready", max_score=30, limit=2)

        assert moved == 2
        assert await any_kv.rpop("ready") == "a"
        assert await any_kv.rpop("ready") == "b"
        assert await any_kv.zcard("scheduled") == 2

    @pytest.mark.asyncio
    async def test_move_due_appends_behind_ready_entries(self, any_kv: KVStore):
        """Test that flushed members queue up behind entries already ready."""
        await any_kv.place(LIVE, "old", "old")
        await any_kv.place(LIVE, "a", "a", score=10)
        await any_kv.place(LIVE, "b", "b", score=20)

        await any_kv.move_due("scheduled", "ready", max_score=20, limit=10)

        assert [await any_kv.rpop("ready") for _ in range(3)] == ["old", "a", "b"]

    @pytest.mark.asyncio
    async def test_move_due_with_nothing_due(self, any_kv: KVStore):
        """Test that move_due is a no-op when nothing is due."""
        await any_kv.place(LIVE, "future", "future", score=1000)

        assert await any_kv.move_due("scheduled", "ready", max_score=10, limit=100) == 0
        assert await any_kv.llen("ready") == 0

    @pytest.mark.asyncio
    async def test_delete_removes_every_kind_of_key(self, any_kv: KVStore):
        """Test that delete removes values, lists, sorted sets and the index."""
        await any_kv.set_nx("v", "1", ttl_seconds=10)
        await any_kv.place(LIVE, "m1", "m1")
        await any_kv.place(LIVE, "m2", "m2", score=1)

        assert await any_kv.delete("v", "ready", "scheduled", "ids", "missing") == 4
        assert await any_kv.get("v") is None
        assert await any_kv.llen("ready") == 0
        assert await any_kv.zcard("scheduled") == 0
        assert await any_kv.unindex("ids", "m1", "m1") is False


class TestInMemoryKVStore:
    """Tests specific to the in-memory backend's injectable clock."""

    @pytest.mark.asyncio
    async def test_set_nx_after_ttl_expiry(self, kv: InMemoryKVStore, clock):
        """Test that an expired key can be set again."""
        await kv.set_nx("k", "a", ttl_seconds=10)

        clock.advance(10)

        assert await kv.get("k") is None
        assert await kv.set_nx("k", "b", ttl_seconds=10) is True
