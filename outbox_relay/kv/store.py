"""
Key/value store adapters.

The job queue, deduplicator and distributed lock only talk to the
``KVStore`` interface. ``RedisKVStore`` is the production backend;
``InMemoryKVStore`` keeps the same semantics inside one process and
is used for local development and tests.

Live queue entries (ready and scheduled) are indexed by message id in a
hash, so replacing or burying a message removes its previous copy without
scanning the collections.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable
from typing import NamedTuple

from redis.asyncio import Redis

# Moves every due member of a sorted set onto the head of a list in one step.
_MOVE_DUE_SCRIPT = """
local due = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, ARGV[2])
for _, member in ipairs(due) do
    redis.call('LPUSH', KEYS[2], member)
    redis.call('ZREM', KEYS[1], member)
end
return #due
"""

_DELETE_IF_EQUALS_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""

# KEYS: index, scheduled, ready. ARGV[1]: message id.
_PURGE_PREAMBLE = """
local old = redis.call('HGET', KEYS[1], ARGV[1])
local purged = 0
if old then
    purged = redis.call('ZREM', KEYS[2], old)
    if purged == 0 then
        purged = redis.call('LREM', KEYS[3], 0, old)
    end
end
"""

# ARGV[2]: member, ARGV[3]: score, or '' for the ready list.
_PLACE_SCRIPT = _PURGE_PREAMBLE + """
if ARGV[3] == '' then
    redis.call('LPUSH', KEYS[3], ARGV[2])
else
    redis.call('ZADD', KEYS[2], ARGV[3], ARGV[2])
end
redis.call('HSET', KEYS[1], ARGV[1], ARGV[2])
return purged
"""

# KEYS[4]: deadletter list. ARGV[2]: member.
_BURY_SCRIPT = _PURGE_PREAMBLE + """
redis.call('HDEL', KEYS[1], ARGV[1])
redis.call('LPUSH', KEYS[4], ARGV[2])
return purged
"""

_UNINDEX_SCRIPT = """
if redis.call('HGET', KEYS[1], ARGV[1]) == ARGV[2] then
    return redis.call('HDEL', KEYS[1], ARGV[1])
end
return 0
"""


class LiveKeys(NamedTuple):
    """Keys of one queue's live collections and the id index over them."""

    index: str
    scheduled: str
    ready: str


class KVStore(ABC):
    """
    Atomic key/value primitives used by the job queue.

    Lists follow Redis semantics: pushes go to the left (tail of the
    queue), ``rpop`` removes from the right (head of the queue).
    """

    @abstractmethod
    async def ping(self) -> bool:
        """Check connectivity."""

    @abstractmethod
    async def set_nx(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Set ``key`` only if absent, with a TTL. Returns True if it was set."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Get a string value."""

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete keys of any kind. Returns the number removed."""

    @abstractmethod
    async def delete_if_equals(self, key: str, value: str) -> bool:
        """Delete ``key`` only if it currently holds ``value``."""

    @abstractmethod
    async def rpop(self, key: str) -> str | None:
        """Pop one value from the right of a list."""

    @abstractmethod
    async def llen(self, key: str) -> int:
        """Length of a list."""

    @abstractmethod
    async def lrange(self, key: str, start: int = 0, stop: int = -1) -> list[str]:
        """Slice of a list, ``stop`` inclusive."""

    @abstractmethod
    async def zcard(self, key: str) -> int:
        """Size of a sorted set."""

    @abstractmethod
    async def place(
        self,
        live: LiveKeys,
        message_id: str,
        member: str,
        score: float | None = None,
    ) -> int:
        """
        Atomically replace the live copy of ``message_id`` with ``member``.

        The previous indexed copy is removed from scheduled or ready, then
        ``member`` is added to scheduled at ``score``, or pushed onto ready
        when ``score`` is None, and indexed.

        Returns:
            Number of stale copies removed (0 or 1).
        """

    @abstractmethod
    async def bury(self, live: LiveKeys, message_id: str, member: str, dead_key: str) -> int:
        """
        Atomically remove the live copy of ``message_id`` and push ``member``
        onto ``dead_key``. The message is no longer indexed afterwards.
        """

    @abstractmethod
    async def unindex(self, index_key: str, message_id: str, member: str) -> bool:
        """Drop the index entry for a popped message if it still points at ``member``."""

    @abstractmethod
    async def move_due(
        self,
        scheduled_key: str,
        ready_key: str,
        max_score: float,
        limit: int,
    ) -> int:
        """
        Atomically move up to ``limit`` members with score <= ``max_score``
        from a sorted set onto the left of a list, earliest first.
        """


class RedisKVStore(KVStore):
    """KV store backed by Redis through the asyncio client."""

    def __init__(self, redis: Redis):
        self._redis = redis
        self._move_due = redis.register_script(_MOVE_DUE_SCRIPT)
        self._delete_if_equals = redis.register_script(_DELETE_IF_EQUALS_SCRIPT)
        self._place = redis.register_script(_PLACE_SCRIPT)
        self._bury = redis.register_script(_BURY_SCRIPT)
        self._unindex = redis.register_script(_UNINDEX_SCRIPT)

    @property
    def client(self) -> Redis:
        return self._redis

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def set_nx(self, key: str, value: str, ttl_seconds: int) -> bool:
        return bool(await self._redis.set(key, value, nx=True, ex=ttl_seconds))

    async def get(self, key: str) -> str | None:
        return await self._redis.get(key)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._redis.delete(*keys)

    async def delete_if_equals(self, key: str, value: str) -> bool:
        return bool(await self._delete_if_equals(keys=[key], args=[value]))

    async def rpop(self, key: str) -> str | None:
        return await self._redis.rpop(key)

    async def llen(self, key: str) -> int:
        return await self._redis.llen(key)

    async def lrange(self, key: str, start: int = 0, stop: int = -1) -> list[str]:
        return await self._redis.lrange(key, start, stop)

    async def zcard(self, key: str) -> int:
        return await self._redis.zcard(key)

    async def place(
        self,
        live: LiveKeys,
        message_id: str,
        member: str,
        score: float | None = None,
    ) -> int:
        purged = await self._place(
            keys=[live.index, live.scheduled, live.ready],
            args=[message_id, member, "" if score is None else score],
        )
        return int(purged or 0)

    async def bury(self, live: LiveKeys, message_id: str, member: str, dead_key: str) -> int:
        purged = await self._bury(
            keys=[live.index, live.scheduled, live.ready, dead_key],
            args=[message_id, member],
        )
        return int(purged or 0)

    async def unindex(self, index_key: str, message_id: str, member: str) -> bool:
        return bool(await self._unindex(keys=[index_key], args=[message_id, member]))

    async def move_due(
        self,
        scheduled_key: str,
        ready_key: str,
        max_score: float,
        limit: int,
    ) -> int:
        moved = await self._move_due(
            keys=[scheduled_key, ready_key],
            args=[max_score, limit],
        )
        return int(moved or 0)


def _slice(items: list[str], start: int, stop: int) -> list[str]:
    size = len(items)
    if start < 0:
        start = max(size + start, 0)
    if stop < 0:
        stop = size + stop
    return items[start : stop + 1]


class InMemoryKVStore(KVStore):
    """
    Single-process KV store with the same atomicity guarantees as Redis.

    Every operation runs under one asyncio lock. ``clock`` returns seconds
    and drives TTL expiry; tests inject a fake clock to fast-forward time.
    """

    def __init__(self, clock: Callable[[], float] | None = None):
        self._clock = clock or time.monotonic
        self._lock = asyncio.Lock()
        self._values: dict[str, tuple[str, float | None]] = {}
        self._lists: dict[str, deque[str]] = {}
        self._zsets: dict[str, dict[str, float]] = {}
        self._hashes: dict[str, dict[str, str]] = {}

    def _live_value(self, key: str) -> str | None:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._values[key]
            return None
        return value

    def _sorted_members(self, key: str) -> list[tuple[str, float]]:
        zset = self._zsets.get(key, {})
        return sorted(zset.items(), key=lambda item: (item[1], item[0]))

    def _push(self, key: str, value: str) -> None:
        self._lists.setdefault(key, deque()).appendleft(value)

    def _remove_from_list(self, key: str, value: str) -> int:
        items = self._lists.get(key)
        if not items:
            return 0
        kept = deque(item for item in items if item != value)
        removed = len(items) - len(kept)
        if kept:
            self._lists[key] = kept
        else:
            del self._lists[key]
        return removed

    def _remove_from_zset(self, key: str, member: str) -> int:
        zset = self._zsets.get(key)
        if not zset or member not in zset:
            return 0
        del zset[member]
        if not zset:
            del self._zsets[key]
        return 1

    def _purge(self, live: LiveKeys, message_id: str) -> int:
        old = self._hashes.get(live.index, {}).get(message_id)
        if old is None:
            return 0
        purged = self._remove_from_zset(live.scheduled, old)
        if not purged:
            purged = self._remove_from_list(live.ready, old)
        return purged

    def _hdel(self, key: str, field: str) -> None:
        index = self._hashes.get(key)
        if index is not None:
            index.pop(field, None)
            if not index:
                del self._hashes[key]

    async def ping(self) -> bool:
        return True

    async def set_nx(self, key: str, value: str, ttl_seconds: int) -> bool:
        async with self._lock:
            if self._live_value(key) is not None:
                return False
            self._values[key] = (value, self._clock() + ttl_seconds)
            return True

    async def get(self, key: str) -> str | None:
        async with self._lock:
            return self._live_value(key)

    async def delete(self, *keys: str) -> int:
        async with self._lock:
            removed = 0
            for key in keys:
                if self._live_value(key) is not None:
                    del self._values[key]
                    removed += 1
                for collection in (self._lists, self._zsets, self._hashes):
                    if collection.pop(key, None) is not None:
                        removed += 1
            return removed

    async def delete_if_equals(self, key: str, value: str) -> bool:
        async with self._lock:
            if self._live_value(key) != value:
                return False
            del self._values[key]
            return True

    async def rpop(self, key: str) -> str | None:
        async with self._lock:
            items = self._lists.get(key)
            if not items:
                return None
            value = items.pop()
            if not items:
                del self._lists[key]
            return value

    async def llen(self, key: str) -> int:
        async with self._lock:
            return len(self._lists.get(key, ()))

    async def lrange(self, key: str, start: int = 0, stop: int = -1) -> list[str]:
        async with self._lock:
            return _slice(list(self._lists.get(key, ())), start, stop)

    async def zcard(self, key: str) -> int:
        async with self._lock:
            return len(self._zsets.get(key, {}))

    async def place(
        self,
        live: LiveKeys,
        message_id: str,
        member: str,
        score: float | None = None,
    ) -> int:
        async with self._lock:
            purged = self._purge(live, message_id)
            if score is None:
                self._push(live.ready, member)
            else:
                self._zsets.setdefault(live.scheduled, {})[member] = float(score)
            self._hashes.setdefault(live.index, {})[message_id] = member
            return purged

    async def bury(self, live: LiveKeys, message_id: str, member: str, dead_key: str) -> int:
        async with self._lock:
            purged = self._purge(live, message_id)
            self._hdel(live.index, message_id)
            self._push(dead_key, member)
            return purged

    async def unindex(self, index_key: str, message_id: str, member: str) -> bool:
        async with self._lock:
            if self._hashes.get(index_key, {}).get(message_id) != member:
                return False
            self._hdel(index_key, message_id)
            return True

    async def move_due(
        self,
        scheduled_key: str,
        ready_key: str,
        max_score: float,
        limit: int,
    ) -> int:
        async with self._lock:
            due = [
                member
                for member, score in self._sorted_members(scheduled_key)
                if score <= max_score
            ][:limit]
            if not due:
                return 0
            zset = self._zsets[scheduled_key]
            for member in due:
                self._push(ready_key, member)
                del zset[member]
            if not zset:
                del self._zsets[scheduled_key]
            return len(due)
