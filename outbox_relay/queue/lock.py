"""
Non-blocking distributed lock on top of the KV store.

Acquisition is a single SET NX EX; losing the race is a normal outcome
reported as ``LockResult(ok=False, skipped=True)``, never an exception.
A holder that dies without releasing is healed by the TTL.
"""

import logging
import secrets
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from outbox_relay.kv.store import KVStore
from outbox_relay.observability.metrics import get_metrics
from outbox_relay.queue.keys import QueueKeys

logger = logging.getLogger(__name__)


@dataclass
class LockResult:
    """Outcome of ``DistributedLock.with_lock``."""

    ok: bool
    skipped: bool = False
    value: Any = None


class DistributedLock:
    """TTL-bound mutual exclusion keyed by name."""

    def __init__(self, kv: KVStore, keys: QueueKeys | None = None):
        self._kv = kv
        self._keys = keys or QueueKeys()

    async def acquire(self, name: str, ttl_seconds: int) -> str | None:
        """
        Try to take the lock once.

        Returns:
            The ownership token, or None if someone else holds the lock.
        """
        token = secrets.token_hex(16)
        if await self._kv.set_nx(self._keys.lock(name), token, ttl_seconds):
            return token
        return None

    async def release(self, name: str, token: str) -> bool:
        """
        Release the lock if it is still held with ``token``.

        Returns:
            False if the lock had already expired or changed hands.
        """
        released = await self._kv.delete_if_equals(self._keys.lock(name), token)
        if not released:
            logger.warning("Lock expired before release", extra={"lock": name})
        return released

    async def is_held(self, name: str) -> bool:
        """Check whether anybody currently holds the lock."""
        return await self._kv.get(self._keys.lock(name)) is not None

    async def with_lock(
        self,
        name: str,
        ttl_seconds: int,
        fn: Callable[[], Awaitable[Any]],
    ) -> LockResult:
        """
        Run ``fn`` while holding the lock, or skip if it is taken.

        The lock is released exactly once after ``fn`` settles, whether it
        returned or raised. Exceptions from ``fn`` propagate.

        Args:
            name: Lock name.
            ttl_seconds: Upper bound on how long the lock may be held.
            fn: Coroutine function to run.

        Returns:
            LockResult with ``value`` set to ``fn``'s return value, or a
            skipped result if the lock was held elsewhere.
        """
        token = await self.acquire(name, ttl_seconds)
        if token is None:
            logger.info("Lock already held, skipping", extra={"lock": name})
            get_metrics().record_lock_skipped(name)
            return LockResult(ok=False, skipped=True)

        try:
            value = await fn()
        finally:
            await self.release(name, token)

        return LockResult(ok=True, value=value)
