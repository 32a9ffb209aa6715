"""
Fingerprint-based deduplication markers.

Two kinds of marker share one mechanism (SET NX with a TTL):

- "seen" guards submission: the same fingerprint is enqueued at most once
  per TTL window.
- "done" guards completion: the same logical job is executed at most once
  per TTL window, even without a caller-supplied fingerprint.
"""

import hashlib
import json
import logging
from typing import Any

from outbox_relay.config import get_settings
from outbox_relay.constants import FINGERPRINT_LENGTH
from outbox_relay.kv.store import KVStore
from outbox_relay.queue.keys import QueueKeys

logger = logging.getLogger(__name__)

_MARKER = "1"


def fingerprint(job_type: str, payload: Any) -> str:
    """
    Compute a stable fingerprint of a job.

    Uses a truncated SHA-256 over canonical JSON (sorted keys, compact
    separators), so logically equal payloads hash identically regardless
    of key order.

    Args:
        job_type: The job type.
        payload: The JSON-compatible payload.

    Returns:
        Hex digest prefix.
    """
    canonical = json.dumps(
        {"type": job_type, "payload": payload},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


class Deduplicator:
    """Seen/done markers stored in the KV store."""

    def __init__(
        self,
        kv: KVStore,
        keys: QueueKeys | None = None,
        ttl_seconds: int | None = None,
    ):
        self._kv = kv
        self._keys = keys or QueueKeys()
        self.ttl_seconds = ttl_seconds or get_settings().queue_dedup_ttl_seconds

    async def mark_seen(self, queue: str, job_type: str, fp: str) -> bool:
        """
        Record a submission fingerprint.

        Returns:
            True if this is the first submission within the TTL window.
        """
        return await self._kv.set_nx(
            self._keys.seen(queue, job_type, fp), _MARKER, self.ttl_seconds
        )

    async def mark_done(self, queue: str, job_type: str, fp: str) -> bool:
        """
        Record a completion fingerprint.

        Returns:
            True if no completion was recorded within the TTL window.
        """
        return await self._kv.set_nx(
            self._keys.done(queue, job_type, fp), _MARKER, self.ttl_seconds
        )

    async def clear_done(self, queue: str, job_type: str, fp: str) -> None:
        """Remove a completion marker so the job may run again."""
        await self._kv.delete(self._keys.done(queue, job_type, fp))

    async def is_duplicate(self, queue: str, job_type: str, payload: Any) -> bool:
        """
        Claim completion of ``(job_type, payload)``.

        Returns:
            True if the same logical job was already claimed.
        """
        first = await self.mark_done(queue, job_type, fingerprint(job_type, payload))
        if not first:
            logger.info(
                "Duplicate job detected",
                extra={"queue": queue, "job_type": job_type},
            )
        return not first

    async def forget(self, queue: str, job_type: str, payload: Any) -> None:
        """Release the completion claim taken by ``is_duplicate``."""
        await self.clear_done(queue, job_type, fingerprint(job_type, payload))
