"""
Job queue module.
Contains the KV-backed job queue, deduplicator and distributed lock.
"""

from outbox_relay.queue.dedup import Deduplicator, fingerprint
from outbox_relay.queue.job_queue import JobQueue
from outbox_relay.queue.keys import QueueKeys
from outbox_relay.queue.lock import DistributedLock, LockResult

__all__ = [
    "JobQueue",
    "Deduplicator",
    "fingerprint",
    "DistributedLock",
    "LockResult",
    "QueueKeys",
]
