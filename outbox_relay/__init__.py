"""
Outbox Relay

Reliable asynchronous delivery core: a durable event outbox on PostgreSQL
paired with a retry-aware, KV-backed job queue, with fingerprint dedup
and a non-blocking distributed lock.
"""

__version__ = "1.0.0"
