"""
Key/value store connection management.
Creates the configured KV backend and owns its lifecycle.
"""

import logging

from redis.asyncio import Redis, from_url

from outbox_relay.config import get_settings
from outbox_relay.exceptions import StoreUnavailableError
from outbox_relay.kv.store import InMemoryKVStore, KVStore, RedisKVStore

logger = logging.getLogger(__name__)

# Global store instance
_store: KVStore | None = None
_redis: Redis | None = None


async def init_kv() -> KVStore:
    """
    Initialize the key/value store selected by ``settings.kv_backend``.
    Should be called on application startup.

    Returns:
        KVStore: The initialized store.
    """
    global _store, _redis
    if _store is not None:
        return _store

    settings = get_settings()

    if settings.kv_backend == "memory":
        _store = InMemoryKVStore()
        logger.info("In-memory KV store initialized")
        return _store

    _redis = from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=settings.redis_max_connections,
        socket_timeout=5,
        socket_connect_timeout=5,
    )
    _store = RedisKVStore(_redis)
    logger.info("Redis KV store initialized", extra={"namespace": settings.app_env})
    return _store


async def close_kv() -> None:
    """
    Close the key/value store connection.
    Should be called on application shutdown.
    """
    global _store, _redis
    if _redis is not None:
        await _redis.aclose()
        logger.info("Redis connection closed")
    _redis = None
    _store = None


def get_kv() -> KVStore:
    """
    Get the initialized key/value store.

    Raises:
        StoreUnavailableError: If ``init_kv()`` has not been called.
    """
    if _store is None:
        raise StoreUnavailableError("KV store not initialized. Call init_kv() first.")
    return _store
