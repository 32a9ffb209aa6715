"""
Key/value store module.
Contains the KV adapters and their connection management.
"""

from outbox_relay.kv.client import close_kv, get_kv, init_kv
from outbox_relay.kv.store import InMemoryKVStore, KVStore, LiveKeys, RedisKVStore

__all__ = [
    "KVStore",
    "RedisKVStore",
    "InMemoryKVStore",
    "LiveKeys",
    "init_kv",
    "close_kv",
    "get_kv",
]
