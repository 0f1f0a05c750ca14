"""Persistence: key-value backends and the candidate store."""

from smartconnect.store.cache import DEFAULT_TTL_SECONDS, CandidateStore
from smartconnect.store.kv import InMemoryKeyValueStore, JsonFileKeyValueStore, KeyValueStore

__all__ = [
    "DEFAULT_TTL_SECONDS",
    "CandidateStore",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueStore",
]
