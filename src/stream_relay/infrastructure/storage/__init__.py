"""Persistent state store: durable backends behind a TTL read cache."""

from .backends import InMemoryKeyValueBackend, KeyValueBackend, SqliteKeyValueBackend
from .cache import DEFAULT_TTL, TTLCache
from .store import StateStore, build_state_store

__all__ = [
    "DEFAULT_TTL",
    "InMemoryKeyValueBackend",
    "KeyValueBackend",
    "SqliteKeyValueBackend",
    "StateStore",
    "TTLCache",
    "build_state_store",
]
