from __future__ import annotations

from typing import Any

from loguru import logger

from stream_relay.application.ports import StateStoreProtocol
from stream_relay.config import Settings
from stream_relay.infrastructure.error import StorageUnavailable

from .backends import (
    InMemoryKeyValueBackend,
    KeyValueBackend,
    SqliteKeyValueBackend,
    key_matches_prefix,
)
from .cache import MISSING, TTLCache

_LIST_MARKER = "list::"


class StateStore(StateStoreProtocol):
    """Write-through key/value store with a TTL read cache.

    The backend is the source of truth: a write either reaches it or raises
    :class:`StorageUnavailable`, and only then are cached reads dropped. A
    write to ``accounts:youtube:a`` also drops cached listings of
    ``accounts`` and ``accounts:youtube``.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        cache: TTLCache | None = None,
    ) -> None:
        self.backend = backend
        self.cache = cache if cache is not None else TTLCache()

    @property
    def backend_name(self) -> str:
        return self.backend.name

    def save(self, key: str, value: Any) -> None:
        self.backend.write(key, value)
        self._invalidate(key)

    def get(self, key: str, ttl: float | None = None) -> Any | None:
        cached = self.cache.get(key)
        if cached is not MISSING:
            return cached
        logger.trace(f"cache miss for {key}")
        value = self.backend.read(key)
        if value is not None:
            self.cache.set(key, value, ttl)
        return value

    def delete(self, key: str) -> bool:
        removed = self.backend.delete(key)
        self._invalidate(key)
        return removed

    def list_prefix(self, prefix: str, ttl: float | None = None) -> list[tuple[str, Any]]:
        cache_key = _LIST_MARKER + prefix
        cached = self.cache.get(cache_key)
        if cached is not MISSING:
            return [(key, value) for key, value in cached]
        records = self.backend.list_prefix(prefix)
        self.cache.set(cache_key, records, ttl)
        return records

    def close(self) -> None:
        self.cache.clear()
        self.backend.close()

    def _invalidate(self, key: str) -> None:
        self.cache.invalidate(key)
        self.cache.invalidate_matching(
            lambda cached: cached.startswith(_LIST_MARKER)
            and key_matches_prefix(key, cached[len(_LIST_MARKER) :])
        )


def _build_sqlite_backend(settings: Settings) -> KeyValueBackend:
    backend = SqliteKeyValueBackend(settings.database_url, settings.database_echo)
    backend.ping()
    return backend


def build_state_store(settings: Settings) -> StateStore:
    """Construct the store once, probing the durable backend first.

    ``STORAGE_BACKEND=auto`` falls back to memory when SQLite cannot be
    opened; ``sqlite`` propagates the failure instead.
    """

    cache = TTLCache(default_ttl=settings.cache_ttl)
    if settings.storage_backend == "memory":
        logger.info("Using in-memory state store")
        return StateStore(InMemoryKeyValueBackend(), cache)

    try:
        backend = _build_sqlite_backend(settings)
    except Exception as exc:
        if settings.storage_backend == "sqlite":
            if isinstance(exc, StorageUnavailable):
                raise
            raise StorageUnavailable(
                message=f"Cannot open {settings.database_url}: {exc}",
                context={"database_url": settings.database_url},
            ) from exc
        logger.opt(exception=exc).warning(
            f"Durable store {settings.database_url} unavailable, "
            "falling back to in-memory storage"
        )
        return StateStore(InMemoryKeyValueBackend(), cache)

    logger.info(f"Using SQLite state store at {settings.database_url}")
    return StateStore(backend, cache)
