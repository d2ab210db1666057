"""In-process read cache with passive TTL expiry."""

from __future__ import annotations

import copy
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Final

DEFAULT_TTL: Final[float] = 5 * 60.0


class _Missing:
    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return "MISSING"


MISSING: Final = _Missing()


@dataclass(slots=True)
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    """Map keys to values that expire ``ttl`` seconds after being set.

    Expiry is checked on read; nothing runs in the background. Values are
    deep-copied in and out so cached state cannot be mutated by callers.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, _Entry] = {}

    def get(self, key: str, default: Any = MISSING) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return default
        return copy.deepcopy(entry.value)

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        lifetime = self.default_ttl if ttl is None else ttl
        self._entries[key] = _Entry(copy.deepcopy(value), self._clock() + lifetime)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def invalidate_matching(self, predicate: Callable[[str], bool]) -> int:
        stale = [key for key in self._entries if predicate(key)]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not MISSING

    def __len__(self) -> int:
        return len(self._entries)
