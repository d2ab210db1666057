from __future__ import annotations

from .accounts import AccountStore, StoredCredentialResolver
from .presets import StreamSettingsStore
from .schedule import ScheduledEventStore
from .storage import StateStore, build_state_store

__all__ = [
    "AccountStore",
    "ScheduledEventStore",
    "StateStore",
    "StoredCredentialResolver",
    "StreamSettingsStore",
    "build_state_store",
]
