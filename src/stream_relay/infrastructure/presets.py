from __future__ import annotations

from stream_relay.application.ports import StateStoreProtocol
from stream_relay.domain.models import StreamSettings

PRESETS_PREFIX = "stream_settings"


def preset_key(name: str) -> str:
    return f"{PRESETS_PREFIX}:{name}"


class StreamSettingsStore:
    """Named stream settings presets kept under ``stream_settings``."""

    def __init__(self, store: StateStoreProtocol) -> None:
        self.store = store

    def save(self, name: str, settings: StreamSettings) -> None:
        self.store.save(preset_key(name), settings.model_dump(mode="json"))

    def get(self, name: str) -> StreamSettings | None:
        raw = self.store.get(preset_key(name))
        if raw is None:
            return None
        return StreamSettings.model_validate(raw)

    def all(self) -> dict[str, StreamSettings]:
        start = len(PRESETS_PREFIX) + 1
        return {
            key[start:]: StreamSettings.model_validate(raw)
            for key, raw in self.store.list_prefix(PRESETS_PREFIX)
        }

    def delete(self, name: str) -> bool:
        return self.store.delete(preset_key(name))
