from __future__ import annotations

from loguru import logger

from stream_relay.domain.models import Destination, Platform

from .ports import StateStoreProtocol

DESTINATIONS_KEY = "stream_destinations"


class DestinationRegistry:
    """Ordered set of destinations, unique by ``(platform, account_id)``.

    The whole list is persisted under ``stream_destinations`` after every
    change, before the in-memory view is updated.
    """

    def __init__(self, store: StateStoreProtocol) -> None:
        self.store = store
        self._destinations: list[Destination] = []

    def load(self) -> list[Destination]:
        raw = self.store.get(DESTINATIONS_KEY) or []
        self._destinations = [Destination.model_validate(item) for item in raw]
        return list(self._destinations)

    def add(self, destination: Destination) -> Destination:
        """Insert *destination* or merge its explicitly set fields into the existing one.

        Returns the stored record.
        """
        updated = list(self._destinations)
        for index, existing in enumerate(updated):
            if existing.identity == destination.identity:
                record = existing.merged_with(destination)
                updated[index] = record
                break
        else:
            record = destination
            updated.append(record)
        self._persist(updated)
        return record

    def remove(self, platform: Platform, account_id: str) -> bool:
        """Remove the destination; ``False`` when it was not registered."""
        updated = [
            d for d in self._destinations if d.identity != (platform, account_id)
        ]
        if len(updated) == len(self._destinations):
            logger.warning(f"Destination not found: {platform.value} account {account_id}")
            return False
        self._persist(updated)
        return True

    def get(self, platform: Platform, account_id: str) -> Destination | None:
        for destination in self._destinations:
            if destination.identity == (platform, account_id):
                return destination
        return None

    def find(self, platform: Platform, account_id: str | None = None) -> Destination | None:
        """First destination on *platform*, restricted to *account_id* when given."""
        for destination in self._destinations:
            if destination.platform is not platform:
                continue
            if account_id is None or destination.account_id == account_id:
                return destination
        return None

    def list(self, enabled_only: bool = False) -> list[Destination]:
        if enabled_only:
            return [d for d in self._destinations if d.enabled]
        return list(self._destinations)

    def __len__(self) -> int:
        return len(self._destinations)

    def _persist(self, destinations: list[Destination]) -> None:
        self.store.save(
            DESTINATIONS_KEY, [d.model_dump(mode="json") for d in destinations]
        )
        self._destinations = destinations
