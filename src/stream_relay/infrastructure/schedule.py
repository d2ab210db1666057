from __future__ import annotations

from loguru import logger

from stream_relay.application.ports import StateStoreProtocol
from stream_relay.domain.models import EventStatus, ScheduledEvent
from stream_relay.domain.protocols import Clock

EVENTS_PREFIX = "scheduled_events"


def event_key(event_id: str) -> str:
    return f"{EVENTS_PREFIX}:{event_id}"


class ScheduledEventStore:
    """Planned sessions kept under ``scheduled_events``, one record per event."""

    def __init__(self, store: StateStoreProtocol, clock: Clock) -> None:
        self.store = store
        self.clock = clock

    def save(self, event: ScheduledEvent) -> None:
        self.store.save(event_key(event.id), event.model_dump(mode="json"))

    def get(self, event_id: str) -> ScheduledEvent | None:
        raw = self.store.get(event_key(event_id))
        if raw is None:
            return None
        return ScheduledEvent.model_validate(raw)

    def list(self) -> list[ScheduledEvent]:
        return [
            ScheduledEvent.model_validate(raw)
            for _, raw in self.store.list_prefix(EVENTS_PREFIX)
        ]

    def upcoming(self, limit: int | None = None) -> list[ScheduledEvent]:
        """Scheduled events starting after now, soonest first."""
        now = self.clock.now()
        events = sorted(
            (
                event
                for event in self.list()
                if event.status is EventStatus.SCHEDULED
                and event.scheduled_start > now
            ),
            key=lambda event: event.scheduled_start,
        )
        return events if limit is None else events[:limit]

    def set_status(self, event_id: str, status: EventStatus) -> ScheduledEvent | None:
        event = self.get(event_id)
        if event is None:
            logger.warning(f"Scheduled event not found: {event_id}")
            return None
        updated = event.model_copy(update={"status": status})
        self.save(updated)
        return updated

    def delete(self, event_id: str) -> bool:
        return self.store.delete(event_key(event_id))
