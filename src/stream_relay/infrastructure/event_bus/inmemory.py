"""In-process event bus used by the relay and its tests."""

from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, DefaultDict, Deque, TypeVar

from loguru import logger

from stream_relay.application.ports import EventBus, Handler
from stream_relay.domain.events import DomainEvent

T = TypeVar("T", bound=DomainEvent)


@dataclass(slots=True, kw_only=True)
class InMemoryEventBus(EventBus):
    """Dispatch events to handlers subscribed to the event's type or a base type.

    A failing handler is logged and does not stop delivery to the others or
    propagate into the publisher.
    """

    _handlers: DefaultDict[type[DomainEvent], list[Handler[Any]]] = field(
        default_factory=lambda: defaultdict(list)
    )

    _idempotency_queue: Deque[str] = field(default_factory=lambda: deque(maxlen=100))

    async def publish(self, *events: DomainEvent) -> None:
        for event in events:
            if event.id in self._idempotency_queue:
                logger.warning(f"Get duplicated event {event.name()} {event.id}.")
                continue

            self._idempotency_queue.append(event.id)
            for event_type, handlers in list(self._handlers.items()):
                if not isinstance(event, event_type):
                    continue
                for handler in handlers:
                    try:
                        await handler(event)
                    except Exception as e:
                        logger.opt(exception=e).error(
                            f"handler {getattr(handler, '__name__', handler)!r} "
                            f"failed on {event.name()}"
                        )

    def subscribe(self, event_type: type[T], handler: Handler[T]) -> None:
        self._handlers[event_type].append(handler)
