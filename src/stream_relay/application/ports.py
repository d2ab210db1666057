from __future__ import annotations

from datetime import datetime
from typing import Any, Awaitable, Callable, Protocol, TypeVar

from stream_relay.domain.events import DomainEvent
from stream_relay.domain.models import Platform, RemoteResource, Visibility

E = TypeVar("E", bound=DomainEvent)

Handler = Callable[[E], Awaitable[None]]


class EventBus(Protocol):
    async def publish(self, *events: DomainEvent) -> None: ...
    def subscribe(self, event_type: type[DomainEvent], handler: Handler[E]) -> None: ...


class StateStoreProtocol(Protocol):
    """Key/value persistence with a read cache in front of it."""

    def save(self, key: str, value: Any) -> None:
        """Durably write *value* and invalidate cached reads of *key*."""
        ...  # pragma: no cover

    def get(self, key: str, ttl: float | None = None) -> Any | None:
        """Return the value stored under *key* or ``None``."""
        ...  # pragma: no cover

    def delete(self, key: str) -> bool: ...  # pragma: no cover

    def list_prefix(
        self, prefix: str, ttl: float | None = None
    ) -> list[tuple[str, Any]]: ...  # pragma: no cover


class CredentialResolver(Protocol):
    def resolve(self, platform: Platform, account_id: str) -> str:
        """Return a bearer token or raise ``AccountNotFound``."""
        ...  # pragma: no cover


class PlatformClient(Protocol):
    """Broadcast lifecycle calls for one account on one platform."""

    platform: Platform
    account_id: str

    async def create_broadcast(
        self,
        title: str,
        description: str,
        scheduled_start: datetime | None,
        scheduled_end: datetime | None,
        visibility: Visibility,
    ) -> RemoteResource: ...  # pragma: no cover

    async def create_stream(
        self, title: str, resolution: str, frame_rate: int
    ) -> RemoteResource: ...  # pragma: no cover

    async def bind_stream_to_broadcast(
        self, broadcast_id: str, stream_id: str
    ) -> None: ...  # pragma: no cover

    async def start_broadcast(self, broadcast_id: str) -> None: ...  # pragma: no cover

    async def end_broadcast(self, broadcast_id: str) -> None: ...  # pragma: no cover


class PlatformClientFactory(Protocol):
    def create(
        self, platform: Platform, account_id: str
    ) -> PlatformClient: ...  # pragma: no cover
