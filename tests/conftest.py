from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterator

import httpx
import pytest

from stream_relay.application.orchestrator import StreamOrchestrator
from stream_relay.application.registry import DestinationRegistry
from stream_relay.domain.events import DomainEvent
from stream_relay.domain.models import Platform, RelayConfig, RemoteResource, Visibility
from stream_relay.infrastructure.error import StorageUnavailable
from stream_relay.infrastructure.storage import (
    InMemoryKeyValueBackend,
    SqliteKeyValueBackend,
    StateStore,
)

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FlakyBackend(InMemoryKeyValueBackend):
    """In-memory backend that can be switched to failing writes or keyed reads."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_writes = False
        self.fail_reads_under: str | None = None

    def read(self, key: str) -> Any | None:
        if self.fail_reads_under is not None and key.startswith(self.fail_reads_under):
            raise StorageUnavailable(message="accounts backend down")
        return super().read(key)

    def write(self, key: str, value: Any) -> None:
        if self.fail_writes:
            raise StorageUnavailable(message="disk gone")
        super().write(key, value)


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)


class FakeEventBus:
    def __init__(self) -> None:
        self.events: list[DomainEvent] = []
        self.subscriptions: list[tuple[type[DomainEvent], object]] = []

    async def publish(self, *events: DomainEvent) -> None:
        self.events.extend(events)

    def subscribe(self, event_type, handler) -> None:  # pragma: no cover - unused
        self.subscriptions.append((event_type, handler))

    def of(self, event_type: type[DomainEvent]) -> list[DomainEvent]:
        return [e for e in self.events if isinstance(e, event_type)]


class FakePlatformClient:
    """Records lifecycle calls; ``fail_on``/``hang_on`` name an operation.

    Every call waits for ``gate`` first when one is given.
    """

    def __init__(
        self,
        platform: Platform,
        account_id: str,
        *,
        fail_on: str | None = None,
        hang_on: str | None = None,
        error: Exception | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.platform = platform
        self.account_id = account_id
        self.fail_on = fail_on
        self.hang_on = hang_on
        self.error = error or RuntimeError(f"{platform.value} exploded")
        self.gate = gate
        self.calls: list[tuple[str, tuple[object, ...]]] = []

    async def _record(self, operation: str, *args: object) -> None:
        self.calls.append((operation, args))
        if self.gate is not None:
            await self.gate.wait()
        if self.hang_on == operation:
            await asyncio.sleep(3600)
        if self.fail_on == operation:
            raise self.error

    @property
    def operations(self) -> list[str]:
        return [name for name, _ in self.calls]

    async def create_broadcast(
        self,
        title: str,
        description: str,
        scheduled_start: datetime | None,
        scheduled_end: datetime | None,
        visibility: Visibility,
    ) -> RemoteResource:
        await self._record("create_broadcast", title, description, visibility)
        return RemoteResource(id=f"{self.platform.value}-{self.account_id}-b")

    async def create_stream(
        self, title: str, resolution: str, frame_rate: int
    ) -> RemoteResource:
        await self._record("create_stream", title, resolution, frame_rate)
        return RemoteResource(
            id=f"{self.platform.value}-{self.account_id}-s",
            ingest_url=f"rtmp://{self.platform.value}.test/live",
            stream_key="key",
        )

    async def bind_stream_to_broadcast(self, broadcast_id: str, stream_id: str) -> None:
        await self._record("bind_stream_to_broadcast", broadcast_id, stream_id)

    async def start_broadcast(self, broadcast_id: str) -> None:
        await self._record("start_broadcast", broadcast_id)

    async def end_broadcast(self, broadcast_id: str) -> None:
        await self._record("end_broadcast", broadcast_id)


class FakeClientFactory:
    """Hands out one :class:`FakePlatformClient` per ``(platform, account)``."""

    def __init__(self) -> None:
        self.clients: dict[tuple[Platform, str], FakePlatformClient] = {}
        self.behaviour: dict[tuple[Platform, str], dict[str, object]] = {}
        self.order: list[tuple[Platform, str]] = []

    def configure(self, platform: Platform, account_id: str, **behaviour: object) -> None:
        self.behaviour[(platform, account_id)] = behaviour

    def create(self, platform: Platform, account_id: str) -> FakePlatformClient:
        key = (platform, account_id)
        self.order.append(key)
        if key not in self.clients:
            self.clients[key] = FakePlatformClient(
                platform, account_id, **self.behaviour.get(key, {})  # type: ignore[arg-type]
            )
        return self.clients[key]

    def client(self, platform: Platform, account_id: str) -> FakePlatformClient:
        return self.clients[(platform, account_id)]


@pytest.fixture
def fake_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Point Settings at a temporary SQLite database."""
    db = tmp_path / "relay.db"
    monkeypatch.setenv("DB_URL", f"sqlite:///{db}")
    monkeypatch.setenv("STORAGE_BACKEND", "sqlite")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    return db


@pytest.fixture
def memory_store() -> StateStore:
    return StateStore(InMemoryKeyValueBackend())


@pytest.fixture
def flaky_backend() -> FlakyBackend:
    return FlakyBackend()


@pytest.fixture
def flaky_store(flaky_backend: FlakyBackend) -> StateStore:
    return StateStore(flaky_backend)


@pytest.fixture
def sqlite_store(tmp_path: Path) -> Iterator[StateStore]:
    """Return a store bound to a temporary SQLite database."""
    store = StateStore(SqliteKeyValueBackend(f"sqlite:///{tmp_path / 'state.db'}"))
    yield store
    store.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def bus() -> FakeEventBus:
    return FakeEventBus()


@pytest.fixture
def clients() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture
def relay_config() -> RelayConfig:
    return RelayConfig(
        bitrate=4500,
        resolution="720p",
        frame_rate=30,
        audio_quality=128,
        encoder="x264",
        preset="veryfast",
    )


@pytest.fixture
def make_orchestrator(
    memory_store: StateStore,
    clients: FakeClientFactory,
    bus: FakeEventBus,
    clock: FakeClock,
) -> Callable[..., StreamOrchestrator]:
    """Build an uninitialized orchestrator over the shared fakes."""

    def factory(store: StateStore | None = None, **kwargs: object) -> StreamOrchestrator:
        target = store or memory_store
        return StreamOrchestrator(
            target,
            DestinationRegistry(target),
            clients,
            bus,
            clock,
            **kwargs,  # type: ignore[arg-type]
        )

    return factory


@pytest.fixture
def httpx_transport() -> Callable[
    [Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient
]:
    """Create httpx.AsyncClient with a custom MockTransport."""

    def factory(
        handler: Callable[[httpx.Request], httpx.Response],
    ) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory
