from __future__ import annotations

from contextlib import asynccontextmanager, contextmanager
from typing import AsyncIterator, Awaitable, Iterator

import httpx
from dependency_injector import containers, providers

from stream_relay.application.orchestrator import StreamOrchestrator
from stream_relay.application.ports import EventBus, PlatformClientFactory
from stream_relay.application.registry import DestinationRegistry
from stream_relay.domain.protocols import Clock
from stream_relay.infrastructure.accounts import AccountStore, StoredCredentialResolver
from stream_relay.infrastructure.event_bus import InMemoryEventBus
from stream_relay.infrastructure.platforms import HttpPlatformClientFactory
from stream_relay.infrastructure.presets import StreamSettingsStore
from stream_relay.infrastructure.schedule import ScheduledEventStore
from stream_relay.infrastructure.storage import StateStore, build_state_store
from stream_relay.infrastructure.system import SystemClock

from .config import Settings

# ---------- low-level resources ----------


@contextmanager
def _state_store_resource(settings: Settings) -> Iterator[StateStore]:
    store = build_state_store(settings)
    try:
        yield store
    finally:
        store.close()


@asynccontextmanager
async def _http_client_resource(timeout: float) -> AsyncIterator[httpx.AsyncClient]:
    client = httpx.AsyncClient(timeout=timeout)
    try:
        yield client
    finally:
        await client.aclose()


@asynccontextmanager
async def _create_orchestrator(
    store: StateStore,
    registry: DestinationRegistry,
    clients: PlatformClientFactory,
    event_bus: EventBus,
    clock: Clock,
    platform_timeout: float,
    status_ttl: float,
) -> AsyncIterator[StreamOrchestrator]:
    orchestrator = await StreamOrchestrator.create(
        store,
        registry,
        clients,
        event_bus,
        clock,
        platform_timeout=platform_timeout,
        status_ttl=status_ttl,
    )
    try:
        yield orchestrator
    finally:
        if orchestrator.is_active:
            await orchestrator.stop()


# ---------- DI container ----------
class AppContainer(containers.DeclarativeContainer):
    """Dependency Injector container for the relay."""

    settings = providers.Singleton(Settings)
    container_config = providers.Configuration()

    # Storage (sync resource)
    state_store = providers.Resource(_state_store_resource, settings=settings)
    account_store = providers.Singleton(AccountStore, store=state_store)
    credential_resolver = providers.Singleton(
        StoredCredentialResolver, accounts=account_store
    )
    registry = providers.Singleton(DestinationRegistry, store=state_store)

    # Platforms
    http_client = providers.Resource(
        _http_client_resource, timeout=container_config.http_timeout.as_float()
    )
    platform_clients = providers.Singleton(
        HttpPlatformClientFactory,
        resolver=credential_resolver,
        http=http_client,
        youtube_api_url=container_config.youtube_api_url,
        linkedin_api_url=container_config.linkedin_api_url,
        max_rate=container_config.limiter_max_rate.as_float(),
        time_period=container_config.limiter_time_period.as_float(),
    )

    event_bus = providers.Singleton(InMemoryEventBus)
    clock = providers.Singleton(SystemClock)

    # Saved presets and planned sessions
    presets = providers.Singleton(StreamSettingsStore, store=state_store)
    schedule = providers.Singleton(ScheduledEventStore, store=state_store, clock=clock)

    # Application actors; restart recovery runs when the orchestrator is entered
    orchestrator = providers.Factory(
        _create_orchestrator,
        store=state_store,
        registry=registry,
        clients=platform_clients,
        event_bus=event_bus,
        clock=clock,
        platform_timeout=container_config.platform_timeout.as_float(),
        status_ttl=container_config.status_cache_ttl.as_float(),
    )


# ---------- bootstrap helpers ----------


async def build_container(settings: Settings) -> AppContainer:
    """Create container, load config, init resources."""
    container = AppContainer()
    container.settings.override(providers.Object(settings))
    container.container_config.from_pydantic(settings)  # pyright: ignore
    aw = container.init_resources()
    if isinstance(aw, Awaitable):
        await aw
    return container


async def shutdown_container(container: AppContainer) -> None:
    """Graceful shutdown of resources."""
    aw = container.shutdown_resources()
    if isinstance(aw, Awaitable):
        await aw
