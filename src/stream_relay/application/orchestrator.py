from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from loguru import logger

from stream_relay.domain.events import (
    DestinationAdded,
    DestinationRemoved,
    PlatformStarted,
    PlatformStartFailed,
    PlatformStopFailed,
    PlatformStopped,
    RelayConfigured,
    StreamInterrupted,
    StreamStarted,
    StreamStopped,
)
from stream_relay.domain.exceptions import AlreadyActive, NoDestinations, NotConfigured
from stream_relay.domain.models import (
    Destination,
    Platform,
    PlatformStatus,
    RelayConfig,
    RelayState,
    RelayStatus,
    StreamSettings,
)
from stream_relay.domain.protocols import Clock
from stream_relay.errors import AppError
from stream_relay.infrastructure.error import StorageUnavailable

from .error import PlatformTimeout
from .ports import EventBus, PlatformClientFactory, StateStoreProtocol
from .registry import DestinationRegistry

T = TypeVar("T")

CONFIG_KEY = "relay_config"
STATUS_KEY = "stream_status"
STATUS_TTL = 60.0
INTERRUPTED_MESSAGE = "Stream was interrupted due to application restart"


def _error_message(exc: BaseException) -> str:
    if isinstance(exc, AppError):
        return exc.message
    return str(exc) or type(exc).__name__


class StreamOrchestrator:
    """Drive one stream session across every enabled destination.

    ``start``, ``stop``, ``configure`` and destination changes are serialized
    by a single lock: a ``stop`` issued while ``start`` is fanning out waits
    for it to finish. Platform failures are recorded in that platform's slot
    of :class:`RelayStatus` and never abort the other platforms.
    """

    def __init__(
        self,
        store: StateStoreProtocol,
        registry: DestinationRegistry,
        clients: PlatformClientFactory,
        event_bus: EventBus,
        clock: Clock,
        *,
        platform_timeout: float = 30.0,
        status_ttl: float = STATUS_TTL,
    ) -> None:
        self.store = store
        self.registry = registry
        self.clients = clients
        self.event_bus = event_bus
        self.clock = clock
        self.platform_timeout = platform_timeout
        self.status_ttl = status_ttl

        self._config: RelayConfig | None = None
        self._status = RelayStatus()
        self._state = RelayState.IDLE
        self._lock = asyncio.Lock()

    @classmethod
    async def create(
        cls,
        store: StateStoreProtocol,
        registry: DestinationRegistry,
        clients: PlatformClientFactory,
        event_bus: EventBus,
        clock: Clock,
        *,
        platform_timeout: float = 30.0,
        status_ttl: float = STATUS_TTL,
    ) -> StreamOrchestrator:
        """Build an orchestrator and restore persisted state before returning it."""
        orchestrator = cls(
            store,
            registry,
            clients,
            event_bus,
            clock,
            platform_timeout=platform_timeout,
            status_ttl=status_ttl,
        )
        await orchestrator.initialize()
        return orchestrator

    @property
    def state(self) -> RelayState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._status.is_active

    async def initialize(self) -> None:
        """Load config, destinations and status; close out an unclean shutdown.

        A persisted session marked active cannot have survived the restart,
        so it is written back as inactive before any other call is served.
        """
        async with self._lock:
            raw_config = self.store.get(CONFIG_KEY)
            if raw_config is not None:
                self._config = RelayConfig.model_validate(raw_config)
            self.registry.load()

            raw_status = self.store.get(STATUS_KEY, ttl=self.status_ttl)
            status = (
                RelayStatus()
                if raw_status is None
                else RelayStatus.model_validate(raw_status)
            )
            self._status = status
            self._state = RelayState.IDLE
            if status.is_active:
                logger.warning(INTERRUPTED_MESSAGE)
                platforms = {
                    platform: slot.model_copy(
                        update={"is_streaming": False, "error": INTERRUPTED_MESSAGE}
                    )
                    if slot.is_streaming
                    else slot
                    for platform, slot in status.platforms.items()
                }
                status = status.model_copy(
                    update={
                        "is_active": False,
                        "error": INTERRUPTED_MESSAGE,
                        "platforms": platforms,
                    }
                )
                self._status = status
                self._save_status()
                await self.event_bus.publish(
                    StreamInterrupted(started_at=status.started_at)
                )
        logger.info(
            f"Relay orchestrator initialized with {len(self.registry)} destination(s)"
        )

    async def configure(self, config: RelayConfig) -> None:
        """Replace the relay config; already started platforms keep their settings."""
        async with self._lock:
            self.store.save(CONFIG_KEY, config.model_dump(mode="json"))
            self._config = config
        logger.info(
            f"Relay configured: {config.resolution}@{config.frame_rate} "
            f"{config.bitrate}kbps {config.encoder}/{config.preset}"
        )
        await self.event_bus.publish(
            RelayConfigured(bitrate=config.bitrate, resolution=config.resolution)
        )

    def get_config(self) -> RelayConfig | None:
        return self._config

    async def add_destination(self, destination: Destination) -> Destination:
        async with self._lock:
            record = self.registry.add(destination)
        logger.info(
            f"Added {record.platform.value} destination for account {record.account_id}"
        )
        await self.event_bus.publish(
            DestinationAdded(
                platform=record.platform,
                account_id=record.account_id,
                enabled=record.enabled,
            )
        )
        return record

    async def remove_destination(self, platform: Platform, account_id: str) -> bool:
        """Remove a destination, ending its broadcast first if it is live.

        Other platforms and the session's ``is_active`` flag are left alone.
        Returns ``False`` when the destination was not registered.
        """
        async with self._lock:
            slot = self._status.platform(platform)
            if (
                self._status.is_active
                and slot is not None
                and slot.is_streaming
                and slot.account_id == account_id
            ):
                await self._stop_platform(platform, account_id)
                self._save_status()
            found = self.registry.remove(platform, account_id)
        if found:
            logger.info(f"Removed {platform.value} destination for account {account_id}")
        await self.event_bus.publish(
            DestinationRemoved(platform=platform, account_id=account_id, found=found)
        )
        return found

    def list_destinations(self, enabled_only: bool = False) -> list[Destination]:
        return self.registry.list(enabled_only=enabled_only)

    async def start(self, settings: StreamSettings) -> RelayStatus:
        """Start a session and fan out to every enabled destination in order.

        Raises ``AlreadyActive``, ``NotConfigured`` or ``NoDestinations``
        without touching the status. Otherwise the session becomes active even
        if every platform fails; inspect the per-platform slots.
        """
        async with self._lock:
            if self._status.is_active:
                logger.warning("Stream is already active")
                raise AlreadyActive()
            if self._config is None:
                raise NotConfigured()
            config = self._config
            destinations = self.registry.list(enabled_only=True)
            if not destinations:
                raise NoDestinations()

            self._state = RelayState.STARTING
            self._status = RelayStatus(
                is_active=True, started_at=self.clock.now(), bitrate=config.bitrate
            )
            logger.info(
                f"Starting stream {settings.title!r} to {len(destinations)} destination(s)"
            )
            try:
                for destination in destinations:
                    await self._start_destination(destination, settings, config)
            finally:
                self._state = RelayState.RUNNING
                self._save_status()

            live = tuple(self._status.streaming_platforms())
            failed = tuple(
                p for p, s in self._status.platforms.items() if not s.is_streaming
            )
            if not live:
                logger.warning("Stream session is active but no platform is live")
            else:
                logger.info(f"Stream started on {', '.join(p.value for p in live)}")
            await self.event_bus.publish(
                StreamStarted(title=settings.title, platforms=live, failed=failed)
            )
            return self.get_status()

    async def stop(self) -> RelayStatus:
        """End every live platform and close the session; no-op when inactive."""
        async with self._lock:
            if not self._status.is_active:
                logger.warning("Stream is not active")
                return self.get_status()

            self._state = RelayState.STOPPING
            try:
                for platform in self._status.streaming_platforms():
                    await self._stop_platform(platform)
            finally:
                duration = None
                if self._status.started_at is not None:
                    elapsed = (self.clock.now() - self._status.started_at).total_seconds()
                    duration = max(0, int(elapsed))
                self._status = self._status.model_copy(
                    update={"is_active": False, "duration": duration}
                )
                self._state = RelayState.IDLE
                self._save_status()

            logger.info(f"Stream stopped after {duration}s")
            await self.event_bus.publish(StreamStopped(duration=duration))
            return self.get_status()

    async def stop_platform_stream(
        self, platform: Platform, account_id: str | None = None
    ) -> None:
        """End one platform's broadcast, leaving the session and other platforms alone."""
        async with self._lock:
            await self._stop_platform(platform, account_id)
            self._save_status()

    def get_status(self) -> RelayStatus:
        return self._status.model_copy(deep=True)

    async def _start_destination(
        self,
        destination: Destination,
        settings: StreamSettings,
        config: RelayConfig,
    ) -> bool:
        platform = destination.platform
        current = self._status.platform(platform)
        if current is not None and current.is_streaming:
            logger.warning(
                f"{platform.value} is already live for account {current.account_id}; "
                f"skipping account {destination.account_id}"
            )
            return False

        try:
            client = self.clients.create(platform, destination.account_id)
            broadcast = await self._call(
                platform,
                "create_broadcast",
                client.create_broadcast(
                    settings.title,
                    settings.description,
                    settings.scheduled_start,
                    settings.scheduled_end,
                    settings.visibility,
                ),
            )
            stream = await self._call(
                platform,
                "create_stream",
                client.create_stream(settings.title, config.resolution, config.frame_rate),
            )
            await self._call(
                platform,
                "bind_stream_to_broadcast",
                client.bind_stream_to_broadcast(broadcast.id, stream.id),
            )
            await self._call(
                platform, "start_broadcast", client.start_broadcast(broadcast.id)
            )
        except StorageUnavailable:
            raise
        except Exception as exc:
            message = _error_message(exc)
            logger.opt(exception=exc).error(
                f"Error starting stream to {platform.value}: {message}"
            )
            self._set_platform(
                platform,
                PlatformStatus(
                    is_streaming=False,
                    account_id=destination.account_id,
                    error=message,
                ),
            )
            await self.event_bus.publish(
                PlatformStartFailed(
                    platform=platform, account_id=destination.account_id, error=message
                )
            )
            return False

        self._set_platform(
            platform,
            PlatformStatus(
                is_streaming=True,
                account_id=destination.account_id,
                remote_stream_id=broadcast.id,
                ingest_url=stream.ingest_url or destination.ingest_url,
                started_at=self.clock.now(),
            ),
        )
        logger.info(f"{platform.value} stream started: {broadcast.id}")
        await self.event_bus.publish(
            PlatformStarted(
                platform=platform,
                account_id=destination.account_id,
                remote_stream_id=broadcast.id,
            )
        )
        return True

    async def _stop_platform(
        self, platform: Platform, account_id: str | None = None
    ) -> None:
        slot = self._status.platform(platform)
        if slot is None or not slot.is_streaming:
            return
        if (
            account_id is not None
            and slot.account_id not in (None, account_id)
            and self.registry.get(platform, account_id) is not None
        ):
            logger.info(
                f"{platform.value} is live for account {slot.account_id}, "
                f"not {account_id}; nothing to stop"
            )
            return

        owner = account_id or slot.account_id
        stopped = slot.model_copy(update={"is_streaming": False})
        destination = self.registry.find(platform, owner)
        if destination is None or slot.remote_stream_id is None:
            logger.warning(
                f"{platform.value} destination for account {owner or 'any'} not found; "
                "marking the stream as gone"
            )
            self._set_platform(platform, stopped)
            await self.event_bus.publish(PlatformStopped(platform=platform, account_id=owner))
            return

        try:
            client = self.clients.create(platform, destination.account_id)
            await self._call(
                platform, "end_broadcast", client.end_broadcast(slot.remote_stream_id)
            )
        except StorageUnavailable:
            raise
        except Exception as exc:
            message = _error_message(exc)
            logger.opt(exception=exc).error(
                f"Error stopping {platform.value} stream: {message}"
            )
            self._set_platform(
                platform, stopped.model_copy(update={"error": f"stop failed: {message}"})
            )
            await self.event_bus.publish(
                PlatformStopFailed(
                    platform=platform, account_id=destination.account_id, error=message
                )
            )
            return

        self._set_platform(platform, stopped)
        logger.info(f"{platform.value} stream stopped")
        await self.event_bus.publish(
            PlatformStopped(platform=platform, account_id=destination.account_id)
        )

    async def _call(self, platform: Platform, operation: str, aw: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(aw, timeout=self.platform_timeout)
        except TimeoutError as exc:
            raise PlatformTimeout(
                platform=platform.value,
                operation=operation,
                timeout=self.platform_timeout,
            ) from exc

    def _set_platform(self, platform: Platform, status: PlatformStatus) -> None:
        self._status = self._status.with_platform(platform, status)

    def _save_status(self) -> None:
        self.store.save(STATUS_KEY, self._status.model_dump(mode="json"))
