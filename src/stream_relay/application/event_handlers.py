"""Application-level event handler registration."""

from __future__ import annotations

from loguru import logger

from stream_relay.application.ports import EventBus
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


def register_logging_handlers(event_bus: EventBus) -> None:
    """Register the default audit-log handlers on *event_bus*."""

    async def log_configured(event: RelayConfigured) -> None:
        logger.debug(f"relay config now {event.resolution} at {event.bitrate}kbps")

    async def log_destination_added(event: DestinationAdded) -> None:
        state = "enabled" if event.enabled else "disabled"
        logger.debug(f"destination {event.platform.value}:{event.account_id} {state}")

    async def log_destination_removed(event: DestinationRemoved) -> None:
        if event.found:
            logger.debug(f"destination {event.platform.value}:{event.account_id} removed")

    async def log_stream_started(event: StreamStarted) -> None:
        live = ", ".join(p.value for p in event.platforms) or "none"
        failed = ", ".join(p.value for p in event.failed) or "none"
        logger.info(f"session {event.title!r} live on: {live}; failed: {failed}")

    async def log_stream_stopped(event: StreamStopped) -> None:
        logger.info(f"session ended, duration {event.duration}s")

    async def log_interrupted(event: StreamInterrupted) -> None:
        logger.warning(f"session started at {event.started_at} was interrupted")

    async def log_platform_started(event: PlatformStarted) -> None:
        logger.debug(
            f"{event.platform.value}:{event.account_id} live as {event.remote_stream_id}"
        )

    async def log_platform_failed(event: PlatformStartFailed) -> None:
        logger.warning(
            f"{event.platform.value}:{event.account_id} failed to start: {event.error}"
        )

    async def log_platform_stopped(event: PlatformStopped) -> None:
        logger.debug(f"{event.platform.value}:{event.account_id} stopped")

    async def log_platform_stop_failed(event: PlatformStopFailed) -> None:
        logger.warning(
            f"{event.platform.value}:{event.account_id} failed to stop: {event.error}"
        )

    event_bus.subscribe(RelayConfigured, log_configured)
    event_bus.subscribe(DestinationAdded, log_destination_added)
    event_bus.subscribe(DestinationRemoved, log_destination_removed)
    event_bus.subscribe(StreamStarted, log_stream_started)
    event_bus.subscribe(StreamStopped, log_stream_stopped)
    event_bus.subscribe(StreamInterrupted, log_interrupted)
    event_bus.subscribe(PlatformStarted, log_platform_started)
    event_bus.subscribe(PlatformStartFailed, log_platform_failed)
    event_bus.subscribe(PlatformStopped, log_platform_stopped)
    event_bus.subscribe(PlatformStopFailed, log_platform_stop_failed)
