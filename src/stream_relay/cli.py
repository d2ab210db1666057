from __future__ import annotations

import asyncio
import re
import signal
import sys
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, AsyncContextManager, Coroutine, Iterator, List, Optional

import typer
from dependency_injector.wiring import Provide, inject
from loguru import logger
from pydantic import ValidationError

from stream_relay.application.event_handlers import register_logging_handlers
from stream_relay.application.orchestrator import (
    CONFIG_KEY,
    STATUS_KEY,
    StreamOrchestrator,
)
from stream_relay.application.ports import EventBus
from stream_relay.application.registry import DestinationRegistry
from stream_relay.domain.exceptions import DomainError
from stream_relay.domain.models import (
    Account,
    Destination,
    EventStatus,
    Platform,
    RelayConfig,
    RelayStatus,
    ScheduledEvent,
    StreamSettings,
    Visibility,
)
from stream_relay.errors import AppError
from stream_relay.infrastructure.accounts import AccountStore
from stream_relay.infrastructure.presets import StreamSettingsStore
from stream_relay.infrastructure.schedule import ScheduledEventStore
from stream_relay.infrastructure.storage import StateStore

from .config import Settings
from .container import AppContainer, build_container, shutdown_container

app = typer.Typer(
    name="stream-relay",
    help="Start and stop one livestream session on YouTube and LinkedIn at once",
)
destination_app = typer.Typer(help="Manage stream destinations")
account_app = typer.Typer(help="Manage platform accounts")
preset_app = typer.Typer(help="Manage saved stream settings presets")
schedule_app = typer.Typer(help="Plan sessions ahead of time")
app.add_typer(destination_app, name="destination")
app.add_typer(account_app, name="account")
app.add_typer(preset_app, name="preset")
app.add_typer(schedule_app, name="schedule")

ACCOUNT_ID_RE = re.compile(r"^\S{1,256}$")
NAME_RE = re.compile(r"^[\w.-]{1,64}$")


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


async def entry_point(func: Coroutine[Any, Any, int]) -> int:
    settings = Settings()
    configure_logging(settings.log_level)
    try:
        container = await build_container(settings)
    except BaseException:
        func.close()
        raise
    container.wire(modules=[__name__])
    try:
        return await func
    finally:
        await shutdown_container(container)


def run_command(func: Coroutine[Any, Any, int]) -> None:
    """Run *func* inside a wired container and exit with its return code."""
    try:
        code = asyncio.run(entry_point(func))
    except AppError as err:
        typer.echo(err.describe(), err=True)
        raise typer.Exit(1)
    raise typer.Exit(code)


def validate_account_id(value: str) -> str:
    """Validate *value* as an account id or exit with code 2."""
    if not ACCOUNT_ID_RE.fullmatch(value):
        typer.echo("Invalid account id", err=True)
        raise typer.Exit(2)
    return value


def validate_name(value: str) -> str:
    """Validate a preset or event name or exit with code 2."""
    if not NAME_RE.fullmatch(value):
        typer.echo("Invalid name: use letters, digits, dots, dashes or underscores", err=True)
        raise typer.Exit(2)
    return value


def format_status(status: RelayStatus) -> str:
    return status.model_dump_json(indent=2)


@contextmanager
def stop_on_signals(stop: asyncio.Event) -> Iterator[None]:
    loop = asyncio.get_running_loop()
    signals = (signal.SIGINT, signal.SIGTERM)
    for sig in signals:
        loop.add_signal_handler(sig, stop.set)
    try:
        yield
    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)


@inject
async def _configure(
    overrides: dict[str, Any],
    store: StateStore = Provide[AppContainer.state_store],
    settings: Settings = Provide[AppContainer.settings],
) -> int:
    raw = store.get(CONFIG_KEY)
    base = settings.default_relay_config() if raw is None else RelayConfig.model_validate(raw)
    try:
        config = RelayConfig.model_validate({**base.model_dump(), **overrides})
    except ValidationError as exc:
        typer.echo(f"Invalid relay config: {exc.errors()[0]['msg']}", err=True)
        raise typer.Exit(2)
    store.save(CONFIG_KEY, config.model_dump(mode="json"))
    typer.echo(
        f"Relay configured: {config.resolution}@{config.frame_rate}fps "
        f"{config.bitrate}kbps audio {config.audio_quality}kbps "
        f"{config.encoder}/{config.preset}"
    )
    return 0


@inject
async def _destination_add(
    fields: dict[str, Any],
    registry: DestinationRegistry = Provide[AppContainer.registry],
) -> int:
    try:
        destination = Destination(**fields)
    except ValidationError as exc:
        typer.echo(f"Invalid destination: {exc.errors()[0]['msg']}", err=True)
        raise typer.Exit(2)
    registry.load()
    record = registry.add(destination)
    state = "enabled" if record.enabled else "disabled"
    typer.echo(f"Saved {record.platform.value} destination {record.account_id} ({state})")
    return 0


@inject
async def _destination_remove(
    platform: Platform,
    account_id: str,
    quiet: bool,
    registry: DestinationRegistry = Provide[AppContainer.registry],
) -> int:
    registry.load()
    if registry.remove(platform, account_id):
        typer.echo(f"Removed {platform.value} destination {account_id}")
        return 0
    if quiet:
        return 0
    typer.echo(f"{platform.value} destination {account_id} not found", err=True)
    raise typer.Exit(1)


@inject
async def _destination_list(
    enabled_only: bool,
    registry: DestinationRegistry = Provide[AppContainer.registry],
) -> int:
    registry.load()
    destinations = registry.list(enabled_only=enabled_only)
    if not destinations:
        typer.echo("No destinations configured. Use 'destination add' to add one.")
        raise typer.Exit(0)
    for d in destinations:
        state = "enabled" if d.enabled else "disabled"
        typer.echo(f"{d.platform.value}\t{d.account_id}\t{state}")
    return 0


@inject
async def _account_add(
    account: dict[str, Any],
    accounts: AccountStore = Provide[AppContainer.account_store],
) -> int:
    try:
        record = Account(**account)
    except ValidationError as exc:
        typer.echo(f"Invalid account: {exc.errors()[0]['msg']}", err=True)
        raise typer.Exit(2)
    accounts.save(record)
    typer.echo(f"Saved {record.platform.value} account {record.id}")
    return 0


@inject
async def _account_remove(
    platform: Platform,
    account_id: str,
    accounts: AccountStore = Provide[AppContainer.account_store],
) -> int:
    if not accounts.delete(platform, account_id):
        typer.echo(f"{platform.value} account {account_id} not found", err=True)
        raise typer.Exit(1)
    typer.echo(f"Removed {platform.value} account {account_id}")
    return 0


@inject
async def _account_list(
    platform: Platform | None,
    accounts: AccountStore = Provide[AppContainer.account_store],
) -> int:
    records = accounts.list(platform)
    if not records:
        typer.echo("No accounts stored. Use 'account add' to add one.")
        raise typer.Exit(0)
    for account in records:
        name = account.profile.get("name", "")
        typer.echo(f"{account.platform.value}\t{account.id}\t{name}".rstrip())
    return 0


@inject
async def _status(
    store: StateStore = Provide[AppContainer.state_store],
    settings: Settings = Provide[AppContainer.settings],
) -> int:
    raw = store.get(STATUS_KEY, ttl=settings.status_cache_ttl)
    status = RelayStatus() if raw is None else RelayStatus.model_validate(raw)
    typer.echo(format_status(status))
    return 0


@inject
async def _preset_save(
    name: str,
    fields: dict[str, Any],
    presets: StreamSettingsStore = Provide[AppContainer.presets],
) -> int:
    try:
        settings = StreamSettings(**fields)
    except ValidationError as exc:
        typer.echo(f"Invalid preset: {exc.errors()[0]['msg']}", err=True)
        raise typer.Exit(2)
    presets.save(name, settings)
    typer.echo(f"Saved preset {name}")
    return 0


@inject
async def _preset_list(
    presets: StreamSettingsStore = Provide[AppContainer.presets],
) -> int:
    records = presets.all()
    if not records:
        typer.echo("No presets saved. Use 'preset save' to add one.")
        raise typer.Exit(0)
    for name, settings in records.items():
        typer.echo(f"{name}\t{settings.title}\t{settings.visibility.value}")
    return 0


@inject
async def _preset_remove(
    name: str,
    presets: StreamSettingsStore = Provide[AppContainer.presets],
) -> int:
    if not presets.delete(name):
        typer.echo(f"Preset {name} not found", err=True)
        raise typer.Exit(1)
    typer.echo(f"Removed preset {name}")
    return 0


@inject
async def _schedule_add(
    fields: dict[str, Any],
    preset_name: str | None,
    presets: StreamSettingsStore = Provide[AppContainer.presets],
    schedule: ScheduledEventStore = Provide[AppContainer.schedule],
) -> int:
    if preset_name is not None:
        preset = presets.get(preset_name)
        if preset is None:
            typer.echo(f"Preset {preset_name} not found", err=True)
            raise typer.Exit(1)
        fields["settings"] = {platform: preset for platform in fields["platforms"]}
    try:
        event = ScheduledEvent(**fields)
    except ValidationError as exc:
        typer.echo(f"Invalid event: {exc.errors()[0]['msg']}", err=True)
        raise typer.Exit(2)
    schedule.save(event)
    typer.echo(f"Scheduled {event.id} at {event.scheduled_start.isoformat()}")
    return 0


@inject
async def _schedule_list(
    upcoming: bool,
    limit: int | None,
    schedule: ScheduledEventStore = Provide[AppContainer.schedule],
) -> int:
    events = schedule.upcoming(limit) if upcoming else schedule.list()[:limit]
    if not events:
        typer.echo("No scheduled events.")
        raise typer.Exit(0)
    for event in events:
        typer.echo(
            f"{event.id}\t{event.scheduled_start.isoformat()}\t"
            f"{event.status.value}\t{event.title}"
        )
    return 0


@inject
async def _schedule_cancel(
    event_id: str,
    schedule: ScheduledEventStore = Provide[AppContainer.schedule],
) -> int:
    if schedule.set_status(event_id, EventStatus.CANCELED) is None:
        typer.echo(f"Scheduled event {event_id} not found", err=True)
        raise typer.Exit(1)
    typer.echo(f"Canceled {event_id}")
    return 0


@inject
async def _schedule_remove(
    event_id: str,
    schedule: ScheduledEventStore = Provide[AppContainer.schedule],
) -> int:
    if not schedule.delete(event_id):
        typer.echo(f"Scheduled event {event_id} not found", err=True)
        raise typer.Exit(1)
    typer.echo(f"Removed {event_id}")
    return 0


@inject
async def _run(
    overrides: dict[str, Any],
    preset_name: str | None,
    event_id: str | None,
    stop: asyncio.Event,
    event_bus: EventBus = Provide[AppContainer.event_bus],
    orchestrator_factory: AsyncContextManager[StreamOrchestrator] = Provide[
        AppContainer.orchestrator
    ],
    presets: StreamSettingsStore = Provide[AppContainer.presets],
    schedule: ScheduledEventStore = Provide[AppContainer.schedule],
) -> int:
    base: StreamSettings | None = None
    if event_id is not None:
        event = schedule.get(event_id)
        if event is None:
            typer.echo(f"Scheduled event {event_id} not found", err=True)
            return 1
        base = event.stream_settings()
    elif preset_name is not None:
        base = presets.get(preset_name)
        if base is None:
            typer.echo(f"Preset {preset_name} not found", err=True)
            return 1
    if base is None:
        if "title" not in overrides:
            typer.echo("--title is required without --preset or --event", err=True)
            return 2
        stream = StreamSettings(**overrides)
    else:
        stream = base.model_copy(update=overrides)

    register_logging_handlers(event_bus)
    async with orchestrator_factory as orchestrator:
        try:
            status = await orchestrator.start(stream)
        except DomainError as err:
            typer.echo(err.describe(), err=True)
            return 1
        typer.echo(format_status(status))
        if not status.streaming_platforms():
            typer.echo("No platform went live, stopping", err=True)
            await orchestrator.stop()
            return 1
        if event_id is not None:
            schedule.set_status(event_id, EventStatus.LIVE)

        logger.info("Streaming; press Ctrl+C to stop")
        with stop_on_signals(stop):
            await stop.wait()
        status = await orchestrator.stop()
        typer.echo(format_status(status))
    if event_id is not None:
        schedule.set_status(event_id, EventStatus.COMPLETED)
    return 0


@app.command("configure", help="Store encoder settings used by the next session")
def configure(
    bitrate: Optional[int] = typer.Option(None, "--bitrate", min=1, help="Video kbps"),
    resolution: Optional[str] = typer.Option(None, "--resolution"),
    frame_rate: Optional[int] = typer.Option(None, "--frame-rate", min=1),
    audio_quality: Optional[int] = typer.Option(
        None, "--audio-quality", min=1, help="Audio kbps"
    ),
    encoder: Optional[str] = typer.Option(None, "--encoder"),
    preset: Optional[str] = typer.Option(None, "--preset"),
) -> None:
    overrides = {
        key: value
        for key, value in {
            "bitrate": bitrate,
            "resolution": resolution,
            "frame_rate": frame_rate,
            "audio_quality": audio_quality,
            "encoder": encoder,
            "preset": preset,
        }.items()
        if value is not None
    }
    run_command(_configure(overrides))


@destination_app.command("add", help="Add a destination or update an existing one")
def destination_add(
    platform: Platform = typer.Argument(...),
    account_id: str = typer.Argument(..., callback=validate_account_id),
    enabled: Optional[bool] = typer.Option(None, "--enable/--disable"),
    stream_key: Optional[str] = typer.Option(None, "--stream-key"),
    ingest_url: Optional[str] = typer.Option(None, "--ingest-url"),
) -> None:
    fields: dict[str, Any] = {"platform": platform, "account_id": account_id}
    if enabled is not None:
        fields["enabled"] = enabled
    if stream_key is not None:
        fields["stream_key"] = stream_key
    if ingest_url is not None:
        fields["ingest_url"] = ingest_url
    run_command(_destination_add(fields))


@destination_app.command("remove", help="Remove a destination")
def destination_remove(
    platform: Platform = typer.Argument(...),
    account_id: str = typer.Argument(..., callback=validate_account_id),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Exit 0 even if the destination was absent"
    ),
) -> None:
    run_command(_destination_remove(platform, account_id, quiet))


@destination_app.command("list", help="List destinations in fan-out order")
def destination_list(
    enabled_only: bool = typer.Option(False, "--enabled-only"),
) -> None:
    run_command(_destination_list(enabled_only))


@account_app.command("add", help="Store an account and its access token")
def account_add(
    platform: Platform = typer.Argument(...),
    account_id: str = typer.Argument(..., callback=validate_account_id),
    access_token: str = typer.Option(
        ..., "--access-token", prompt=True, hide_input=True
    ),
    refresh_token: Optional[str] = typer.Option(None, "--refresh-token"),
    name: Optional[str] = typer.Option(None, "--name", help="Display name"),
) -> None:
    account = {
        "platform": platform,
        "id": account_id,
        "access_token": access_token,
        "refresh_token": refresh_token,
        "profile": {"name": name} if name else {},
    }
    run_command(_account_add(account))


@account_app.command("remove", help="Forget a stored account")
def account_remove(
    platform: Platform = typer.Argument(...),
    account_id: str = typer.Argument(..., callback=validate_account_id),
) -> None:
    run_command(_account_remove(platform, account_id))


@account_app.command("list", help="List stored accounts without their tokens")
def account_list(
    platform: Optional[Platform] = typer.Option(None, "--platform"),
) -> None:
    run_command(_account_list(platform))


@app.command("status", help="Print the last persisted stream status as JSON")
def status() -> None:
    run_command(_status())


@preset_app.command("save", help="Save or replace a named stream settings preset")
def preset_save(
    name: str = typer.Argument(..., callback=validate_name),
    title: str = typer.Option(..., "--title"),
    description: str = typer.Option("", "--description"),
    visibility: Visibility = typer.Option(Visibility.PUBLIC, "--visibility"),
    tags: Optional[List[str]] = typer.Option(None, "--tag", help="Repeatable"),
) -> None:
    fields = {
        "title": title,
        "description": description,
        "visibility": visibility,
        "tags": tuple(tags or ()),
    }
    run_command(_preset_save(name, fields))


@preset_app.command("list", help="List saved presets")
def preset_list() -> None:
    run_command(_preset_list())


@preset_app.command("remove", help="Delete a preset")
def preset_remove(name: str = typer.Argument(..., callback=validate_name)) -> None:
    run_command(_preset_remove(name))


@schedule_app.command("add", help="Plan a session for later")
def schedule_add(
    title: str = typer.Option(..., "--title"),
    start: datetime = typer.Option(..., "--start", help="UTC unless an offset is given"),
    end: Optional[datetime] = typer.Option(None, "--end"),
    platforms: Optional[List[Platform]] = typer.Option(
        None, "--platform", help="Repeatable; defaults to every platform"
    ),
    description: str = typer.Option("", "--description"),
    preset: Optional[str] = typer.Option(None, "--preset", help="Preset for every platform"),
    event_id: Optional[str] = typer.Option(None, "--id"),
) -> None:
    fields: dict[str, Any] = {
        "id": validate_name(event_id) if event_id else uuid.uuid4().hex[:8],
        "title": title,
        "description": description,
        "platforms": tuple(platforms or Platform),
        "scheduled_start": start,
        "scheduled_end": end,
    }
    run_command(_schedule_add(fields, preset))


@schedule_app.command("list", help="List planned sessions in key order")
def schedule_list(
    upcoming: bool = typer.Option(
        False, "--upcoming", help="Only future, not yet started events, soonest first"
    ),
    limit: Optional[int] = typer.Option(None, "--limit", min=1),
) -> None:
    run_command(_schedule_list(upcoming, limit))


@schedule_app.command("cancel", help="Mark a planned session as canceled")
def schedule_cancel(event_id: str = typer.Argument(..., callback=validate_name)) -> None:
    run_command(_schedule_cancel(event_id))


@schedule_app.command("remove", help="Delete a planned session")
def schedule_remove(event_id: str = typer.Argument(..., callback=validate_name)) -> None:
    run_command(_schedule_remove(event_id))


@app.command("run", help="Go live on every enabled destination until interrupted")
def run(
    title: Optional[str] = typer.Option(None, "--title"),
    description: Optional[str] = typer.Option(None, "--description"),
    visibility: Optional[Visibility] = typer.Option(None, "--visibility"),
    preset: Optional[str] = typer.Option(None, "--preset", help="Start from a preset"),
    event_id: Optional[str] = typer.Option(None, "--event", help="Run a scheduled event"),
) -> None:
    if preset is not None and event_id is not None:
        typer.echo("Use either --preset or --event", err=True)
        raise typer.Exit(2)
    overrides = {
        key: value
        for key, value in {
            "title": title,
            "description": description,
            "visibility": visibility,
        }.items()
        if value is not None
    }
    stop = asyncio.Event()
    run_command(_run(overrides, preset, event_id, stop))


@app.callback()
def root() -> None:
    """Root command for stream-relay."""


def main() -> None:  # pragma: no cover - CLI entry point
    """Entrypoint for the CLI."""
    app()


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main()
