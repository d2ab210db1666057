import asyncio

import pytest

from stream_relay.application.error import AccountNotFound
from stream_relay.application.orchestrator import (
    CONFIG_KEY,
    INTERRUPTED_MESSAGE,
    STATUS_KEY,
    StreamOrchestrator,
)
from stream_relay.application.registry import DestinationRegistry
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
    RelayState,
    RelayStatus,
    StreamSettings,
    Visibility,
)
from stream_relay.infrastructure.error import StorageUnavailable
from stream_relay.infrastructure.storage import StateStore

YT = Platform.YOUTUBE
LI = Platform.LINKEDIN
SETTINGS = StreamSettings(title="Launch day", description="Live from the lab")


async def ready(make_orchestrator, relay_config, *destinations, **kwargs) -> StreamOrchestrator:
    orchestrator = make_orchestrator(**kwargs)
    await orchestrator.initialize()
    await orchestrator.configure(relay_config)
    for destination in destinations:
        await orchestrator.add_destination(destination)
    return orchestrator


def dest(platform: Platform, account_id: str, **fields) -> Destination:
    return Destination(platform=platform, account_id=account_id, **fields)


@pytest.mark.asyncio
async def test_start_without_config_raises(make_orchestrator, clients) -> None:
    orchestrator = make_orchestrator()
    await orchestrator.initialize()
    await orchestrator.add_destination(dest(YT, "yt-1"))

    with pytest.raises(NotConfigured):
        await orchestrator.start(SETTINGS)

    assert orchestrator.get_status().is_active is False
    assert orchestrator.state is RelayState.IDLE
    assert clients.order == []


@pytest.mark.asyncio
async def test_start_without_enabled_destinations_raises(
    make_orchestrator, relay_config, clients
) -> None:
    orchestrator = await ready(
        make_orchestrator, relay_config, dest(YT, "yt-1", enabled=False)
    )

    with pytest.raises(NoDestinations) as exc:
        await orchestrator.start(SETTINGS)

    assert exc.value.code == "DOMAIN_NO_DESTINATIONS"
    assert orchestrator.get_status().is_active is False
    assert clients.order == []


@pytest.mark.asyncio
async def test_start_fans_out_in_registry_order(
    make_orchestrator, relay_config, clients, clock, memory_store
) -> None:
    orchestrator = await ready(
        make_orchestrator, relay_config, dest(LI, "li-1"), dest(YT, "yt-1")
    )

    status = await orchestrator.start(SETTINGS)

    assert clients.order == [(LI, "li-1"), (YT, "yt-1")]
    assert status.is_active is True
    assert status.started_at == clock.now()
    assert status.bitrate == 4500
    assert status.streaming_platforms() == [LI, YT]
    youtube = status.platform(YT)
    assert youtube.remote_stream_id == "youtube-yt-1-b"
    assert youtube.account_id == "yt-1"
    assert youtube.ingest_url == "rtmp://youtube.test/live"
    assert youtube.error is None
    assert orchestrator.state is RelayState.RUNNING

    assert clients.client(YT, "yt-1").calls == [
        ("create_broadcast", ("Launch day", "Live from the lab", Visibility.PUBLIC)),
        ("create_stream", ("Launch day", "720p", 30)),
        ("bind_stream_to_broadcast", ("youtube-yt-1-b", "youtube-yt-1-s")),
        ("start_broadcast", ("youtube-yt-1-b",)),
    ]
    assert RelayStatus.model_validate(memory_store.get(STATUS_KEY)) == status


@pytest.mark.asyncio
async def test_partial_failure_keeps_other_platforms(
    make_orchestrator, relay_config, clients, bus
) -> None:
    clients.configure(LI, "li-1", fail_on="start_broadcast")
    orchestrator = await ready(
        make_orchestrator, relay_config, dest(LI, "li-1"), dest(YT, "yt-1")
    )

    status = await orchestrator.start(SETTINGS)

    assert status.is_active is True
    assert status.platform(YT).is_streaming is True
    linkedin = status.platform(LI)
    assert linkedin.is_streaming is False
    assert linkedin.error == "linkedin exploded"
    assert linkedin.account_id == "li-1"

    failed = bus.of(PlatformStartFailed)
    assert [(e.platform, e.error) for e in failed] == [(LI, "linkedin exploded")]
    started = bus.of(StreamStarted)[-1]
    assert started.platforms == (YT,)
    assert started.failed == (LI,)


@pytest.mark.asyncio
async def test_all_platforms_failing_still_marks_session_active(
    make_orchestrator, relay_config, clients
) -> None:
    clients.configure(YT, "yt-1", fail_on="create_broadcast")
    clients.configure(LI, "li-1", fail_on="create_broadcast")
    orchestrator = await ready(
        make_orchestrator, relay_config, dest(YT, "yt-1"), dest(LI, "li-1")
    )

    status = await orchestrator.start(SETTINGS)

    assert status.is_active is True
    assert status.streaming_platforms() == []
    assert all(s.error for s in status.platforms.values())


@pytest.mark.asyncio
async def test_missing_account_is_recorded_for_that_platform(
    make_orchestrator, relay_config, clients
) -> None:
    clients.configure(
        YT,
        "yt-1",
        fail_on="create_broadcast",
        error=AccountNotFound(platform="youtube", account_id="yt-1"),
    )
    orchestrator = await ready(
        make_orchestrator, relay_config, dest(YT, "yt-1"), dest(LI, "li-1")
    )

    status = await orchestrator.start(SETTINGS)

    assert status.platform(YT).error == "youtube account yt-1 not found"
    assert status.platform(LI).is_streaming is True


@pytest.mark.asyncio
async def test_platform_call_timeout_is_recorded(
    make_orchestrator, relay_config, clients
) -> None:
    clients.configure(YT, "yt-1", hang_on="create_stream")
    orchestrator = await ready(
        make_orchestrator,
        relay_config,
        dest(YT, "yt-1"),
        dest(LI, "li-1"),
        platform_timeout=0.05,
    )

    status = await orchestrator.start(SETTINGS)

    assert status.platform(YT).is_streaming is False
    assert status.platform(YT).error == "youtube create_stream timed out after 0.05s"
    assert status.platform(LI).is_streaming is True
    assert "start_broadcast" not in clients.client(YT, "yt-1").operations


@pytest.mark.asyncio
async def test_second_start_raises_already_active(
    make_orchestrator, relay_config, clients
) -> None:
    orchestrator = await ready(make_orchestrator, relay_config, dest(YT, "yt-1"))
    first = await orchestrator.start(SETTINGS)

    with pytest.raises(AlreadyActive):
        await orchestrator.start(StreamSettings(title="Again"))

    assert orchestrator.get_status() == first
    assert clients.order == [(YT, "yt-1")]


@pytest.mark.asyncio
async def test_one_session_slot_per_platform(
    make_orchestrator, relay_config, clients
) -> None:
    orchestrator = await ready(
        make_orchestrator, relay_config, dest(YT, "yt-1"), dest(YT, "yt-2")
    )

    status = await orchestrator.start(SETTINGS)

    assert clients.order == [(YT, "yt-1")]
    assert status.platform(YT).account_id == "yt-1"


@pytest.mark.asyncio
async def test_stop_ends_every_live_platform(
    make_orchestrator, relay_config, clients, clock, bus, memory_store
) -> None:
    orchestrator = await ready(
        make_orchestrator, relay_config, dest(YT, "yt-1"), dest(LI, "li-1")
    )
    await orchestrator.start(SETTINGS)
    clock.advance(90.7)

    status = await orchestrator.stop()

    assert status.is_active is False
    assert status.duration == 90
    assert status.streaming_platforms() == []
    assert clients.client(YT, "yt-1").calls[-1] == ("end_broadcast", ("youtube-yt-1-b",))
    assert clients.client(LI, "li-1").calls[-1] == ("end_broadcast", ("linkedin-li-1-b",))
    assert orchestrator.state is RelayState.IDLE
    assert memory_store.get(STATUS_KEY)["is_active"] is False
    assert bus.of(StreamStopped)[-1].duration == 90
    assert len(bus.of(PlatformStopped)) == 2


@pytest.mark.asyncio
async def test_stop_when_inactive_is_noop(make_orchestrator, clients) -> None:
    orchestrator = make_orchestrator()
    await orchestrator.initialize()

    status = await orchestrator.stop()

    assert status == RelayStatus()
    assert clients.order == []


@pytest.mark.asyncio
async def test_stop_failure_does_not_block_other_platforms(
    make_orchestrator, relay_config, clients, bus
) -> None:
    clients.configure(YT, "yt-1", fail_on="end_broadcast")
    orchestrator = await ready(
        make_orchestrator, relay_config, dest(YT, "yt-1"), dest(LI, "li-1")
    )
    await orchestrator.start(SETTINGS)

    status = await orchestrator.stop()

    assert status.is_active is False
    assert status.platform(YT).is_streaming is False
    assert status.platform(YT).error == "stop failed: youtube exploded"
    assert "end_broadcast" in clients.client(LI, "li-1").operations
    assert [e.platform for e in bus.of(PlatformStopFailed)] == [YT]


@pytest.mark.asyncio
async def test_restart_recovers_interrupted_session(
    make_orchestrator, relay_config, clients, bus, memory_store
) -> None:
    orchestrator = await ready(make_orchestrator, relay_config, dest(YT, "yt-1"))
    started = await orchestrator.start(SETTINGS)

    restarted = make_orchestrator(memory_store)
    await restarted.initialize()

    status = restarted.get_status()
    assert status.is_active is False
    assert status.error == INTERRUPTED_MESSAGE
    assert status.platform(YT).is_streaming is False
    assert status.platform(YT).remote_stream_id == "youtube-yt-1-b"
    assert memory_store.get(STATUS_KEY)["is_active"] is False
    assert bus.of(StreamInterrupted)[-1].started_at == started.started_at
    assert restarted.get_config() == relay_config
    assert [d.account_id for d in restarted.list_destinations()] == ["yt-1"]

    resumed = await restarted.start(SETTINGS)
    assert resumed.is_active is True
    assert resumed.error is None


@pytest.mark.asyncio
async def test_restart_after_clean_stop_keeps_status(
    sqlite_store: StateStore, clients, bus, clock, relay_config
) -> None:
    def build() -> StreamOrchestrator:
        return StreamOrchestrator(
            sqlite_store, DestinationRegistry(sqlite_store), clients, bus, clock
        )

    orchestrator = build()
    await orchestrator.initialize()
    await orchestrator.configure(relay_config)
    await orchestrator.add_destination(dest(LI, "li-1"))
    await orchestrator.start(SETTINGS)
    clock.advance(5)
    stopped = await orchestrator.stop()

    restarted = await StreamOrchestrator.create(
        sqlite_store, DestinationRegistry(sqlite_store), clients, bus, clock
    )

    assert restarted.get_status() == stopped
    assert restarted.get_status().error is None
    assert bus.of(StreamInterrupted) == []


@pytest.mark.asyncio
async def test_remove_live_destination_stops_only_that_platform(
    make_orchestrator, relay_config, clients, bus
) -> None:
    orchestrator = await ready(
        make_orchestrator, relay_config, dest(YT, "yt-1"), dest(LI, "li-1")
    )
    await orchestrator.start(SETTINGS)

    assert await orchestrator.remove_destination(YT, "yt-1") is True

    status = orchestrator.get_status()
    assert status.is_active is True
    assert status.platform(YT).is_streaming is False
    assert status.platform(LI).is_streaming is True
    assert clients.client(YT, "yt-1").operations[-1] == "end_broadcast"
    assert "end_broadcast" not in clients.client(LI, "li-1").operations
    assert [d.account_id for d in orchestrator.list_destinations()] == ["li-1"]
    assert bus.of(DestinationRemoved)[-1].found is True


@pytest.mark.asyncio
async def test_remove_other_account_does_not_stop_live_slot(
    make_orchestrator, relay_config, clients
) -> None:
    orchestrator = await ready(
        make_orchestrator,
        relay_config,
        dest(YT, "yt-1"),
        dest(YT, "yt-2", enabled=False),
    )
    await orchestrator.start(SETTINGS)

    assert await orchestrator.remove_destination(YT, "yt-2") is True
    assert orchestrator.get_status().platform(YT).is_streaming is True
    assert "end_broadcast" not in clients.client(YT, "yt-1").operations


@pytest.mark.asyncio
async def test_remove_unknown_destination(make_orchestrator, bus) -> None:
    orchestrator = make_orchestrator()
    await orchestrator.initialize()

    assert await orchestrator.remove_destination(LI, "ghost") is False
    assert bus.of(DestinationRemoved)[-1].found is False


@pytest.mark.asyncio
async def test_stop_platform_without_destination_skips_remote_call(
    make_orchestrator, relay_config, clients
) -> None:
    orchestrator = await ready(make_orchestrator, relay_config, dest(YT, "yt-1"))
    await orchestrator.start(SETTINGS)
    orchestrator.registry.remove(YT, "yt-1")

    await orchestrator.stop_platform_stream(YT)

    status = orchestrator.get_status()
    assert status.platform(YT).is_streaming is False
    assert status.is_active is True
    assert clients.client(YT, "yt-1").operations[-1] == "start_broadcast"


@pytest.mark.asyncio
async def test_stop_platform_for_unregistered_account_marks_slot_gone(
    make_orchestrator, relay_config, clients, bus
) -> None:
    orchestrator = await ready(make_orchestrator, relay_config, dest(YT, "yt-1"))
    await orchestrator.start(SETTINGS)

    await orchestrator.stop_platform_stream(YT, "ghost")

    status = orchestrator.get_status()
    assert status.platform(YT).is_streaming is False
    assert status.is_active is True
    assert clients.client(YT, "yt-1").operations[-1] == "start_broadcast"
    assert bus.of(PlatformStopped)[-1].account_id == "ghost"


@pytest.mark.asyncio
async def test_stop_platform_for_other_registered_account_keeps_slot(
    make_orchestrator, relay_config, clients
) -> None:
    orchestrator = await ready(
        make_orchestrator,
        relay_config,
        dest(YT, "yt-1"),
        dest(YT, "yt-2", enabled=False),
    )
    await orchestrator.start(SETTINGS)

    await orchestrator.stop_platform_stream(YT, "yt-2")

    assert orchestrator.get_status().platform(YT).is_streaming is True
    assert "end_broadcast" not in clients.client(YT, "yt-1").operations


@pytest.mark.asyncio
async def test_stop_issued_during_start_waits_for_start(
    make_orchestrator, relay_config, clients
) -> None:
    gate = asyncio.Event()
    clients.configure(YT, "yt-1", gate=gate)
    orchestrator = await ready(make_orchestrator, relay_config, dest(YT, "yt-1"))

    start_task = asyncio.create_task(orchestrator.start(SETTINGS))
    while not clients.order:
        await asyncio.sleep(0)
    assert orchestrator.state is RelayState.STARTING

    stop_task = asyncio.create_task(orchestrator.stop())
    await asyncio.sleep(0)
    assert not stop_task.done()

    gate.set()
    started = await start_task
    stopped = await stop_task

    assert started.is_active is True
    assert started.platform(YT).is_streaming is True
    assert stopped.is_active is False
    assert clients.client(YT, "yt-1").operations[-1] == "end_broadcast"


@pytest.mark.asyncio
async def test_configure_while_active_does_not_touch_platforms(
    make_orchestrator, relay_config, clients, memory_store, bus
) -> None:
    orchestrator = await ready(make_orchestrator, relay_config, dest(YT, "yt-1"))
    await orchestrator.start(SETTINGS)
    calls = list(clients.client(YT, "yt-1").calls)

    updated = relay_config.model_copy(update={"bitrate": 9000})
    await orchestrator.configure(updated)

    assert orchestrator.get_config() == updated
    assert memory_store.get(CONFIG_KEY)["bitrate"] == 9000
    assert clients.client(YT, "yt-1").calls == calls
    assert orchestrator.get_status().bitrate == 4500
    assert bus.of(RelayConfigured)[-1].bitrate == 9000


@pytest.mark.asyncio
async def test_get_status_returns_copy(make_orchestrator, relay_config) -> None:
    orchestrator = await ready(make_orchestrator, relay_config, dest(YT, "yt-1"))
    await orchestrator.start(SETTINGS)

    snapshot = orchestrator.get_status()
    snapshot.platforms.clear()

    assert orchestrator.get_status().platform(YT) is not None


@pytest.mark.asyncio
async def test_events_follow_the_session(make_orchestrator, relay_config, bus) -> None:
    orchestrator = await ready(make_orchestrator, relay_config, dest(YT, "yt-1"))
    await orchestrator.start(SETTINGS)
    await orchestrator.stop()

    assert [type(e) for e in bus.events] == [
        RelayConfigured,
        DestinationAdded,
        PlatformStarted,
        StreamStarted,
        PlatformStopped,
        StreamStopped,
    ]


@pytest.mark.asyncio
async def test_storage_failure_while_starting_a_platform_propagates(
    make_orchestrator, relay_config, clients, bus
) -> None:
    clients.configure(
        YT,
        "yt-1",
        fail_on="create_broadcast",
        error=StorageUnavailable(message="accounts backend down"),
    )
    orchestrator = await ready(
        make_orchestrator, relay_config, dest(YT, "yt-1"), dest(LI, "li-1")
    )

    with pytest.raises(StorageUnavailable, match="accounts backend down"):
        await orchestrator.start(SETTINGS)

    assert clients.order == [(YT, "yt-1")]
    assert orchestrator.get_status().platform(YT) is None
    assert bus.of(PlatformStartFailed) == []


@pytest.mark.asyncio
async def test_storage_failure_while_stopping_a_platform_propagates(
    make_orchestrator, relay_config, clients, bus
) -> None:
    orchestrator = await ready(
        make_orchestrator, relay_config, dest(YT, "yt-1"), dest(LI, "li-1")
    )
    await orchestrator.start(SETTINGS)
    youtube = clients.client(YT, "yt-1")
    youtube.fail_on = "end_broadcast"
    youtube.error = StorageUnavailable(message="accounts backend down")

    with pytest.raises(StorageUnavailable):
        await orchestrator.stop()

    assert orchestrator.is_active is False
    assert orchestrator.state is RelayState.IDLE
    assert bus.of(PlatformStopFailed) == []


@pytest.mark.asyncio
async def test_configure_storage_failure_keeps_previous_config(
    make_orchestrator, relay_config, flaky_store, flaky_backend, bus
) -> None:
    orchestrator = await ready(make_orchestrator, relay_config, store=flaky_store)
    flaky_backend.fail_writes = True

    with pytest.raises(StorageUnavailable, match="disk gone"):
        await orchestrator.configure(relay_config.model_copy(update={"bitrate": 9000}))

    assert orchestrator.get_config() == relay_config
    assert flaky_store.get(CONFIG_KEY)["bitrate"] == 4500
    assert [e.bitrate for e in bus.of(RelayConfigured)] == [4500]


@pytest.mark.asyncio
async def test_destination_changes_require_a_durable_write(
    make_orchestrator, relay_config, flaky_store, flaky_backend, bus
) -> None:
    orchestrator = await ready(
        make_orchestrator, relay_config, dest(YT, "yt-1"), store=flaky_store
    )
    flaky_backend.fail_writes = True

    with pytest.raises(StorageUnavailable):
        await orchestrator.add_destination(dest(LI, "li-1"))
    with pytest.raises(StorageUnavailable):
        await orchestrator.remove_destination(YT, "yt-1")

    assert [d.account_id for d in orchestrator.list_destinations()] == ["yt-1"]
    assert len(bus.of(DestinationAdded)) == 1
    assert bus.of(DestinationRemoved) == []


@pytest.mark.asyncio
async def test_removing_live_destination_without_storage_keeps_it_registered(
    make_orchestrator, relay_config, flaky_store, flaky_backend
) -> None:
    orchestrator = await ready(
        make_orchestrator, relay_config, dest(YT, "yt-1"), store=flaky_store
    )
    await orchestrator.start(SETTINGS)
    flaky_backend.fail_writes = True

    with pytest.raises(StorageUnavailable):
        await orchestrator.remove_destination(YT, "yt-1")

    assert [d.account_id for d in orchestrator.list_destinations()] == ["yt-1"]


@pytest.mark.asyncio
async def test_start_storage_failure_propagates(
    make_orchestrator, relay_config, flaky_store, flaky_backend, bus
) -> None:
    orchestrator = await ready(
        make_orchestrator, relay_config, dest(YT, "yt-1"), store=flaky_store
    )
    flaky_backend.fail_writes = True

    with pytest.raises(StorageUnavailable):
        await orchestrator.start(SETTINGS)

    assert flaky_backend.read(STATUS_KEY) is None
    assert bus.of(StreamStarted) == []


@pytest.mark.asyncio
async def test_stop_storage_failure_leaves_session_for_recovery(
    make_orchestrator, relay_config, flaky_store, flaky_backend, bus
) -> None:
    orchestrator = await ready(
        make_orchestrator, relay_config, dest(YT, "yt-1"), store=flaky_store
    )
    await orchestrator.start(SETTINGS)
    flaky_backend.fail_writes = True

    with pytest.raises(StorageUnavailable):
        await orchestrator.stop()

    assert flaky_backend.read(STATUS_KEY)["is_active"] is True
    assert bus.of(StreamStopped) == []

    flaky_backend.fail_writes = False
    restarted = make_orchestrator(flaky_store)
    await restarted.initialize()
    assert restarted.get_status().error == INTERRUPTED_MESSAGE
    assert flaky_backend.read(STATUS_KEY)["is_active"] is False
