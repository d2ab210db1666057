from stream_relay.domain.models import StreamSettings, Visibility
from stream_relay.infrastructure.presets import StreamSettingsStore, preset_key
from stream_relay.infrastructure.storage import StateStore


def test_preset_key_layout() -> None:
    assert preset_key("weekly") == "stream_settings:weekly"


def test_save_get_all_delete(sqlite_store: StateStore) -> None:
    presets = StreamSettingsStore(sqlite_store)
    presets.save("weekly", StreamSettings(title="Weekly sync", tags=("team",)))
    presets.save(
        "launch", StreamSettings(title="Launch", visibility=Visibility.UNLISTED)
    )
    sqlite_store.save("stream_status", {"is_active": False})

    assert presets.get("weekly").tags == ("team",)
    assert presets.get("missing") is None
    assert list(presets.all()) == ["launch", "weekly"]
    assert presets.all()["launch"].visibility is Visibility.UNLISTED

    assert presets.delete("launch") is True
    assert presets.delete("launch") is False
    assert list(presets.all()) == ["weekly"]


def test_replacing_a_preset_refreshes_listing(memory_store: StateStore) -> None:
    presets = StreamSettingsStore(memory_store)
    presets.save("weekly", StreamSettings(title="Old"))
    assert presets.all()["weekly"].title == "Old"

    presets.save("weekly", StreamSettings(title="New"))

    assert presets.all()["weekly"].title == "New"
    assert presets.get("weekly").title == "New"
