from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ConfiguredBaseModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class Platform(str, Enum):
    YOUTUBE = "youtube"
    LINKEDIN = "linkedin"


class Visibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    UNLISTED = "unlisted"


class RelayState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class EventStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    COMPLETED = "completed"
    CANCELED = "canceled"


class Destination(ConfiguredBaseModel):
    """One platform+account pair the relay fans out to."""

    platform: Platform
    account_id: str = Field(min_length=1)
    enabled: bool = True
    stream_key: str | None = None
    ingest_url: str | None = None

    @property
    def identity(self) -> tuple[Platform, str]:
        return (self.platform, self.account_id)

    def merged_with(self, update: Destination) -> Destination:
        """Apply the fields explicitly set on *update* on top of this record."""
        changes = update.model_dump(exclude_unset=True)
        return self.model_copy(update=changes)


class RelayConfig(ConfiguredBaseModel):
    bitrate: int = Field(gt=0)  # kbps
    resolution: str
    frame_rate: int = Field(gt=0)
    audio_quality: int = Field(gt=0)  # kbps
    encoder: str
    preset: str
    custom_params: dict[str, str] | None = None


class StreamSettings(ConfiguredBaseModel):
    title: str
    description: str = ""
    visibility: Visibility = Visibility.PUBLIC
    tags: tuple[str, ...] = ()
    scheduled_start: datetime | None = None
    scheduled_end: datetime | None = None


class RemoteResource(ConfiguredBaseModel):
    """Identifier of a broadcast or ingest stream created on a platform."""

    id: str
    ingest_url: str | None = None
    stream_key: str | None = None


class PlatformStatus(ConfiguredBaseModel):
    is_streaming: bool = False
    account_id: str | None = None
    remote_stream_id: str | None = None
    ingest_url: str | None = None
    viewer_count: int | None = None
    started_at: datetime | None = None
    error: str | None = None


class RelayStatus(ConfiguredBaseModel):
    """Aggregate view of the stream session and every platform slot.

    A platform missing from ``platforms`` was never attempted in this session.
    """

    is_active: bool = False
    started_at: datetime | None = None
    duration: int | None = None  # seconds, set by stop
    bitrate: int | None = None
    platforms: dict[Platform, PlatformStatus] = Field(default_factory=dict)
    error: str | None = None

    def platform(self, platform: Platform) -> PlatformStatus | None:
        return self.platforms.get(platform)

    def streaming_platforms(self) -> list[Platform]:
        return [p for p, s in self.platforms.items() if s.is_streaming]

    def with_platform(self, platform: Platform, status: PlatformStatus) -> RelayStatus:
        platforms = dict(self.platforms)
        platforms[platform] = status
        return self.model_copy(update={"platforms": platforms})


class Account(ConfiguredBaseModel):
    """OAuth account record; tokens are obtained outside of this package."""

    platform: Platform
    id: str = Field(min_length=1)
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    profile: dict[str, Any] = Field(default_factory=dict)


class ScheduledEvent(ConfiguredBaseModel):
    """A planned session.

    ``settings`` holds per-platform stream settings; the first entry supplies
    visibility and tags when the event is run. Naive times are taken as UTC.
    """

    id: str = Field(min_length=1)
    title: str
    description: str = ""
    platforms: tuple[Platform, ...] = ()
    scheduled_start: datetime
    scheduled_end: datetime | None = None
    settings: dict[Platform, StreamSettings] = Field(default_factory=dict)
    status: EventStatus = EventStatus.SCHEDULED

    @field_validator("scheduled_start", "scheduled_end")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def stream_settings(self) -> StreamSettings:
        update = {
            "title": self.title,
            "description": self.description,
            "scheduled_start": self.scheduled_start,
            "scheduled_end": self.scheduled_end,
        }
        base = next(iter(self.settings.values()), None)
        if base is None:
            return StreamSettings(**update)
        return base.model_copy(update=update)
