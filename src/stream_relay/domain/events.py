import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from stream_relay.domain.models import Platform


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DomainEvent(BaseModel):
    id: str = Field(default_factory=_new_id)
    occurred_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def name(cls) -> str:
        return cls.__name__

    model_config = ConfigDict(frozen=True, extra="forbid")


class RelayConfigured(DomainEvent):
    bitrate: int
    resolution: str


class DestinationAdded(DomainEvent):
    platform: Platform
    account_id: str
    enabled: bool


class DestinationRemoved(DomainEvent):
    platform: Platform
    account_id: str
    found: bool


class StreamStarted(DomainEvent):
    title: str
    platforms: tuple[Platform, ...]
    failed: tuple[Platform, ...]


class StreamStopped(DomainEvent):
    duration: int | None


class StreamInterrupted(DomainEvent):
    """Persisted session was active when the process last exited."""

    started_at: datetime | None


class PlatformStarted(DomainEvent):
    platform: Platform
    account_id: str
    remote_stream_id: str


class PlatformStartFailed(DomainEvent):
    platform: Platform
    account_id: str
    error: str


class PlatformStopped(DomainEvent):
    platform: Platform
    account_id: str | None


class PlatformStopFailed(DomainEvent):
    platform: Platform
    account_id: str | None
    error: str
