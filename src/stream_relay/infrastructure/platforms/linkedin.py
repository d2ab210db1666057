"""LinkedIn Live API client.

LinkedIn has no separate ingest resource: registering a live video returns
the ingest details directly, so ``create_stream`` and
``bind_stream_to_broadcast`` are no-ops. Resources are addressed by URNs,
which are treated as opaque strings outside this module.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from urllib.parse import quote

from loguru import logger

from stream_relay.application.ports import PlatformClient
from stream_relay.domain.models import Platform, RemoteResource, Visibility
from stream_relay.infrastructure.error import InfraError

from .base import HttpPlatformClient

LINKEDIN_API = "https://api.linkedin.com/v2"


def urn(kind: str, value: str) -> str:
    """Return ``urn:li:<kind>:<id>`` for *value* given with or without the prefix."""
    prefix = f"urn:li:{kind}:"
    return value if value.startswith(prefix) else prefix + value


def person_urn(value: str) -> str:
    return urn("person", value)


def live_video_urn(value: str) -> str:
    return urn("liveVideo", value)


def _epoch_ms(value: datetime | None) -> int | None:
    return int(value.timestamp() * 1000) if value else None


class LinkedInClient(HttpPlatformClient, PlatformClient):
    platform = Platform.LINKEDIN
    extra_headers = {"X-Restli-Protocol-Version": "2.0.0"}

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._live_video: RemoteResource | None = None

    async def create_broadcast(
        self,
        title: str,
        description: str,
        scheduled_start: datetime | None,
        scheduled_end: datetime | None,
        visibility: Visibility,
    ) -> RemoteResource:
        body: dict[str, Any] = {
            "owner": person_urn(self.account_id),
            "title": title,
            "description": description,
            "visibility": "PUBLIC" if visibility is Visibility.PUBLIC else "CONNECTIONS",
        }
        if scheduled_start:
            body["broadcastStartTime"] = _epoch_ms(scheduled_start)
        if scheduled_end:
            body["broadcastEndTime"] = _epoch_ms(scheduled_end)
        data = await self._request("POST", "/liveVideos", json=body)
        details = data.get("streamingDetails") or {}
        self._live_video = RemoteResource(
            id=self._require_id(data, "liveVideos.create"),
            ingest_url=details.get("ingestUrl"),
            stream_key=details.get("streamKey"),
        )
        return self._live_video

    async def create_stream(
        self, title: str, resolution: str, frame_rate: int
    ) -> RemoteResource:
        if self._live_video is None:
            raise InfraError(
                message="LinkedIn live video must be created before its stream",
                code="INFRA_LINKEDIN_NO_LIVE_VIDEO",
            )
        return self._live_video

    async def bind_stream_to_broadcast(self, broadcast_id: str, stream_id: str) -> None:
        logger.trace(f"linkedin: {stream_id} is bound to {broadcast_id} by creation")

    async def start_broadcast(self, broadcast_id: str) -> None:
        # READY then PUBLISHED; a failed PUBLISHED fails the whole start
        await self._transition(broadcast_id, "READY")
        await self._transition(broadcast_id, "PUBLISHED")

    async def end_broadcast(self, broadcast_id: str) -> None:
        await self._transition(broadcast_id, "ENDED")

    async def _transition(self, live_video_id: str, transition: str) -> None:
        path = f"/liveVideos/{quote(live_video_urn(live_video_id), safe='')}"
        await self._request(
            "POST",
            path,
            params={"action": "transition"},
            json={"transition": transition},
        )

    def error_detail(self, body: dict[str, Any]) -> str | None:
        message = body.get("message") or body.get("serviceErrorMessage")
        return str(message) if message else None
