"""YouTube Live Streaming API client.

A YouTube session needs two remote resources: a *broadcast* (the public
event) and a *stream* (the ingest endpoint), bound together before the
broadcast can transition to ``live``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from stream_relay.application.ports import PlatformClient
from stream_relay.domain.models import Platform, RemoteResource, Visibility

from .base import HttpPlatformClient

YOUTUBE_API = "https://youtube.googleapis.com/youtube/v3"

_BROADCAST_PARTS = "snippet,contentDetails,status"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class YouTubeClient(HttpPlatformClient, PlatformClient):
    platform = Platform.YOUTUBE

    async def create_broadcast(
        self,
        title: str,
        description: str,
        scheduled_start: datetime | None,
        scheduled_end: datetime | None,
        visibility: Visibility,
    ) -> RemoteResource:
        snippet: dict[str, Any] = {"title": title, "description": description}
        if scheduled_start:
            snippet["scheduledStartTime"] = _iso(scheduled_start)
        if scheduled_end:
            snippet["scheduledEndTime"] = _iso(scheduled_end)
        body = {
            "snippet": snippet,
            "status": {
                "privacyStatus": visibility.value,
                "selfDeclaredMadeForKids": False,
            },
            "contentDetails": {
                "enableAutoStart": False,
                "enableAutoStop": False,
                "enableDvr": True,
                "enableContentEncryption": False,
                "enableEmbed": True,
                "recordFromStart": True,
                "startWithSlate": False,
            },
        }
        data = await self._request(
            "POST", "/liveBroadcasts", params={"part": _BROADCAST_PARTS}, json=body
        )
        return RemoteResource(id=self._require_id(data, "liveBroadcasts.insert"))

    async def create_stream(
        self, title: str, resolution: str, frame_rate: int
    ) -> RemoteResource:
        body = {
            "snippet": {"title": title, "description": title},
            "cdn": {
                "ingestionType": "rtmp",
                "resolution": resolution,
                "frameRate": f"{frame_rate}fps",
            },
        }
        data = await self._request(
            "POST", "/liveStreams", params={"part": "snippet,cdn"}, json=body
        )
        ingestion = data.get("cdn", {}).get("ingestionInfo", {})
        return RemoteResource(
            id=self._require_id(data, "liveStreams.insert"),
            ingest_url=ingestion.get("ingestionAddress"),
            stream_key=ingestion.get("streamName"),
        )

    async def bind_stream_to_broadcast(self, broadcast_id: str, stream_id: str) -> None:
        await self._request(
            "POST",
            "/liveBroadcasts/bind",
            params={"id": broadcast_id, "streamId": stream_id, "part": _BROADCAST_PARTS},
        )

    async def start_broadcast(self, broadcast_id: str) -> None:
        await self._transition(broadcast_id, "live")

    async def end_broadcast(self, broadcast_id: str) -> None:
        await self._transition(broadcast_id, "complete")

    async def _transition(self, broadcast_id: str, status: str) -> None:
        await self._request(
            "POST",
            "/liveBroadcasts/transition",
            params={"id": broadcast_id, "broadcastStatus": status, "part": "status"},
        )

    def error_detail(self, body: dict[str, Any]) -> str | None:
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        return super().error_detail(body)
