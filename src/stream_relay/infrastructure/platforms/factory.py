from __future__ import annotations

import httpx
from aiolimiter import AsyncLimiter

from stream_relay.application.ports import (
    CredentialResolver,
    PlatformClient,
    PlatformClientFactory,
)
from stream_relay.domain.models import Platform

from .base import HttpPlatformClient
from .linkedin import LINKEDIN_API, LinkedInClient
from .youtube import YOUTUBE_API, YouTubeClient

_CLIENTS: dict[Platform, type[HttpPlatformClient]] = {
    Platform.YOUTUBE: YouTubeClient,
    Platform.LINKEDIN: LinkedInClient,
}


class HttpPlatformClientFactory(PlatformClientFactory):
    """Build a per-account client; accounts of one platform share a limiter."""

    def __init__(
        self,
        resolver: CredentialResolver,
        http: httpx.AsyncClient,
        *,
        youtube_api_url: str = YOUTUBE_API,
        linkedin_api_url: str = LINKEDIN_API,
        max_rate: float = 10,
        time_period: float = 1.0,
    ) -> None:
        self.resolver = resolver
        self.http = http
        self._base_urls = {
            Platform.YOUTUBE: youtube_api_url,
            Platform.LINKEDIN: linkedin_api_url,
        }
        self._limiters = {
            platform: AsyncLimiter(max_rate, time_period) for platform in Platform
        }

    def create(self, platform: Platform, account_id: str) -> PlatformClient:
        client_cls = _CLIENTS[platform]
        return client_cls(  # type: ignore[return-value]
            account_id,
            self.resolver,
            self.http,
            base_url=self._base_urls[platform],
            limiter=self._limiters[platform],
        )
