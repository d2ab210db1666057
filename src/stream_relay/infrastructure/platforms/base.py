from __future__ import annotations

from typing import Any, ClassVar

import httpx
from aiolimiter import AsyncLimiter
from loguru import logger

from stream_relay.application.ports import CredentialResolver
from stream_relay.domain.models import Platform
from stream_relay.infrastructure.error import RemoteApiError


class HttpPlatformClient:
    """Shared request plumbing for the platform REST clients.

    Every request resolves a fresh bearer token for ``account_id`` and passes
    through the limiter. Non-2xx responses and transport failures raise
    :class:`RemoteApiError`.
    """

    platform: ClassVar[Platform]
    extra_headers: ClassVar[dict[str, str]] = {}

    def __init__(
        self,
        account_id: str,
        resolver: CredentialResolver,
        http: httpx.AsyncClient,
        *,
        base_url: str,
        limiter: AsyncLimiter | None = None,
    ) -> None:
        self.account_id = account_id
        self.resolver = resolver
        self._http = http
        self.base_url = base_url.rstrip("/")
        self._limiter = limiter or AsyncLimiter(10, 1)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        token = self.resolver.resolve(self.platform, self.account_id)
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            **self.extra_headers,
        }
        url = f"{self.base_url}{path}"
        logger.debug(f"{self.platform.value}: {method} {path}")
        try:
            async with self._limiter:
                r = await self._http.request(
                    method, url, params=params, json=json, headers=headers
                )
        except httpx.HTTPError as exc:
            raise RemoteApiError(
                platform=self.platform.value, detail=str(exc) or type(exc).__name__
            ) from exc
        if r.is_error:
            raise RemoteApiError(
                platform=self.platform.value,
                status_code=r.status_code,
                detail=self.error_detail(_json_or_empty(r)) or r.reason_phrase,
            )
        return _json_or_empty(r)

    def error_detail(self, body: dict[str, Any]) -> str | None:
        message = body.get("message")
        return str(message) if message else None

    def _require_id(self, data: dict[str, Any], what: str) -> str:
        resource_id = data.get("id")
        if not resource_id:
            raise RemoteApiError(
                platform=self.platform.value, detail=f"{what} response has no id"
            )
        return str(resource_id)


def _json_or_empty(r: httpx.Response) -> dict[str, Any]:
    if not r.content:
        return {}
    try:
        data = r.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
