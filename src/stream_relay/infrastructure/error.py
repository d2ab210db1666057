from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from stream_relay.errors import AppError


@dataclass(slots=True, kw_only=True, eq=False)
class InfraError(AppError):
    """Base exception for infrastructure layer."""


@dataclass(slots=True, kw_only=True, eq=False)
class StorageUnavailable(InfraError):
    """The durable backend could not serve a read or a write."""

    message: str
    context: dict[str, Any] | None = None
    code: str = field(init=False, default="INFRA_STORAGE_UNAVAILABLE")


@dataclass(slots=True, kw_only=True, eq=False)
class RemoteApiError(InfraError):
    """A platform API rejected a call or could not be reached.

    ``status_code`` is ``None`` when the request never got a response.
    """

    platform: str
    detail: str
    status_code: int | None = None
    message: str = field(init=False)
    code: str = field(init=False, default="INFRA_REMOTE_API_FAILED")
    context: dict[str, Any] = field(init=False)

    def __post_init__(self) -> None:  # pragma: no cover - formatting helper
        status = "" if self.status_code is None else f" ({self.status_code})"
        self.message = f"{self.platform} API error{status}: {self.detail}"
        self.context = {"platform": self.platform, "status_code": self.status_code}
