from __future__ import annotations

from dataclasses import dataclass, field

from stream_relay.errors import AppError


@dataclass(slots=True, kw_only=True, eq=False)
class ApplicationError(AppError):
    """Base exception for application layer."""


@dataclass(slots=True, kw_only=True, eq=False)
class AccountNotFound(ApplicationError):
    """The credential resolver has no account for ``(platform, account_id)``."""

    platform: str
    account_id: str
    message: str = field(init=False)
    code: str = field(init=False, default="APP_ACCOUNT_NOT_FOUND")
    context: dict[str, str] = field(init=False)

    def __post_init__(self) -> None:  # pragma: no cover - formatting helper
        self.message = f"{self.platform} account {self.account_id} not found"
        self.context = {"platform": self.platform, "account_id": self.account_id}


@dataclass(slots=True, kw_only=True, eq=False)
class PlatformTimeout(ApplicationError):
    """A single platform call did not finish within the configured timeout."""

    platform: str
    operation: str
    timeout: float
    message: str = field(init=False)
    code: str = field(init=False, default="APP_PLATFORM_TIMEOUT")
    context: dict[str, object] = field(init=False)

    def __post_init__(self) -> None:  # pragma: no cover - formatting helper
        self.message = (
            f"{self.platform} {self.operation} timed out after {self.timeout:g}s"
        )
        self.context = {
            "platform": self.platform,
            "operation": self.operation,
            "timeout": self.timeout,
        }
