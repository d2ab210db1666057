from __future__ import annotations

from dataclasses import dataclass, field

from stream_relay.errors import AppError


@dataclass(slots=True, kw_only=True, eq=False)
class DomainError(AppError):
    """Base exception for domain layer."""


@dataclass(slots=True, kw_only=True, eq=False)
class NotConfigured(DomainError):
    """Raised by ``start`` when no relay configuration was stored."""

    message: str = field(
        init=False, default="Relay not configured. Call configure first."
    )
    code: str = field(init=False, default="DOMAIN_RELAY_NOT_CONFIGURED")


@dataclass(slots=True, kw_only=True, eq=False)
class NoDestinations(DomainError):
    """Raised by ``start`` when there is no enabled destination."""

    message: str = field(
        init=False,
        default="No destinations enabled. Add at least one destination.",
    )
    code: str = field(init=False, default="DOMAIN_NO_DESTINATIONS")


@dataclass(slots=True, kw_only=True, eq=False)
class AlreadyActive(DomainError):
    """Raised by ``start`` when a stream session is already running."""

    message: str = field(init=False, default="Stream is already active")
    code: str = field(init=False, default="DOMAIN_ALREADY_ACTIVE")
