"""Infrastructure implementations for system-provided services."""

from __future__ import annotations

from datetime import datetime, timezone

from stream_relay.domain.protocols import Clock


class SystemClock(Clock):
    """Return the current UTC timestamp using :func:`datetime.now`."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
