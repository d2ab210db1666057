"""Event bus implementations."""

from .inmemory import InMemoryEventBus

__all__ = ["InMemoryEventBus"]
