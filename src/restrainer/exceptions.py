"""Exceptions for restrainer."""

from __future__ import annotations


class RestrainerError(Exception):
    """Base exception for restrainer errors."""

    pass


class ThrottledError(RestrainerError):
    """Raised when a restrainer refuses to hand out another slot.

    ``count`` is the number of holders observed at rejection time. It is
    ``None`` when the limit is zero, since the registry is never consulted.
    """

    def __init__(self, name: str, count: int | None) -> None:
        self.name = name
        self.count = count
        if count is None:
            message = f"Restrainer '{name}' is not allowing any processing"
        else:
            message = f"Restrainer '{name}' already has {count} processes running"
        super().__init__(message)


class ConfigurationError(RestrainerError):
    """Raised when no Redis connection can be resolved."""

    pass
