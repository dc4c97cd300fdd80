"""Distributed concurrency limiter backed by Redis.

This package limits how many processes, across any number of hosts, may
run a block of code at the same time. Slots live in a Redis sorted set and
are taken with a single atomic Lua call; slots left behind by processes
that died are reclaimed after a timeout.

Example usage (sync):

    >>> from redis import Redis
    >>> from restrainer import Restrainer, ThrottledError
    >>>
    >>> restrainer = Restrainer('my-service', limit=3, timeout=60, redis=Redis())
    >>>
    >>> try:
    ...     with restrainer.throttle():
    ...         # At most 3 processes run this at once
    ...         pass
    ... except ThrottledError:
    ...     # Try again later
    ...     pass

Example usage (async):

    >>> import asyncio
    >>> from redis.asyncio import Redis
    >>> from restrainer import AIORestrainer
    >>>
    >>> async def main():
    ...     restrainer = AIORestrainer('my-service', limit=3, redis=Redis())
    ...     async with restrainer.throttle():
    ...         pass
    >>> asyncio.run(main())

Without a ``redis`` argument, restrainers use the process-wide client set
with :func:`configure` / :func:`configure_async`, falling back to a
default local client.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version
from typing import Final

from .aioregistry import AIOSlotRegistry
from .aiorestrainer import AIORestrainer
from .config import (
    ConnectionProvider,
    aioredis_provider,
    configure,
    configure_async,
    redis_provider,
)
from .exceptions import ConfigurationError, RestrainerError, ThrottledError
from .registry import AcquireResult, SlotRegistry
from .restrainer import Restrainer

__all__: Final[tuple[str, ...]] = (
    "AIORestrainer",
    "AIOSlotRegistry",
    "AcquireResult",
    "ConfigurationError",
    "ConnectionProvider",
    "Restrainer",
    "RestrainerError",
    "SlotRegistry",
    "ThrottledError",
    "aioredis_provider",
    "configure",
    "configure_async",
    "redis_provider",
)

try:
    __version__ = version("restrainer")
except PackageNotFoundError:
    __version__ = "unknown"
