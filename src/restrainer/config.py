"""Process-wide Redis connection resolution.

A restrainer that is not handed a client explicitly asks a
:class:`ConnectionProvider` for one on every operation. Configuring a
factory instead of a fixed client makes it possible to hand out
connections from a pool:

    >>> import restrainer
    >>> restrainer.configure(factory=lambda: pool.get_client())

If nothing is configured, the provider falls back to a default local
client (``Redis()``), built once on first use. The async provider builds
one default client per event loop, since pooled asyncio connections
cannot be shared across loops.
"""

from __future__ import annotations

import asyncio
import threading
import weakref
from collections.abc import Callable
from typing import Any, Generic, TypeVar

from redis import Redis
from redis.asyncio import Redis as AIORedis

from .exceptions import ConfigurationError

T = TypeVar("T")


class ConnectionProvider(Generic[T]):
    """Resolves the Redis client used by restrainers that have none of their own."""

    def __init__(
        self, default_factory: Callable[[], T], *, per_loop: bool = False
    ) -> None:
        self._default_factory = default_factory
        self._per_loop = per_loop
        self._factory: Callable[[], T | None] | None = None
        self._default: T | None = None
        self._loop_defaults: weakref.WeakKeyDictionary[Any, T] = (
            weakref.WeakKeyDictionary()
        )
        self._lock = threading.Lock()

    def configure(
        self,
        redis: T | None = None,
        *,
        factory: Callable[[], T | None] | None = None,
    ) -> None:
        """Set either a fixed client or a zero-argument factory returning one."""
        if (redis is None) == (factory is None):
            raise ConfigurationError(
                "configure() takes exactly one of a redis client or a factory"
            )
        if factory is not None and not callable(factory):
            raise ConfigurationError(f"factory must be callable, got {factory!r}")

        if redis is not None:
            client = redis
            self._factory = lambda: client
        else:
            self._factory = factory

    def get(self) -> T:
        """Return a client, building the default local one if unconfigured."""
        factory = self._factory
        if factory is None:
            return self._get_default()

        client = factory()
        if client is None:
            raise ConfigurationError("Redis connection factory returned None")
        return client

    def _get_default(self) -> T:
        with self._lock:
            if self._per_loop:
                # Raises RuntimeError outside a running event loop
                loop = asyncio.get_running_loop()
                client = self._loop_defaults.get(loop)
                if client is None:
                    client = self._loop_defaults[loop] = self._default_factory()
                return client

            if self._default is None:
                self._default = self._default_factory()
            return self._default

    @property
    def configured(self) -> bool:
        return self._factory is not None

    def reset(self) -> None:
        """Forget any configuration and the cached default client."""
        with self._lock:
            self._factory = None
            self._default = None
            self._loop_defaults.clear()


redis_provider: ConnectionProvider[Redis] = ConnectionProvider(Redis)
aioredis_provider: ConnectionProvider[AIORedis] = ConnectionProvider(
    AIORedis, per_loop=True
)


def configure(redis: Redis | None = None, *, factory: Any = None) -> None:
    """Configure the process-wide client used by :class:`~restrainer.Restrainer`."""
    redis_provider.configure(redis, factory=factory)


def configure_async(redis: AIORedis | None = None, *, factory: Any = None) -> None:
    """Configure the process-wide client used by :class:`~restrainer.AIORestrainer`."""
    aioredis_provider.configure(redis, factory=factory)
