"""Async Redis-backed concurrency limiter.

This module implements :class:`AIORestrainer`, the ``redis.asyncio``
counterpart of :class:`~restrainer.Restrainer`. Both store slots the same
way, so sync and async restrainers with the same name share one limit.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from pottery import ContextTimer

from .aioregistry import AIOSlotRegistry
from .config import ConnectionProvider, aioredis_provider
from .exceptions import ThrottledError
from .registry import registry_key

if TYPE_CHECKING:
    from redis.asyncio import Redis as AIORedis

logger = logging.getLogger(__name__)


class AIORestrainer:
    """Async distributed Redis-powered concurrency limiter.

    Usage:
        >>> import asyncio
        >>> from redis.asyncio import Redis
        >>> async def main():
        ...     restrainer = AIORestrainer('my-service', limit=10, redis=Redis())
        ...     async with restrainer.throttle():
        ...         # At most 10 of these run at once across all processes
        ...         pass
        >>> asyncio.run(main())

    Args:
        name: Identifies the restrainer; restrainers with the same name share slots
        limit: Maximum number of concurrent processes (default: -1, unlimited)
        timeout: Seconds after which an unreleased slot is treated as orphaned
        redis: Async Redis client to use; defaults to the process-wide provider
        provider: Connection provider to resolve a client from when ``redis``
            is not given
        clock: Returns the current epoch time in seconds
    """

    def __init__(
        self,
        name: str,
        *,
        limit: int = -1,
        timeout: float = 60,
        redis: AIORedis | None = None,
        provider: ConnectionProvider[AIORedis] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if timeout <= 0:
            raise ValueError("Restrainer timeout must be positive")

        self._name = name
        self._limit = limit
        self._timeout = timeout
        self._key = registry_key(name)
        self._redis = redis
        self._provider = (
            provider if provider is not None else aioredis_provider
        )
        self._clock = clock

    @property
    def name(self) -> str:
        return self._name

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def key(self) -> str:
        """Return the Redis key holding the running processes."""
        return self._key

    def _registry(self) -> AIOSlotRegistry:
        redis = self._redis if self._redis is not None else self._provider.get()
        return AIOSlotRegistry(redis=redis, name=self._name)

    @asynccontextmanager
    async def throttle(self, limit: int | None = None) -> AsyncIterator[str | None]:
        """Run the enclosed block only if a slot is available.

        The slot is released on every exit path, including task cancellation.
        """
        process_id = await self.lock(limit=limit)
        timer = ContextTimer()
        try:
            with timer:
                yield process_id
        finally:
            await self.release(process_id)
            if process_id is not None and timer.elapsed() / 1000 > self._timeout:
                logger.warning(
                    "Restrainer %r held slot %s for %.1fs, longer than its %ss "
                    "timeout; the slot may have been reclaimed as orphaned",
                    self._name,
                    process_id,
                    timer.elapsed() / 1000,
                    self._timeout,
                )

    async def lock(
        self, process_id: str | None = None, *, limit: int | None = None
    ) -> str | None:
        """Take a slot without waiting.

        Returns:
            The process id, or None if the restrainer is unlimited

        Raises:
            ThrottledError: If the limit is zero or already reached
        """
        if limit is None:
            limit = self._limit

        if limit < 0:
            return None
        if limit == 0:
            logger.info("Restrainer %r is not allowing any processing", self._name)
            raise ThrottledError(self._name, None)

        if process_id is None:
            process_id = uuid.uuid4().hex
        result = await self._registry().try_acquire(
            process_id, limit=limit, timeout=self._timeout, now=self._clock()
        )
        if not result.accepted:
            logger.info(
                "Restrainer %r throttled: %d of %d slots in use",
                self._name,
                result.count,
                limit,
            )
            raise ThrottledError(self._name, result.count)

        logger.debug(
            "Restrainer %r slot %s acquired with %d already running",
            self._name,
            process_id,
            result.count,
        )
        return process_id

    async def release(self, process_id: str | None) -> bool:
        """Release a slot taken with :meth:`lock`; False if it was already gone."""
        if process_id is None:
            return False

        removed = await self._registry().release(process_id)
        if not removed:
            logger.debug(
                "Restrainer %r slot %s was already released", self._name, process_id
            )
        return removed

    async def current(self) -> int:
        """Return the number of processes currently running."""
        return await self._registry().count()

    async def clear(self) -> None:
        """Forget every running process."""
        await self._registry().clear()

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__} "
            f"name={self._name!r} "
            f"limit={self._limit} "
            f"timeout={self._timeout}>"
        )
