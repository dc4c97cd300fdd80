"""Redis-backed limit on the number of processes running a block at once.

This module implements :class:`Restrainer`, a refuse-if-full distributed
semaphore. Slots are tracked in a :class:`~restrainer.registry.SlotRegistry`
and taken with a single atomic Lua call, so any number of processes on any
number of hosts can share one limit.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from pottery import ContextTimer

from .config import ConnectionProvider, redis_provider
from .exceptions import ThrottledError
from .registry import SlotRegistry, registry_key

if TYPE_CHECKING:
    from redis import Redis

logger = logging.getLogger(__name__)


class Restrainer:
    """Distributed Redis-powered concurrency limiter.

    If ``limit`` processes identified by the same name are already running,
    further attempts are refused with :class:`ThrottledError` instead of
    waiting. A negative limit disables the restrainer entirely and a limit
    of zero refuses everything.

    Usage:
        >>> from redis import Redis
        >>> restrainer = Restrainer('my-service', limit=10, redis=Redis())
        >>> with restrainer.throttle():
        ...     # At most 10 of these run at once across all processes
        ...     pass

        >>> # Or take and release a slot by hand
        >>> process_id = restrainer.lock()
        >>> try:
        ...     pass
        ... finally:
        ...     restrainer.release(process_id)

    Args:
        name: Identifies the restrainer; restrainers with the same name share slots
        limit: Maximum number of concurrent processes (default: -1, unlimited)
        timeout: Seconds after which an unreleased slot is treated as orphaned
            and reclaimed. This does not time out the protected code itself.
        redis: Redis client to use; defaults to the process-wide provider
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
        redis: Redis | None = None,
        provider: ConnectionProvider[Redis] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if timeout <= 0:
            raise ValueError("Restrainer timeout must be positive")

        self._name = name
        self._limit = limit
        self._timeout = timeout
        self._key = registry_key(name)
        self._redis = redis
        self._provider = provider if provider is not None else redis_provider
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

    def _registry(self) -> SlotRegistry:
        # Resolve the client once so an operation talks to a single connection
        redis = self._redis if self._redis is not None else self._provider.get()
        return SlotRegistry(redis=redis, name=self._name)

    @contextmanager
    def throttle(self, limit: int | None = None) -> Iterator[str | None]:
        """Run the enclosed block only if a slot is available.

        Raises :class:`ThrottledError` before the block starts if the
        restrainer is full. The slot is released however the block exits.

        Args:
            limit: Overrides the limit given to the constructor for this call

        Yields:
            The process id holding the slot, or None when unlimited
        """
        process_id = self.lock(limit=limit)
        timer = ContextTimer()
        try:
            with timer:
                yield process_id
        finally:
            self.release(process_id)
            if process_id is not None and timer.elapsed() / 1000 > self._timeout:
                logger.warning(
                    "Restrainer %r held slot %s for %.1fs, longer than its %ss "
                    "timeout; the slot may have been reclaimed as orphaned",
                    self._name,
                    process_id,
                    timer.elapsed() / 1000,
                    self._timeout,
                )

    def lock(
        self, process_id: str | None = None, *, limit: int | None = None
    ) -> str | None:
        """Take a slot without blocking.

        The caller must pass the returned id to :meth:`release` when done.

        Args:
            process_id: Id to register the slot under (default: random UUID)
            limit: Overrides the limit given to the constructor for this call

        Returns:
            The process id, or None if the restrainer is unlimited and there
            is nothing to release

        Raises:
            ThrottledError: If the limit is zero or already reached
        """
        if limit is None:
            limit = self._limit

        # A negative limit means no limit; zero means allow none
        if limit < 0:
            return None
        if limit == 0:
            logger.info("Restrainer %r is not allowing any processing", self._name)
            raise ThrottledError(self._name, None)

        if process_id is None:
            process_id = uuid.uuid4().hex
        result = self._registry().try_acquire(
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

    def release(self, process_id: str | None) -> bool:
        """Release a slot taken with :meth:`lock`.

        Returns:
            True if a slot was removed; False if ``process_id`` is None or the
            slot was already gone (e.g. reclaimed as orphaned)
        """
        if process_id is None:
            return False

        removed = self._registry().release(process_id)
        if removed:
            logger.debug("Restrainer %r slot %s released", self._name, process_id)
        else:
            logger.debug(
                "Restrainer %r slot %s was already released", self._name, process_id
            )
        return removed

    def current(self) -> int:
        """Return the number of processes currently running."""
        return self._registry().count()

    def clear(self) -> None:
        """Forget every running process."""
        self._registry().clear()

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__} "
            f"name={self._name!r} "
            f"limit={self._limit} "
            f"timeout={self._timeout}>"
        )
