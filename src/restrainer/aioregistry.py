"""Async counterpart of :mod:`restrainer.registry`.

Uses ``redis.asyncio`` and the same Lua script and key layout as the sync
registry, so sync and async restrainers with the same name share slots.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .registry import (
    AcquireResult,
    get_try_acquire_script,
    registry_key,
    script_args,
)

if TYPE_CHECKING:
    from redis.asyncio import Redis as AIORedis


class AIOSlotRegistry:
    """Async sorted set of processes currently holding slots for one name.

    Usage:
        >>> from redis.asyncio import Redis
        >>> registry = AIOSlotRegistry(redis=Redis(), name='my-service')
        >>> await registry.try_acquire('p1', limit=2, timeout=60, now=time.time())
        AcquireResult(accepted=True, count=0)
    """

    def __init__(self, *, redis: AIORedis, name: str) -> None:
        self._redis: AIORedis = redis
        self._name = name
        self._key = registry_key(name)

    @property
    def key(self) -> str:
        """Return the Redis key for this registry."""
        return self._key

    async def try_acquire(
        self, process_id: str, *, limit: int, timeout: float, now: float
    ) -> AcquireResult:
        """Atomically evict orphans if full, then add ``process_id`` if there is room."""
        script = get_try_acquire_script(self._redis)
        accepted, count = await script(
            keys=[self._key],
            args=script_args(process_id, limit, timeout, now),
            client=self._redis,
        )
        return AcquireResult(bool(accepted), int(count))

    async def release(self, process_id: str) -> bool:
        """Remove ``process_id``; return False if it was not registered."""
        return await self._redis.zrem(self._key, process_id) > 0

    async def count(self) -> int:
        """Return the number of registered processes."""
        return int(await self._redis.zcard(self._key))

    async def clear(self) -> None:
        """Delete the whole registry."""
        await self._redis.delete(self._key)
