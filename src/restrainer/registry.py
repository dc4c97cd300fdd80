"""Redis sorted-set registry of the processes holding a restrainer's slots.

Each restrainer name maps to one sorted set whose members are process ids
and whose scores are the epoch time at which the slot was taken. The
check-count-and-add step runs as a single Lua script so that no two
callers can both see room and both add themselves.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any, NamedTuple

if TYPE_CHECKING:
    from redis import Redis

KEY_PREFIX = "restrainer"

# KEYS[1]: registry key
# ARGV: process id, limit, now (s), orphan cutoff (s), key ttl (ms)
TRY_ACQUIRE_LUA = """
local key = KEYS[1]
local limit = tonumber(ARGV[2])

local count = redis.call('ZCARD', key)
if count >= limit then
    local removed = redis.call('ZREMRANGEBYSCORE', key, '-inf', ARGV[4])
    if removed > 0 then
        count = redis.call('ZCARD', key)
    end
end

if count < limit then
    redis.call('ZADD', key, ARGV[3], ARGV[1])
    redis.call('PEXPIRE', key, ARGV[5])
    return {1, count}
end

return {0, count}
"""


def registry_key(name: str) -> str:
    """Return the Redis key holding the registry for ``name``."""
    return f"{KEY_PREFIX}:{name}"


def ttl_milliseconds(timeout: float) -> int:
    """Convert a staleness timeout in seconds to a PEXPIRE value, rounding up."""
    return max(1, math.ceil(timeout * 1000))


def get_try_acquire_script(redis: Any) -> Any:
    """Return the acquire script registered with ``redis``, cached on the client.

    Works for both sync and async clients. The returned script runs EVALSHA
    and, if Redis answers NOSCRIPT, loads the body and retries once.
    """
    script = getattr(redis, "_restrainer_try_acquire_script", None)
    if script is None:
        script = redis.register_script(TRY_ACQUIRE_LUA)
        setattr(redis, "_restrainer_try_acquire_script", script)
    return script


class AcquireResult(NamedTuple):
    """Outcome of an atomic acquire attempt.

    ``count`` is the number of processes that were running before this one
    would have been added.
    """

    accepted: bool
    count: int


def script_args(
    process_id: str, limit: int, timeout: float, now: float
) -> list[Any]:
    # Scores travel as repr() strings so Redis sees full float precision
    return [
        process_id,
        limit,
        repr(float(now)),
        repr(float(now) - timeout),
        ttl_milliseconds(timeout),
    ]


class SlotRegistry:
    """Sorted set of processes currently holding slots for one name.

    Usage:
        >>> from redis import Redis
        >>> registry = SlotRegistry(redis=Redis(), name='my-service')
        >>> registry.try_acquire('p1', limit=2, timeout=60, now=time.time())
        AcquireResult(accepted=True, count=0)
        >>> registry.release('p1')
        True
    """

    def __init__(self, *, redis: Redis, name: str) -> None:
        self._redis = redis
        self._name = name
        self._key = registry_key(name)

    @property
    def key(self) -> str:
        """Return the Redis key for this registry."""
        return self._key

    def try_acquire(
        self, process_id: str, *, limit: int, timeout: float, now: float
    ) -> AcquireResult:
        """Atomically evict orphans if full, then add ``process_id`` if there is room."""
        script = get_try_acquire_script(self._redis)
        accepted, count = script(
            keys=[self._key],
            args=script_args(process_id, limit, timeout, now),
            client=self._redis,
        )
        return AcquireResult(bool(accepted), int(count))

    def release(self, process_id: str) -> bool:
        """Remove ``process_id``; return False if it was not registered."""
        return self._redis.zrem(self._key, process_id) > 0

    def count(self) -> int:
        """Return the number of registered processes."""
        return int(self._redis.zcard(self._key))

    def clear(self) -> None:
        """Delete the whole registry."""
        self._redis.delete(self._key)
