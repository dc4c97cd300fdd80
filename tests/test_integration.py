"""Integration tests for restrainer using Docker Redis.

These tests verify that sync and async restrainers, and restrainers in
separate processes, share one limit through Redis.
"""

from __future__ import annotations

import contextlib
import multiprocessing
from typing import TYPE_CHECKING

import pytest

from restrainer import AIORestrainer, Restrainer, ThrottledError
from tests.conftest import requires_docker

if TYPE_CHECKING:
    from multiprocessing.synchronize import Barrier

    from redis import Redis
    from redis.asyncio import Redis as AIORedis


def _multiprocess_worker(
    worker_id: int,
    redis_url: str,
    name: str,
    barrier: Barrier,
    results_queue: multiprocessing.Queue,
) -> None:
    """Worker function for multiprocess test (must be at module level for pickling)."""
    from redis import Redis

    from restrainer import Restrainer, ThrottledError

    r = None
    try:
        r = Redis.from_url(redis_url)
        restrainer = Restrainer(name, limit=2, redis=r)
        barrier.wait(timeout=10)
        try:
            process_id = restrainer.lock()
            results_queue.put((worker_id, "acquired", process_id))
        except ThrottledError as e:
            results_queue.put((worker_id, "throttled", e.count))
    except Exception as e:
        results_queue.put((worker_id, "error", str(e)))
    finally:
        if r is not None:
            with contextlib.suppress(Exception):
                r.close()


@requires_docker
class TestSyncAsyncInterop:
    """Tests for sync/async restrainer interoperability."""

    async def test_sync_lock_async_sees_change(
        self,
        redis_client: Redis,
        aioredis_client: AIORedis,
        unique_name: str,
    ) -> None:
        """Test that an async restrainer sees slots taken by a sync one."""
        sync_restrainer = Restrainer(unique_name, limit=2, redis=redis_client)
        async_restrainer = AIORestrainer(unique_name, limit=2, redis=aioredis_client)

        sync_restrainer.lock()
        assert await async_restrainer.current() == 1

        await async_restrainer.lock()
        assert sync_restrainer.current() == 2

        with pytest.raises(ThrottledError):
            sync_restrainer.lock()
        with pytest.raises(ThrottledError):
            await async_restrainer.lock()

    async def test_cross_release(
        self,
        redis_client: Redis,
        aioredis_client: AIORedis,
        unique_name: str,
    ) -> None:
        """Test that a slot taken by one kind can be released by the other."""
        sync_restrainer = Restrainer(unique_name, limit=1, redis=redis_client)
        async_restrainer = AIORestrainer(unique_name, limit=1, redis=aioredis_client)

        process_id = sync_restrainer.lock()
        assert await async_restrainer.release(process_id)
        assert sync_restrainer.current() == 0


@requires_docker
class TestMultiProcess:
    """Tests for multi-process restrainer usage."""

    def test_multiprocess_limit(self, docker_redis: str, unique_name: str) -> None:
        """Test that processes racing for slots never exceed the limit."""
        from redis import Redis

        workers = 5
        barrier = multiprocessing.Barrier(workers)
        results: multiprocessing.Queue = multiprocessing.Queue()

        processes = []
        for i in range(workers):
            p = multiprocessing.Process(
                target=_multiprocess_worker,
                args=(i, docker_redis, unique_name, barrier, results),
            )
            processes.append(p)
            p.start()

        outcomes = [results.get(timeout=30) for _ in range(workers)]

        for p in processes:
            p.join(timeout=30)
            if p.is_alive():
                p.terminate()
                p.join(timeout=5)

        errors = [o for o in outcomes if o[1] == "error"]
        assert not errors, f"Worker errors: {errors}"

        acquired = [o for o in outcomes if o[1] == "acquired"]
        throttled = [o for o in outcomes if o[1] == "throttled"]
        assert len(acquired) == 2
        assert len(throttled) == 3
        assert all(count == 2 for _, _, count in throttled)

        redis_client = Redis.from_url(docker_redis)
        try:
            assert Restrainer(unique_name, redis=redis_client).current() == 2
        finally:
            redis_client.close()
