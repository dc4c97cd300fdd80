"""Pytest configuration and fixtures for restrainer tests."""

from __future__ import annotations

import shutil
import subprocess
import time
import uuid
from collections.abc import AsyncGenerator, Generator
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from redis import Redis
    from redis.asyncio import Redis as AIORedis


def is_docker_available() -> bool:
    if not shutil.which("docker"):
        return False
    try:
        info = subprocess.run(["docker", "info"], capture_output=True, timeout=5)
    except subprocess.TimeoutExpired:
        return False
    return info.returncode == 0


requires_docker = pytest.mark.skipif(
    not is_docker_available(),
    reason="Docker is not available",
)


REDIS_PORT = 6398

COMPOSE_FILE = """
services:
  redis:
    image: redis:7-alpine
    ports:
      - "{port}:6379"
    healthcheck:
      test: ["CMD", "redis-cli", "ping"]
      interval: 1s
      retries: 30
"""


@pytest.fixture(scope="session")
def docker_redis(
    tmp_path_factory: pytest.TempPathFactory,
) -> Generator[str, None, None]:
    """Start Redis in Docker and return its URL once it is healthy."""
    compose_file = tmp_path_factory.mktemp("redis") / "docker-compose.yml"
    compose_file.write_text(COMPOSE_FILE.format(port=REDIS_PORT))
    compose = ["docker", "compose", "-f", str(compose_file)]

    subprocess.run([*compose, "up", "-d", "--wait"], check=True, capture_output=True)
    try:
        yield f"redis://localhost:{REDIS_PORT}/0"
    finally:
        subprocess.run([*compose, "down", "-v"], capture_output=True)


@pytest.fixture
def redis_client(docker_redis: str) -> Generator[Redis, None, None]:
    """Create a Redis client connected to Docker Redis."""
    from redis import Redis

    client = Redis.from_url(docker_redis)
    client.flushdb()
    yield client
    client.close()


@pytest.fixture
async def aioredis_client(docker_redis: str) -> AsyncGenerator[AIORedis, None]:
    """Create an async Redis client connected to Docker Redis."""
    from redis.asyncio import Redis as AIORedis

    client = AIORedis.from_url(docker_redis)
    await client.flushdb()
    yield client
    await client.aclose()


@pytest.fixture
def unique_name() -> str:
    return f"test-{uuid.uuid4().hex[:8]}"


@pytest.fixture(autouse=True)
def reset_providers() -> Generator[None, None, None]:
    """Drop process-wide connection configuration between tests."""
    from restrainer import aioredis_provider, redis_provider

    yield
    redis_provider.reset()
    aioredis_provider.reset()


class FakeClock:
    """Settable replacement for ``time.time``."""

    def __init__(self, now: float | None = None) -> None:
        self.now = time.time() if now is None else now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
