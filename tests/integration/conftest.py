"""Integration test fixtures using Docker.

Provides a containerized Redis so tracking and invalidation run against a
real server.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Iterator

import pytest
import pytest_asyncio
import redis.asyncio as redis

from tests.integration.docker_utils import RedisService, get_docker_client, run_redis
from trackcache.cache.provider import ClientSideCache
from trackcache.client import TrackingRedisClient


@pytest.fixture(scope="session")
def docker_client():
    """Create a Docker client or skip if Docker is unavailable."""
    try:
        client = get_docker_client()
        client.ping()
    except Exception as exc:
        pytest.skip(f"Docker not available: {exc}")
    yield client
    client.close()


@pytest.fixture(scope="session")
def redis_container(docker_client) -> Iterator[RedisService]:
    """Start Redis container for the test session."""
    with run_redis(docker_client) as service:
        yield service


@pytest.fixture(scope="session")
def redis_url(redis_container: RedisService) -> str:
    """Get the Redis URL for the test container."""
    return redis_container.url


@pytest_asyncio.fixture
async def writer(redis_url: str) -> AsyncIterator[redis.Redis]:
    """Plain client used to modify keys behind the cache's back."""
    client = redis.from_url(redis_url)
    await _wait_for_redis(client)
    yield client
    await client.flushdb()  # Clean up after each test
    await client.aclose()


@pytest_asyncio.fixture
async def tracking(redis_url: str, writer: redis.Redis) -> AsyncIterator[TrackingRedisClient]:
    """Connected tracking client with statistics enabled."""
    client = TrackingRedisClient.from_url(
        redis_url,
        ClientSideCache(enable_statistics=True),
        poll_timeout=0.05,
        reconnect_delay=0.1,
    )
    await client.connect()
    yield client
    await client.close()


async def _wait_for_redis(client: redis.Redis, timeout: float = 30.0) -> None:
    """Wait for Redis to accept connections."""
    deadline = time.monotonic() + timeout
    while True:
        try:
            await client.ping()
            return
        except Exception:
            if time.monotonic() >= deadline:
                raise
            await asyncio.sleep(0.5)
