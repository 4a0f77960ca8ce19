"""
Integration Tests Against a Live Redis

Run with a local Redis on REDIS_URL (default redis://localhost:6379/15):

    USE_REAL_REDIS=1 pytest tests/integration -m integration
"""

import os
import uuid

import pytest

from cacheguard.application.services.cache_service import CacheService
from cacheguard.core.config.constants import ConnectionMode
from cacheguard.infrastructure.cache.resilient_client import (
    CacheClientConfig,
    ResilientCacheClient,
    verify_connection,
)

pytestmark = pytest.mark.integration


@pytest.fixture
async def live_client(use_real_redis):
    if not use_real_redis:
        pytest.skip("USE_REAL_REDIS not set")
    client = ResilientCacheClient(
        CacheClientConfig(
            url=os.getenv("REDIS_URL", "redis://localhost:6379/15"),
            max_retries=1,
            retry_delay_ms=10,
        )
    )
    await client.initialize()
    yield client
    await client.close()


@pytest.fixture
def prefix():
    return f"cacheguard-it:{uuid.uuid4().hex}"


async def test_connects_to_single_node(live_client):
    assert live_client.get_mode() is ConnectionMode.SINGLE
    assert await verify_connection(live_client) is True


async def test_set_get_ttl(live_client, prefix):
    key = f"{prefix}:k"
    await live_client.set(key, "v", 30)

    assert await live_client.get(key) == "v"
    assert 0 < await live_client.ttl(key) <= 30

    await live_client.delete(key)
    assert await live_client.get(key) is None


async def test_counter(live_client, prefix):
    key = f"{prefix}:counter"
    assert await live_client.incr(key) == 1
    assert await live_client.incr(key) == 2
    await live_client.delete(key)


async def test_cache_service_read_through(live_client, prefix):
    service = CacheService(live_client)
    calls = []

    async def load():
        calls.append(1)
        return {"id": 1, "name": "Plumbing"}

    key = f"{prefix}:category"
    first = await service.get_or_set(key, 30, load)
    second = await service.get_or_set(key, 30, load)

    assert first.from_cache is False
    assert second.from_cache is True
    assert second.data == {"id": 1, "name": "Plumbing"}
    assert len(calls) == 1
    await live_client.delete(key)
