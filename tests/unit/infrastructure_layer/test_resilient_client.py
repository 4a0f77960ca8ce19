"""
Unit Tests for ResilientCacheClient

The Redis handle is an AsyncMock returned by a mocked BackendFactory, so
these tests exercise mode selection, transport failure and fallback
dispatch without a running server.
"""

import asyncio

import pytest
from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from cacheguard.core.config.constants import ConnectionMode
from cacheguard.core.exceptions import (
    CacheClientClosedError,
    CacheConnectionError,
    ConfigurationError,
)
from cacheguard.infrastructure.cache.resilient_client import (
    BackendFactory,
    BackendState,
    CacheClientConfig,
    ResilientCacheClient,
    parse_node_url,
    verify_connection,
)


# ============================================================================
# Configuration
# ============================================================================


@pytest.mark.unit
class TestConfiguration:
    def test_parse_node_url_defaults_port(self):
        assert parse_node_url("cache.internal") == ("cache.internal", 6379)
        assert parse_node_url("redis://n1:7001") == ("n1", 7001)

    def test_invalid_port_rejected(self):
        with pytest.raises(ConfigurationError):
            CacheClientConfig(url="redis://host:notaport")

    def test_missing_host_rejected(self):
        with pytest.raises(ConfigurationError):
            parse_node_url("redis://:6379")

    def test_backend_state_requires_matching_handle(self):
        with pytest.raises(ValueError):
            BackendState(ConnectionMode.SINGLE)
        with pytest.raises(ValueError):
            BackendState(ConnectionMode.MEMORY, handle=object())

    def test_factory_builds_single_handle(self, single_config):
        handle = BackendFactory(single_config).build(ConnectionMode.SINGLE)
        assert isinstance(handle, Redis)

    def test_factory_has_no_memory_handle(self, single_config):
        with pytest.raises(ValueError):
            BackendFactory(single_config).build(ConnectionMode.MEMORY)


# ============================================================================
# Memory Mode
# ============================================================================


@pytest.mark.unit
class TestMemoryMode:
    """No backend configured: everything is served from the fallback store."""

    async def test_mode_and_connection(self, memory_client):
        assert memory_client.get_mode() is ConnectionMode.MEMORY
        assert memory_client.is_connected() is False

    async def test_ping_answers_pong(self, memory_client):
        assert await memory_client.ping() == "PONG"
        assert await verify_connection(memory_client) is True

    async def test_set_get_delete(self, memory_client):
        await memory_client.set("k", "v")
        assert await memory_client.get("k") == "v"

        await memory_client.delete("k")
        assert await memory_client.get("k") is None

    async def test_mget_order(self, memory_client):
        await memory_client.set("a", "1")
        await memory_client.set("b", "2")

        assert await memory_client.mget(["b", "x", "a"]) == ["2", None, "1"]
        assert await memory_client.mget([]) == []

    async def test_setex_returns_ok(self, memory_client):
        assert await memory_client.setex("k", 30, "v") == "OK"
        assert 0 < await memory_client.ttl("k") <= 30

    async def test_ttl_clamped_by_fallback(self, memory_client):
        await memory_client.set("k", "v", ttl=3600)
        assert await memory_client.ttl("k") <= 60

    async def test_counters(self, memory_client):
        assert await memory_client.incr("n") == 1
        assert await memory_client.incr("n") == 2
        assert await memory_client.expire("n", 30) == 1
        assert await memory_client.expire("missing", 30) == 0
        assert await memory_client.exists("n") == 1
        assert await memory_client.exists("missing") == 0

    async def test_keys(self, memory_client):
        await memory_client.set("cache:a", "1")
        await memory_client.set("other", "2")

        assert await memory_client.keys("cache:*") == ["cache:a"]

    async def test_reconnect_without_backend_stays_in_memory(self, memory_client):
        assert await memory_client.reconnect() is False
        assert memory_client.get_mode() is ConnectionMode.MEMORY

    async def test_health(self, memory_client):
        await memory_client.set("k", "v")
        health = memory_client.health()

        assert health["mode"] == "memory"
        assert health["connected"] is False
        assert health["fallback_enabled"] is True
        assert health["fallback_entries"] == 1

    async def test_fallback_disabled_raises(self):
        client = ResilientCacheClient(CacheClientConfig(fallback_to_memory=False))
        await client.initialize()

        with pytest.raises(CacheConnectionError):
            await client.get("k")
        await client.close()


# ============================================================================
# Lifecycle
# ============================================================================


@pytest.mark.unit
class TestClose:
    async def test_operations_fail_after_close(self):
        client = ResilientCacheClient(CacheClientConfig())
        await client.initialize()
        await client.set("k", "v")
        await client.close()

        assert client.is_connected() is False
        assert len(client.fallback_store) == 0
        with pytest.raises(CacheClientClosedError):
            await client.get("k")
        assert await client.reconnect() is False
        assert await verify_connection(client) is False

    async def test_close_is_idempotent(self, single_config, backend_factory, redis_handle):
        client = ResilientCacheClient(single_config, backend_factory=backend_factory)
        await client.initialize()
        await client.close()
        await client.close()

        redis_handle.aclose.assert_awaited_once()


# ============================================================================
# Networked Mode
# ============================================================================


@pytest.mark.unit
class TestSingleMode:
    async def test_connects(self, single_client, backend_factory):
        backend_factory.build.assert_called_once_with(ConnectionMode.SINGLE)
        assert single_client.get_mode() is ConnectionMode.SINGLE
        assert single_client.is_connected() is True

    async def test_commands_go_to_redis(self, single_client, redis_handle):
        redis_handle.get.return_value = "from-redis"
        redis_handle.expire.return_value = True
        redis_handle.exists.return_value = 0

        assert await single_client.get("k") == "from-redis"
        assert await single_client.expire("k", 10) == 1
        assert await single_client.exists("k") == 0
        assert await single_client.ping() == "PONG"

    async def test_set_with_ttl_uses_ex(self, single_client, redis_handle):
        await single_client.set("k", "v", ttl=30)
        redis_handle.set.assert_awaited_once_with("k", "v", ex=30)

    async def test_set_without_ttl(self, single_client, redis_handle):
        await single_client.set("k", "v")
        redis_handle.set.assert_awaited_once_with("k", "v")

    async def test_connect_failure_falls_back(self, single_config, backend_factory, redis_handle):
        redis_handle.ping.side_effect = RedisConnectionError("refused")
        client = ResilientCacheClient(single_config, backend_factory=backend_factory)

        assert await client.initialize() is ConnectionMode.MEMORY
        assert redis_handle.ping.await_count == single_config.max_retries + 1
        redis_handle.aclose.assert_awaited()
        assert await client.ping() == "PONG"
        await client.close()

    async def test_transport_error_switches_to_memory(self, single_client, redis_handle):
        redis_handle.get.side_effect = RedisConnectionError("reset by peer")

        assert await single_client.get("k") is None
        assert redis_handle.get.await_count == 1
        assert single_client.get_mode() is ConnectionMode.MEMORY

        # Memory mode is sticky: the handle is no longer used
        await single_client.set("k", "v")
        assert await single_client.get("k") == "v"
        redis_handle.set.assert_not_awaited()

    async def test_not_connected_after_failed_exchange(self, single_client, redis_handle):
        assert single_client.is_connected() is True
        redis_handle.ping.side_effect = RedisTimeoutError("no reply")

        assert await single_client.ping() == "PONG"
        assert single_client.is_connected() is False
        assert single_client.health()["connected"] is False

    async def test_incr_sent_once_when_reply_lost(self, single_client, redis_handle):
        server = {"n": 0}

        async def incr_then_drop_reply(key):
            server[key] = server.get(key, 0) + 1
            raise RedisTimeoutError("reply lost")

        redis_handle.incr.side_effect = incr_then_drop_reply

        await single_client.incr("n")

        assert redis_handle.incr.await_count == 1
        assert server["n"] == 1
        assert single_client.get_mode() is ConnectionMode.MEMORY

    async def test_stalled_command_bounded_by_command_timeout(self, backend_factory, redis_handle):
        async def stalled_get(key):
            await asyncio.sleep(10)
            return "late"

        redis_handle.get.side_effect = stalled_get
        config = CacheClientConfig(
            url="redis://localhost:6379", max_retries=3, retry_delay_ms=200, command_timeout_ms=100
        )
        client = ResilientCacheClient(config, backend_factory=backend_factory)
        await client.initialize()

        loop = asyncio.get_running_loop()
        started = loop.time()
        assert await client.get("k") is None
        elapsed = loop.time() - started

        assert elapsed < 0.5
        assert redis_handle.get.await_count == 1
        assert client.get_mode() is ConnectionMode.MEMORY
        await client.close()

    async def test_command_error_falls_back_for_one_call(self, single_client, redis_handle):
        redis_handle.incr.side_effect = ResponseError("WRONGTYPE")

        assert await single_client.incr("n") == 1
        assert redis_handle.incr.await_count == 1
        assert single_client.get_mode() is ConnectionMode.SINGLE

    async def test_concurrent_failures_switch_once(self, single_client, redis_handle):
        redis_handle.get.side_effect = RedisConnectionError("down")

        results = await asyncio.gather(*(single_client.get(f"k{i}") for i in range(5)))

        assert results == [None] * 5
        assert single_client.get_mode() is ConnectionMode.MEMORY

    async def test_fallback_disabled_propagates(self, backend_factory, redis_handle):
        redis_handle.get.side_effect = RedisConnectionError("down")
        config = CacheClientConfig(
            url="redis://localhost:6379", fallback_to_memory=False, max_retries=1, retry_delay_ms=1
        )
        client = ResilientCacheClient(config, backend_factory=backend_factory)
        await client.initialize()

        with pytest.raises(RedisConnectionError):
            await client.get("k")
        assert client.get_mode() is ConnectionMode.SINGLE
        await client.close()

    async def test_reconnect_leaves_memory(self, single_config, backend_factory, redis_handle):
        failures = [RedisConnectionError("refused")] * (single_config.max_retries + 1)
        redis_handle.ping.side_effect = [*failures, True]
        client = ResilientCacheClient(single_config, backend_factory=backend_factory)

        assert await client.initialize() is ConnectionMode.MEMORY
        assert await client.reconnect() is True
        assert client.get_mode() is ConnectionMode.SINGLE
        await client.close()

    async def test_reconnect_when_connected_is_noop(self, single_client, backend_factory):
        assert await single_client.reconnect() is True
        backend_factory.build.assert_called_once()


@pytest.mark.unit
class TestClusterMode:
    @pytest.fixture
    async def cluster_client(self, backend_factory):
        config = CacheClientConfig(
            mode=ConnectionMode.CLUSTER,
            cluster_nodes=("redis://n1:7000", "redis://n2:7001"),
            retry_delay_ms=1,
        )
        client = ResilientCacheClient(config, backend_factory=backend_factory)
        await client.initialize()
        yield client
        await client.close()

    async def test_connects_in_cluster_mode(self, cluster_client, backend_factory):
        backend_factory.build.assert_called_once_with(ConnectionMode.CLUSTER)
        assert cluster_client.get_mode() is ConnectionMode.CLUSTER

    async def test_mget_spans_slots(self, cluster_client, redis_handle):
        redis_handle.mget_nonatomic.return_value = ["1", None]

        assert await cluster_client.mget(["a", "b"]) == ["1", None]
        redis_handle.mget.assert_not_awaited()

    async def test_keys_flattens_per_node_results(self, cluster_client, redis_handle):
        redis_handle.keys.return_value = {"n1": ["cache:a"], "n2": ["cache:b"]}

        assert sorted(await cluster_client.keys("cache:*")) == ["cache:a", "cache:b"]
