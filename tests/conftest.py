"""
Pytest Configuration and Shared Test Fixtures

This module provides pytest configuration and reusable fixtures for all tests.
All fixtures defined here are automatically available to all test files.
"""

import os
from unittest.mock import AsyncMock, MagicMock

import pytest

from cacheguard.application.context import ResilienceContext
from cacheguard.core.config.settings import Settings
from cacheguard.infrastructure.cache.resilient_client import (
    BackendFactory,
    CacheClientConfig,
    ResilientCacheClient,
)

# pytest-asyncio runs in auto mode (see pyproject.toml)


# ============================================================================
# Time Fixtures
# ============================================================================


class FakeClock:
    """Manually advanced clock, usable wherever a ``clock`` callable is accepted."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def test_settings():
    """
    Settings isolated from the developer's .env and environment.

    No Redis is configured, so everything runs on the in-memory fallback.
    """
    return Settings(
        _env_file=None,
        REDIS_URL=None,
        REDIS_CLUSTER_URLS=None,
        REDIS_RETRY_DELAY_MS=1,
        ENVIRONMENT="test",
        APP_VERSION="1.0.0-test",
        LOG_FORMAT="console",
    )


@pytest.fixture(scope="session")
def use_real_redis():
    """Check if real Redis should be used for integration tests."""
    return os.getenv("USE_REAL_REDIS", "0").lower() in ("1", "true", "yes")


# ============================================================================
# Cache Client Fixtures
# ============================================================================


@pytest.fixture
def single_config():
    """Single-node config with a fast retry schedule."""
    return CacheClientConfig(
        url="redis://localhost:6379/0",
        max_retries=2,
        retry_delay_ms=1,
        connection_timeout_ms=200,
        command_timeout_ms=200,
    )


@pytest.fixture
def redis_handle():
    """
    Mock redis.asyncio handle.

    Every command is an AsyncMock; tests set return values or side effects
    per command. ping succeeds by default.
    """
    handle = AsyncMock()
    handle.ping = AsyncMock(return_value=True)
    handle.aclose = AsyncMock(return_value=None)
    return handle


@pytest.fixture
def backend_factory(redis_handle):
    factory = MagicMock(spec=BackendFactory)
    factory.build.return_value = redis_handle
    return factory


@pytest.fixture
async def memory_client():
    """Initialized client with no backend configured (memory mode)."""
    client = ResilientCacheClient(CacheClientConfig(retry_delay_ms=1))
    await client.initialize()
    yield client
    await client.close()


@pytest.fixture
async def single_client(single_config, backend_factory):
    """Client connected to the mocked single-node handle."""
    client = ResilientCacheClient(single_config, backend_factory=backend_factory)
    await client.initialize()
    yield client
    await client.close()


# ============================================================================
# Application Fixtures
# ============================================================================


@pytest.fixture
def app_context(test_settings):
    return ResilienceContext.from_settings(test_settings)
