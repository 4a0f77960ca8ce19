"""
Unit Tests for ResilienceContext
"""

import pytest

from cacheguard.core.config.constants import ConnectionMode
from cacheguard.core.exceptions import CacheClientClosedError


@pytest.mark.unit
class TestResilienceContext:
    def test_components_wired(self, app_context):
        assert app_context.violation_monitor is not None
        assert app_context.sweeper is not None
        assert app_context.cache_service is not None
        assert app_context.counter_stores == [
            app_context.ip_store,
            app_context.emergency_store,
            app_context.user_limiter.store,
        ]

    async def test_start_and_close(self, app_context):
        mode = await app_context.start()

        assert mode is ConnectionMode.MEMORY
        assert app_context.sweeper.running

        await app_context.close()

        assert not app_context.sweeper.running
        with pytest.raises(CacheClientClosedError):
            await app_context.cache_client.get("anything")

    def test_clear_rate_limits(self, app_context):
        app_context.ip_store.check_limit("ratelimit:1.2.3.4", 5, 60_000)
        app_context.emergency_store.check_limit("ratelimit:global:1.2.3.4", 5, 60_000)
        app_context.user_limiter.check_user_limit("u-1", 5, 60_000)

        app_context.clear_rate_limits()

        assert all(len(store) == 0 for store in app_context.counter_stores)
