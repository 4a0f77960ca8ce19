"""
Unit Tests for the HTTP Rate Limit Layer

Exercises the route dependencies and the app-wide middleware through a
TestClient against create_app(), running entirely on the memory fallback.
"""

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient
from starlette.requests import Request as StarletteRequest

from cacheguard.application.api.middleware.rate_limit import (
    DEFAULT_MESSAGE,
    EMERGENCY_MESSAGE,
    RateLimitMiddleware,
    client_ip,
    emergency_rate_limit,
    ip_rate_limit,
    user_rate_limit,
)
from cacheguard.application.app import create_app
from cacheguard.application.context import ResilienceContext
from cacheguard.core.config.settings import Settings
from cacheguard.rate_limiting.emergency import RateLimitRule


def make_request(headers: dict[str, str]) -> StarletteRequest:
    raw = [(k.lower().encode(), v.encode()) for k, v in headers.items()]
    return StarletteRequest({"type": "http", "method": "GET", "path": "/", "headers": raw})


@pytest.fixture
def limited_settings():
    return Settings(
        _env_file=None,
        REDIS_URL=None,
        REDIS_CLUSTER_URLS=None,
        ENVIRONMENT="test",
        LOG_FORMAT="console",
        RATE_LIMIT_MAX_ATTEMPTS=2,
    )


@pytest.fixture
def context(limited_settings):
    return ResilienceContext.from_settings(limited_settings)


@pytest.fixture
def app(context):
    app = create_app(context)

    @app.middleware("http")
    async def fake_auth(request: Request, call_next):
        user_id = request.headers.get("x-test-user")
        if user_id:
            request.state.user = {"id": user_id, "role": request.headers.get("x-test-role")}
        return await call_next(request)

    @app.post("/login", dependencies=[Depends(ip_rate_limit())])
    async def login():
        return {"ok": True}

    leads_rule = RateLimitRule(max_attempts=4, key_prefix="test:leads")

    @app.post("/leads", dependencies=[Depends(emergency_rate_limit(leads_rule))])
    async def leads():
        return {"ok": True}

    @app.get("/projects", dependencies=[Depends(user_rate_limit(base_limit=2))])
    async def projects():
        return {"ok": True}

    return app


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.mark.unit
class TestClientIp:
    def test_first_forwarded_entry(self):
        request = make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
        assert client_ip(request) == "203.0.113.7"

    def test_real_ip(self):
        assert client_ip(make_request({"X-Real-IP": " 198.51.100.3 "})) == "198.51.100.3"

    def test_forwarded_wins_over_real_ip(self):
        request = make_request({"X-Forwarded-For": "203.0.113.7", "X-Real-IP": "198.51.100.3"})
        assert client_ip(request) == "203.0.113.7"

    def test_unknown(self):
        assert client_ip(make_request({})) == "unknown"


@pytest.mark.unit
class TestIpRateLimit:
    def test_headers_on_allowed_request(self, client):
        response = client.post("/login", headers={"X-Forwarded-For": "203.0.113.7"})

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "2"
        assert response.headers["X-RateLimit-Remaining"] == "1"
        assert "X-RateLimit-Reset" in response.headers

    def test_rejects_after_budget(self, client):
        headers = {"X-Forwarded-For": "203.0.113.7", "X-Correlation-ID": "corr-1"}
        client.post("/login", headers=headers)
        client.post("/login", headers=headers)

        response = client.post("/login", headers=headers)

        assert response.status_code == 429
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "AUTH_RATE_LIMITED"
        assert body["error"]["retry_after"] > 0
        assert body["correlation_id"] == "corr-1"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert int(response.headers["Retry-After"]) > 0

    def test_budgets_are_per_ip(self, client):
        for _ in range(2):
            client.post("/login", headers={"X-Forwarded-For": "203.0.113.7"})

        response = client.post("/login", headers={"X-Forwarded-For": "203.0.113.8"})

        assert response.status_code == 200


@pytest.mark.unit
class TestEmergencyRateLimit:
    def test_normal_mode(self, client):
        response = client.post("/leads", headers={"X-Forwarded-For": "203.0.113.7"})

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "4"
        assert "X-Emergency-Mode" not in response.headers

    def test_emergency_mode_tightens_budget(self, client, context):
        context.emergency_mode.activate("load test")
        headers = {"X-Forwarded-For": "203.0.113.7"}

        first = client.post("/leads", headers=headers)
        client.post("/leads", headers=headers)
        rejected = client.post("/leads", headers=headers)

        assert first.headers["X-RateLimit-Limit"] == "2"
        assert first.headers["X-Emergency-Mode"] == "active"
        assert rejected.status_code == 429
        body = rejected.json()
        assert body["error"]["code"] == "RATE_LIMITED"
        assert body["error"]["message"] == EMERGENCY_MESSAGE
        assert body["error"]["emergency_mode"] is True
        assert rejected.headers["X-Emergency-Mode"] == "active"

    def test_default_message_outside_emergency(self, client):
        headers = {"X-Forwarded-For": "203.0.113.7"}
        for _ in range(4):
            client.post("/leads", headers=headers)

        rejected = client.post("/leads", headers=headers)

        assert rejected.status_code == 429
        assert rejected.json()["error"]["message"] == DEFAULT_MESSAGE
        assert rejected.json()["error"]["emergency_mode"] is False


@pytest.mark.unit
class TestUserRateLimit:
    def test_anonymous_requests_unchecked(self, client):
        for _ in range(5):
            response = client.get("/projects")
        assert response.status_code == 200

    def test_user_budget(self, client):
        headers = {"x-test-user": "u-1", "x-test-role": "USER"}
        client.get("/projects", headers=headers)
        client.get("/projects", headers=headers)

        response = client.get("/projects", headers=headers)

        assert response.status_code == 429
        assert response.json()["error"]["code"] == "USER_RATE_LIMITED"

    def test_role_multiplier(self, client):
        headers = {"x-test-user": "admin-1", "x-test-role": "ADMIN"}

        response = client.get("/projects", headers=headers)

        assert response.headers["X-RateLimit-Limit"] == "10"

    def test_users_do_not_share_budget(self, client):
        for _ in range(2):
            client.get("/projects", headers={"x-test-user": "u-1"})

        response = client.get("/projects", headers={"x-test-user": "u-2"})

        assert response.status_code == 200


@pytest.mark.unit
class TestGlobalMiddleware:
    @pytest.fixture
    def bare_client(self, app_context):
        app = FastAPI()
        app.state.context = app_context
        app.add_middleware(
            RateLimitMiddleware,
            rule=RateLimitRule(max_attempts=2, window_ms=60_000, key_prefix="test:global"),
            exempt_prefixes=("/health",),
        )

        @app.get("/items")
        async def items():
            return {"ok": True}

        @app.get("/health")
        async def health():
            return {"ok": True}

        with TestClient(app) as client:
            yield client

    def test_rejects_before_routing(self, bare_client):
        headers = {"X-Real-IP": "198.51.100.3"}
        assert bare_client.get("/items", headers=headers).status_code == 200
        assert bare_client.get("/items", headers=headers).status_code == 200

        response = bare_client.get("/items", headers=headers)

        assert response.status_code == 429
        assert response.json()["error"]["code"] == "RATE_LIMITED"
        assert response.headers["X-RateLimit-Limit"] == "2"

    def test_headers_on_allowed_request(self, bare_client):
        response = bare_client.get("/items", headers={"X-Real-IP": "198.51.100.3"})

        assert response.headers["X-RateLimit-Limit"] == "2"
        assert response.headers["X-RateLimit-Remaining"] == "1"

    def test_exempt_paths_not_counted(self, bare_client, app_context):
        for _ in range(5):
            response = bare_client.get("/health", headers={"X-Real-IP": "198.51.100.3"})

        assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers
        assert len(app_context.emergency_store) == 0

    def test_route_headers_win_over_global(self, client):
        response = client.post("/login", headers={"X-Forwarded-For": "203.0.113.7"})

        assert response.headers["X-RateLimit-Limit"] == "2"
