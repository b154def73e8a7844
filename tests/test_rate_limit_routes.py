"""Tests for the rate limit HTTP surface.

Apps are built with ``create_app(limiter=...)`` so each test gets fresh
buckets; the Redis-backed cases use the FakeRedis fixture from conftest.
"""

import pytest
from fastapi.testclient import TestClient

from ratelimit_service.adapters.rate_limit.in_memory import InMemoryTokenBucketLimiter
from ratelimit_service.adapters.rate_limit.redis_bucket import RedisTokenBucketLimiter
from ratelimit_service.core.app_factory import create_app


@pytest.fixture
def client(limits, clock):
    app = create_app(limiter=InMemoryTokenBucketLimiter(limits=limits, clock=clock))
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def redis_client(fake_redis, limits, clock):
    app = create_app(limiter=RedisTokenBucketLimiter(fake_redis, limits=limits, clock=clock))
    with TestClient(app) as test_client:
        yield test_client


def _check(client: TestClient, identifier="user@example.com", limit_type="SENSITIVE_IDENTIFIER"):
    return client.post("/rate-limit", json={"identifier": identifier, "limitType": limit_type})


class TestRateLimitEndpoint:
    def test_allowed_returns_200(self, client):
        resp = _check(client)

        assert resp.status_code == 200
        assert resp.json() == {"allowed": True}
        assert resp.headers.get("X-Request-ID")

    def test_sixth_request_returns_429_with_retry_after(self, client):
        for _ in range(5):
            assert _check(client).status_code == 200

        resp = _check(client)

        assert resp.status_code == 429
        assert resp.json() == {"allowed": False, "message": "Rate limit exceeded."}
        assert resp.headers["Retry-After"] == "60"
        assert resp.headers["X-RateLimit-Limit"] == "5"
        assert resp.headers["X-RateLimit-Remaining"] == "0"

    def test_refill_allows_again(self, client, clock):
        _check(client, limit_type="SINGLE")
        assert _check(client, limit_type="SINGLE").status_code == 429

        clock.advance(60)

        assert _check(client, limit_type="SINGLE").status_code == 200

    def test_headers_can_be_disabled(self, client, monkeypatch):
        from ratelimit_service.core.config import settings

        monkeypatch.setattr(settings.rate_limit, "include_headers", False)
        _check(client, limit_type="SINGLE")

        resp = _check(client, limit_type="SINGLE")

        assert resp.status_code == 429
        assert "Retry-After" not in resp.headers

    def test_redis_backend_allows_then_denies(self, redis_client, fake_redis):
        assert _check(redis_client, limit_type="SINGLE").status_code == 200
        assert _check(redis_client, limit_type="SINGLE").status_code == 429
        assert fake_redis.calls["evalsha"] == 2


class TestRateLimitEndpointErrors:
    @pytest.mark.parametrize(
        "payload",
        [
            {"limitType": "GENERAL_IP"},
            {"identifier": "user"},
            {"identifier": 123, "limitType": "GENERAL_IP"},
            {"identifier": "user", "limitType": ["GENERAL_IP"]},
            {},
        ],
    )
    def test_missing_or_non_string_fields_return_400(self, client, payload):
        resp = client.post("/rate-limit", json=payload)

        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "invalid_request"
        assert "identifier and limitType" in error["message"]
        assert error["request_id"]

    def test_invalid_json_returns_400(self, client):
        resp = client.post(
            "/rate-limit",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_request"

    def test_validation_error_does_not_echo_input(self, client):
        resp = client.post("/rate-limit", json={"identifier": 987654321, "limitType": "GENERAL_IP"})

        assert "987654321" not in resp.text

    def test_unknown_limit_type_returns_400(self, client):
        resp = _check(client, limit_type="BOGUS")

        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "unknown_limit_type"
        assert "GENERAL_IP" in error["details"]["known_limit_types"]

    def test_empty_identifier_returns_400(self, client):
        resp = _check(client, identifier="")

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_identifier"

    def test_store_failure_returns_500(self, redis_client, fake_redis):
        fake_redis.down = True

        resp = _check(redis_client)

        assert resp.status_code == 500
        error = resp.json()["error"]
        assert error["code"] == "rate_limiter_unavailable"
        assert error["message"] == "Rate limit check failed."
        assert "allowed" not in resp.json()


class TestHealthEndpoints:
    def test_liveness(self, client):
        resp = client.get("/health")

        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_readiness_with_store_up(self, redis_client):
        resp = redis_client.get("/health/ready")

        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "store": "up"}

    def test_readiness_with_store_down(self, redis_client, fake_redis):
        fake_redis.down = True

        resp = redis_client.get("/health/ready")

        assert resp.status_code == 503
        assert resp.json()["store"] == "down"


class TestLifecycleAndDocs:
    def test_shutdown_closes_store_client(self, fake_redis, limits, clock):
        app = create_app(limiter=RedisTokenBucketLimiter(fake_redis, limits=limits, clock=clock))

        with TestClient(app):
            assert fake_redis.closed is False

        assert fake_redis.closed is True

    def test_openapi_lists_limit_types(self, client):
        schema = client.get("/openapi.json").json()

        limit_types = schema["x-limit-types"]
        assert limit_types["SENSITIVE_IDENTIFIER"] == {
            "capacity": 5,
            "refill_rate_per_second": pytest.approx(5 / 300),
            "window_seconds": 300,
        }
        assert {"RateLimit", "Health"} <= {tag["name"] for tag in schema["tags"]}

    def test_openapi_documents_response_models(self, client):
        schema = client.get("/openapi.json").json()

        ok = schema["paths"]["/rate-limit"]["post"]["responses"]["200"]
        assert ok["content"]["application/json"]["schema"]["$ref"].endswith("/RateLimitCheckResponse")
        assert "/health/ready" in schema["paths"]
