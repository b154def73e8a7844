"""Unit tests for the rate limit gateway helpers and the IP dependency."""

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient

from ratelimit_service.adapters.rate_limit.in_memory import InMemoryTokenBucketLimiter
from ratelimit_service.adapters.rate_limit.redis_bucket import RedisTokenBucketLimiter
from ratelimit_service.core.app_factory import create_app
from ratelimit_service.core.errors import ConfigAppError, InfraAppError, ValidationAppError
from ratelimit_service.core.limits import LimitType
from ratelimit_service.core.rate_limit import RateLimitGateway, enforce_ip_rate_limit


@pytest.fixture
def gateway(fake_redis, limits, clock) -> RateLimitGateway:
    return RateLimitGateway(RedisTokenBucketLimiter(fake_redis, limits=limits, clock=clock))


class TestApplyIpRateLimit:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("client_ip", [None, "", "   "])
    async def test_unknown_ip_is_limited_without_store_call(self, gateway, fake_redis, client_ip):
        outcome = await gateway.apply_ip_rate_limit(client_ip)

        assert outcome.limited is True
        assert isinstance(outcome.error, ValidationAppError)
        assert outcome.error.code == "client_ip_unknown"
        assert "IP address" in outcome.error.message
        assert sum(fake_redis.calls.values()) == 0

    @pytest.mark.asyncio
    async def test_known_ip_uses_general_ip_bucket(self, gateway, fake_redis):
        outcome = await gateway.apply_ip_rate_limit("203.0.113.7")

        assert outcome.limited is False
        assert outcome.error is None
        assert outcome.decision.limit_type == "GENERAL_IP"
        assert await fake_redis.store.exists("rl:ip:203.0.113.7") == 1

    @pytest.mark.asyncio
    async def test_exhausted_ip_is_limited_without_error(self, gateway):
        await gateway.apply_ip_rate_limit("203.0.113.7", "SINGLE")
        outcome = await gateway.apply_ip_rate_limit("203.0.113.7", "SINGLE")

        assert outcome.limited is True
        assert outcome.error is None

    @pytest.mark.asyncio
    async def test_store_failure_is_limited_with_infra_error(self, gateway, fake_redis):
        fake_redis.down = True

        outcome = await gateway.apply_ip_rate_limit("203.0.113.7")

        assert outcome.limited is True
        assert isinstance(outcome.error, InfraAppError)


class TestApplyIdentifierRateLimit:
    @pytest.mark.asyncio
    async def test_empty_identifier_is_limited_without_store_call(self, gateway, fake_redis):
        outcome = await gateway.apply_identifier_rate_limit("")

        assert outcome.limited is True
        assert outcome.error.code == "identifier_required"
        assert sum(fake_redis.calls.values()) == 0

    @pytest.mark.asyncio
    async def test_defaults_to_sensitive_identifier(self, gateway):
        outcomes = [await gateway.apply_identifier_rate_limit("user@example.com") for _ in range(6)]

        assert [o.limited for o in outcomes] == [False] * 5 + [True]
        assert outcomes[0].decision.limit_type == LimitType.SENSITIVE_IDENTIFIER.value

    @pytest.mark.asyncio
    async def test_unknown_limit_type_is_limited_with_config_error(self, gateway):
        outcome = await gateway.apply_identifier_rate_limit("user", "NOPE")

        assert outcome.limited is True
        assert isinstance(outcome.error, ConfigAppError)


class TestEnforceIpRateLimitDependency:
    def _client(self, limiter) -> TestClient:
        app = create_app(limiter=limiter)

        @app.post("/guarded", dependencies=[Depends(enforce_ip_rate_limit("SINGLE"))])
        async def guarded() -> dict:
            return {"ok": True}

        return TestClient(app)

    def test_second_request_from_same_ip_gets_429(self, limits, clock):
        client = self._client(InMemoryTokenBucketLimiter(limits=limits, clock=clock))
        headers = {"X-Real-IP": "198.51.100.4"}

        assert client.post("/guarded", headers=headers).status_code == 200
        resp = client.post("/guarded", headers=headers)

        assert resp.status_code == 429
        assert resp.json()["detail"] == "Too many requests from this IP."
        assert resp.headers["Retry-After"] == "60"
        assert resp.headers["X-RateLimit-Limit"] == "1"

    def test_other_ip_is_not_affected(self, limits, clock):
        client = self._client(InMemoryTokenBucketLimiter(limits=limits, clock=clock))

        client.post("/guarded", headers={"X-Forwarded-For": "198.51.100.4, 10.0.0.1"})
        resp = client.post("/guarded", headers={"X-Forwarded-For": "198.51.100.5, 10.0.0.1"})

        assert resp.status_code == 200

    def test_store_failure_returns_503(self, fake_redis, limits, clock):
        fake_redis.down = True
        client = self._client(RedisTokenBucketLimiter(fake_redis, limits=limits, clock=clock))

        resp = client.post("/guarded", headers={"X-Real-IP": "198.51.100.4"})

        assert resp.status_code == 503
