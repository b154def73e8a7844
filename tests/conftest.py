"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the TESTING environment variable before settings are imported so
no .env file is loaded, and selects the in-process backend so importing
the app never needs a Redis server.
"""

import os
from collections import Counter

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import fakeredis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from ratelimit_service.core.config import LimitSpec
from ratelimit_service.core.limits import build_limit_table


class FakeClock:
    """Deterministic clock used to drive bucket refills."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


class FakeRedis:
    """Fault-injecting wrapper around an in-process Redis.

    Commands go to ``fakeredis.FakeAsyncRedis``, which runs the real Lua
    script. ``down`` simulates an unreachable server; ``lose_scripts`` makes
    the next N EVALSHA calls find the script cache flushed, as after a
    restart. ``calls`` counts the commands the limiter issued.
    """

    def __init__(self) -> None:
        self.store = fakeredis.FakeAsyncRedis(decode_responses=True)
        self.calls: Counter[str] = Counter()
        self.down = False
        self.lose_scripts = 0
        self.closed = False

    def _raise_if_down(self) -> None:
        if self.down:
            raise RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    async def script_load(self, script: str) -> str:
        self.calls["script_load"] += 1
        self._raise_if_down()
        return await self.store.script_load(script)

    async def evalsha(self, sha: str, numkeys: int, *keys_and_args):
        self.calls["evalsha"] += 1
        self._raise_if_down()
        if self.lose_scripts:
            self.lose_scripts -= 1
            await self.store.script_flush()
        return await self.store.evalsha(sha, numkeys, *keys_and_args)

    async def ping(self) -> bool:
        self.calls["ping"] += 1
        self._raise_if_down()
        return await self.store.ping()

    async def aclose(self) -> None:
        self.closed = True
        await self.store.aclose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def limits():
    """Default table plus a 10-token bucket refilling 1 token/s and a 1-token bucket."""
    return build_limit_table(
        {
            "BURST_TEN": LimitSpec(key_prefix="rl:test:ten", capacity=10, window_seconds=10),
            "SINGLE": LimitSpec(key_prefix="rl:test:one", capacity=1, window_seconds=60),
        }
    )
