"""Factory functions for the shared store client and the rate limiter."""

from __future__ import annotations

import logging

from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import AbstractBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ratelimit_service.adapters.rate_limit.base import AbstractRateLimiter
from ratelimit_service.adapters.rate_limit.in_memory import InMemoryTokenBucketLimiter
from ratelimit_service.adapters.rate_limit.redis_bucket import RedisTokenBucketLimiter
from ratelimit_service.core.config import RedisSettings, Settings, settings
from ratelimit_service.core.errors import ValidationAppError
from ratelimit_service.core.limits import build_limit_table

logger = logging.getLogger(__name__)


class LinearCappedBackoff(AbstractBackoff):
    """Delay grows by ``step`` per failed attempt, never above ``cap`` (seconds)."""

    def __init__(self, step: float, cap: float) -> None:
        self._step = step
        self._cap = cap

    def reset(self) -> None:
        pass

    def compute(self, failures: int) -> float:
        delay = min(failures * self._step, self._cap)
        logger.warning(
            "redis.retry",
            extra={"attempt": failures, "delay_ms": int(delay * 1000)},
        )
        return delay


def create_redis_client(redis_settings: RedisSettings | None = None) -> Redis:
    """Build the async Redis client used by the rate limiter.

    The client connects lazily on first command. Connection and timeout
    errors are retried up to ``max_retries`` times; after that the error
    reaches the limiter, which fails closed.

    Args:
        redis_settings: Connection settings; defaults to global settings.

    Returns:
        Redis: Configured client with its own connection pool.
    """
    cfg = redis_settings or settings.redis

    options = {
        "decode_responses": True,
        "socket_timeout": cfg.socket_timeout_seconds,
        "socket_connect_timeout": cfg.connect_timeout_seconds,
        "retry": Retry(
            LinearCappedBackoff(cfg.retry_step_ms / 1000, cfg.retry_cap_ms / 1000),
            cfg.max_retries,
        ),
        "retry_on_error": [RedisConnectionError, RedisTimeoutError],
    }

    if cfg.password:
        options["password"] = cfg.password

    if cfg.url:
        return Redis.from_url(cfg.url, **options)

    return Redis(host=cfg.host, port=cfg.port, db=cfg.db, **options)


def create_rate_limiter(app_settings: Settings | None = None) -> AbstractRateLimiter:
    """Factory function to instantiate the configured rate limiter.

    Builds the limit table once from defaults plus configured overrides.

    Returns:
        AbstractRateLimiter: Redis-backed or in-process limiter.

    Raises:
        ValidationAppError: If the backend is unknown or a limit override is
            invalid.
    """
    cfg = app_settings or settings

    try:
        limits = build_limit_table(cfg.rate_limit.limits)
    except ValueError as exc:
        raise ValidationAppError(
            code="invalid_limit_config",
            message=f"Invalid rate limit configuration: {exc}",
        ) from exc

    backend = cfg.rate_limit.backend.lower()

    if backend == "redis":
        return RedisTokenBucketLimiter(create_redis_client(cfg.redis), limits=limits)

    if backend == "memory":
        logger.warning(
            "rate_limit.memory_backend",
            extra={"reason": "limits are enforced per process"},
        )
        return InMemoryTokenBucketLimiter(
            limits=limits,
            max_keys=cfg.rate_limit.memory_max_keys,
        )

    raise ValidationAppError(
        code="rate_limit_unknown_backend",
        message=f"Unknown rate limit backend: '{backend}'. Supported backends: redis, memory",
    )
