"""Distributed token bucket rate limiter backed by Redis.

All bucket state lives in Redis hashes keyed by ``{key_prefix}:{identifier}``
with fields ``tokens`` and ``last_refill``. The check itself runs as the
Lua routine in ``script_cache``; Python never reads and writes a bucket in
separate round trips.

Failure policy is fail-closed: if Redis is unreachable, times out, or still
lacks the script after one reload, the request is denied and the decision
carries an InfraAppError.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping

from redis.asyncio import Redis
from redis.exceptions import NoScriptError, RedisError

from ratelimit_service.adapters.rate_limit.base import (
    AbstractRateLimiter,
    RateLimitDecision,
    bucket_decision,
)
from ratelimit_service.adapters.rate_limit.script_cache import ScriptCache
from ratelimit_service.core.errors import InfraAppError
from ratelimit_service.core.limits import LimitType, RateLimitConfig, limit_type_name

logger = logging.getLogger(__name__)


class RedisTokenBucketLimiter(AbstractRateLimiter):
    """Token bucket limiter executing an atomic script in Redis."""

    def __init__(
        self,
        redis: Redis,
        *,
        limits: Mapping[str, RateLimitConfig],
        scripts: ScriptCache | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the limiter.

        Args:
            redis: Async Redis client (shared connection pool).
            limits: Limit type table, built once at startup.
            scripts: Script handle cache; one is created for ``redis`` when
                omitted.
            clock: Time source returning UNIX time in seconds.
        """
        super().__init__(limits)
        self._redis = redis
        self._scripts = scripts or ScriptCache(redis)
        self._clock = clock

    @property
    def scripts(self) -> ScriptCache:
        return self._scripts

    async def _run(self, config: RateLimitConfig, identifier: str, requested: float) -> tuple[bool, float]:
        now = int(self._clock())
        result: Any = await self._scripts.invoke(
            keys=[config.key_for(identifier)],
            args=[config.capacity, config.refill_rate, now, requested],
        )
        allowed, tokens = result
        return int(allowed) == 1, float(tokens)

    async def check(
        self,
        identifier: str,
        limit_type: LimitType | str,
        tokens_to_consume: float = 1,
    ) -> RateLimitDecision:
        resolved = self._resolve(identifier, limit_type, tokens_to_consume)
        if isinstance(resolved, RateLimitDecision):
            logger.warning(
                "rate_limit.rejected_input",
                extra={
                    "identifier": identifier,
                    "limit_type": resolved.limit_type,
                    "error_code": resolved.error.code if resolved.error else None,
                },
            )
            return resolved

        config = resolved
        name = limit_type_name(limit_type)

        try:
            try:
                allowed, tokens = await self._run(config, identifier, tokens_to_consume)
            except NoScriptError:
                # Store restarted and lost the script: reload and retry once
                allowed, tokens = await self._run(config, identifier, tokens_to_consume)
        except NoScriptError as exc:
            return self._infra_failure(identifier, name, config, exc, "script_missing_after_reload")
        except RedisError as exc:
            return self._infra_failure(identifier, name, config, exc, "store_unavailable")
        except (TypeError, ValueError) as exc:
            return self._infra_failure(identifier, name, config, exc, "malformed_script_reply")

        decision = bucket_decision(
            allowed=allowed,
            limit_type=name,
            config=config,
            tokens=tokens,
            requested=tokens_to_consume,
        )
        if not allowed:
            logger.warning(
                "rate_limit.denied",
                extra={
                    "identifier": identifier,
                    "limit_type": name,
                    "retry_after_s": decision.retry_after_seconds,
                },
            )
        return decision

    def _infra_failure(
        self,
        identifier: str,
        limit_type: str,
        config: RateLimitConfig,
        exc: Exception,
        reason: str,
    ) -> RateLimitDecision:
        logger.error(
            "rate_limit.infra_error",
            extra={
                "identifier": identifier,
                "limit_type": limit_type,
                "reason": reason,
                "error_type": type(exc).__name__,
            },
        )
        return RateLimitDecision.failed(
            limit_type,
            InfraAppError(
                code="rate_limiter_unavailable",
                message="Rate limit check failed.",
                details={"limit_type": limit_type, "error_type": type(exc).__name__},
            ),
            limit=int(config.capacity),
        )

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as exc:
            logger.warning("redis.ping_failed", extra={"error_type": type(exc).__name__})
            return False

    async def aclose(self) -> None:
        await self._redis.aclose()
