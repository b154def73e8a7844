"""In-process token bucket rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
  Use the Redis backend for any multi-instance deployment.
- Thread-safe: a lock guards the bucket map, so checks for the same key are
  linearizable within the process.
- Same arithmetic as the Redis script, including key expiry.
- Bounded: at most `max_keys` buckets are kept. The map is ordered by last
  touch, so expired buckets are dropped from the front and, when every
  bucket is still live, the least recently touched one is evicted.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Mapping

from ratelimit_service.adapters.rate_limit.base import (
    AbstractRateLimiter,
    RateLimitDecision,
    bucket_decision,
)
from ratelimit_service.core.limits import LimitType, RateLimitConfig, limit_type_name

logger = logging.getLogger(__name__)


@dataclass
class _BucketState:
    tokens: float
    last_refill: int
    expires_at: int


class InMemoryTokenBucketLimiter(AbstractRateLimiter):
    """Rate limiter keeping token buckets in a process-local map.

    Important:
        Intended for single-instance deployments and tests. Each process
        enforces its own independent limits.
    """

    def __init__(
        self,
        *,
        limits: Mapping[str, RateLimitConfig],
        max_keys: int = 100_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            limits: Limit type table, built once at startup.
            max_keys: Maximum number of buckets held at once.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If max_keys is invalid.
        """
        if max_keys < 1:
            raise ValueError("max_keys must be >= 1")

        super().__init__(limits)
        self._max_keys = max_keys
        self._clock = clock
        self._lock = threading.RLock()
        self._buckets: OrderedDict[str, _BucketState] = OrderedDict()

    def __len__(self) -> int:
        return len(self._buckets)

    def _make_room(self, now: int) -> None:
        """Free at least one slot. Caller holds the lock."""
        while self._buckets:
            _, oldest = next(iter(self._buckets.items()))
            if oldest.expires_at > now:
                break
            self._buckets.popitem(last=False)
        if len(self._buckets) >= self._max_keys:
            key, _ = self._buckets.popitem(last=False)
            logger.debug("rate_limit.memory_bucket_evicted", extra={"bucket_key": key})

    def _consume(self, key: str, config: RateLimitConfig, requested: float, now: int) -> tuple[bool, float]:
        with self._lock:
            state = self._buckets.get(key)
            if state is None or state.expires_at <= now:
                self._buckets.pop(key, None)
                if len(self._buckets) >= self._max_keys:
                    self._make_room(now)
                state = _BucketState(tokens=config.capacity, last_refill=now, expires_at=now)
                self._buckets[key] = state
            else:
                self._buckets.move_to_end(key)

            elapsed = max(0, now - state.last_refill)
            state.tokens = min(config.capacity, state.tokens + elapsed * config.refill_rate)
            state.last_refill = now

            allowed = state.tokens >= requested
            if allowed:
                state.tokens -= requested

            state.expires_at = now + config.expiry_seconds
            return allowed, state.tokens

    async def check(
        self,
        identifier: str,
        limit_type: LimitType | str,
        tokens_to_consume: float = 1,
    ) -> RateLimitDecision:
        resolved = self._resolve(identifier, limit_type, tokens_to_consume)
        if isinstance(resolved, RateLimitDecision):
            return resolved

        now = int(self._clock())
        allowed, tokens = self._consume(
            resolved.key_for(identifier), resolved, tokens_to_consume, now
        )
        return bucket_decision(
            allowed=allowed,
            limit_type=limit_type_name(limit_type),
            config=resolved,
            tokens=tokens,
            requested=tokens_to_consume,
        )

    async def ping(self) -> bool:
        return True
