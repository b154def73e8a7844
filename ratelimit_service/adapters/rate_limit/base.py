"""Rate limiter interfaces.

The HTTP layer depends on this abstraction, not on a concrete store, so
the Redis-backed engine and the in-process limiter are interchangeable.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping

from ratelimit_service.core.errors import AppError, ConfigAppError, ValidationAppError
from ratelimit_service.core.limits import LimitType, RateLimitConfig, limit_type_name


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of a rate limit check.

    Attributes:
        allowed: Whether the tokens were granted.
        limit_type: Name of the limit type that was applied.
        limit: Bucket capacity (0 when the limit type is unknown).
        remaining: Whole tokens left after this check (informational).
        retry_after_seconds: Suggested wait when denied by the bucket.
        error: Set when the check could not be performed; the decision is
            then always a denial.
    """

    allowed: bool
    limit_type: str
    limit: int
    remaining: int
    retry_after_seconds: int | None = None
    error: AppError | None = None

    @property
    def denied_by_limit(self) -> bool:
        """True for an ordinary denial caused by an exhausted bucket."""
        return not self.allowed and self.error is None

    @classmethod
    def failed(cls, limit_type: str, error: AppError, limit: int = 0) -> "RateLimitDecision":
        """Build a fail-closed decision carrying an error."""
        return cls(
            allowed=False,
            limit_type=limit_type,
            limit=limit,
            remaining=0,
            retry_after_seconds=None,
            error=error,
        )


@dataclass(frozen=True)
class RateLimitOutcome:
    """What callers branch on: whether to reject, and why if it was not a plain denial.

    ``message`` carries the reason reported by a remote service for a denial.
    """

    limited: bool
    error: AppError | None = None
    decision: RateLimitDecision | None = None
    message: str | None = None

    @classmethod
    def from_decision(cls, decision: RateLimitDecision) -> "RateLimitOutcome":
        return cls(limited=not decision.allowed, error=decision.error, decision=decision)


def bucket_decision(
    *,
    allowed: bool,
    limit_type: str,
    config: RateLimitConfig,
    tokens: float,
    requested: float,
) -> RateLimitDecision:
    """Build a decision from the bucket state left behind by a check."""

    retry_after = None
    if not allowed:
        retry_after = max(1, math.ceil((requested - tokens) / config.refill_rate))
    return RateLimitDecision(
        allowed=allowed,
        limit_type=limit_type,
        limit=int(config.capacity),
        remaining=max(0, math.floor(tokens)),
        retry_after_seconds=retry_after,
    )


class AbstractRateLimiter(ABC):
    """Interface for token bucket rate limiters."""

    def __init__(self, limits: Mapping[str, RateLimitConfig]) -> None:
        self._limits = limits

    @property
    def limits(self) -> Mapping[str, RateLimitConfig]:
        return self._limits

    def _resolve(
        self,
        identifier: str,
        limit_type: LimitType | str,
        tokens_to_consume: float,
    ) -> RateLimitConfig | RateLimitDecision:
        """Look up the config for a check, or return a fail-closed decision.

        Nothing here touches the store.
        """

        name = limit_type_name(limit_type)
        config = self._limits.get(name)
        if config is None:
            return RateLimitDecision.failed(
                name,
                ConfigAppError(
                    code="unknown_limit_type",
                    message=f"Invalid limitType: {name}",
                    details={"limit_type": name, "known_limit_types": sorted(self._limits)},
                ),
            )
        if not identifier:
            return RateLimitDecision.failed(
                name,
                ValidationAppError(
                    code="invalid_identifier",
                    message="identifier must be a non-empty string",
                    details={"limit_type": name},
                ),
                limit=int(config.capacity),
            )
        if tokens_to_consume <= 0:
            return RateLimitDecision.failed(
                name,
                ValidationAppError(
                    code="invalid_token_count",
                    message="tokens_to_consume must be > 0",
                    details={"limit_type": name},
                ),
                limit=int(config.capacity),
            )
        return config

    @abstractmethod
    async def check(
        self,
        identifier: str,
        limit_type: LimitType | str,
        tokens_to_consume: float = 1,
    ) -> RateLimitDecision:
        """Atomically check and consume tokens for ``identifier``.

        Args:
            identifier: Entity being limited (IP address, username, email).
            limit_type: Name of the limit configuration to apply.
            tokens_to_consume: Tokens drawn on success (default 1).

        Returns:
            RateLimitDecision. Denial is a value; this method never raises
            for configuration or store problems either, it fails closed and
            attaches the error to the decision.
        """
        raise NotImplementedError

    @abstractmethod
    async def ping(self) -> bool:
        """Return True when the backing store is reachable."""
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release resources held by the limiter."""
        return None
