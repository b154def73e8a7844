"""Rate limiting gateway and FastAPI dependencies.

This module wires the rate limiter into request-handling paths.

Design goals:
- Minimal coupling: route handlers depend on the gateway or a dependency
  function only, never on the store.
- Fail closed: an unknown caller identity, a bad limit type, or a store
  outage all result in ``limited=True``.
- No cross-request state: buckets live in the limiter's store; the gateway
  instance is created once in the app factory and kept on ``app.state``.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from fastapi import Depends, HTTPException, Request, status

from ratelimit_service.adapters.rate_limit.base import (
    AbstractRateLimiter,
    RateLimitDecision,
    RateLimitOutcome,
)
from ratelimit_service.core.config import settings
from ratelimit_service.core.errors import InfraAppError, ValidationAppError
from ratelimit_service.core.limits import LimitType, limit_type_name
from ratelimit_service.utils.client_ip import get_client_ip

logger = logging.getLogger(__name__)


class RateLimitGateway:
    """Entry point used by the HTTP endpoint and by in-process callers."""

    def __init__(self, limiter: AbstractRateLimiter) -> None:
        self._limiter = limiter

    @property
    def limiter(self) -> AbstractRateLimiter:
        return self._limiter

    async def check(
        self,
        identifier: str,
        limit_type: LimitType | str,
        tokens_to_consume: float = 1,
    ) -> RateLimitDecision:
        return await self._limiter.check(identifier, limit_type, tokens_to_consume)

    async def apply_ip_rate_limit(
        self,
        client_ip: str | None,
        limit_type: LimitType | str = LimitType.GENERAL_IP,
    ) -> RateLimitOutcome:
        """Rate limit by client address.

        An undeterminable address is always limited; the store is not
        consulted.
        """

        if not client_ip or not client_ip.strip():
            logger.warning(
                "rate_limit.client_ip_unknown",
                extra={"limit_type": limit_type_name(limit_type)},
            )
            return RateLimitOutcome(
                limited=True,
                error=ValidationAppError(
                    code="client_ip_unknown",
                    message="Could not determine IP address.",
                ),
            )

        decision = await self._limiter.check(client_ip.strip(), limit_type)
        return RateLimitOutcome.from_decision(decision)

    async def apply_identifier_rate_limit(
        self,
        identifier: str | None,
        limit_type: LimitType | str = LimitType.SENSITIVE_IDENTIFIER,
    ) -> RateLimitOutcome:
        """Rate limit by an application identifier such as a username or email.

        Identifiers are used verbatim; callers normalize them (e.g. lowercase
        emails) before calling.
        """

        if not identifier:
            return RateLimitOutcome(
                limited=True,
                error=ValidationAppError(
                    code="identifier_required",
                    message="Identifier required for this rate limit.",
                ),
            )

        decision = await self._limiter.check(identifier, limit_type)
        return RateLimitOutcome.from_decision(decision)


def get_rate_limit_gateway(request: Request) -> RateLimitGateway:
    """FastAPI dependency returning the process-wide gateway."""

    return request.app.state.rate_limit_gateway


def rate_limit_headers(decision: RateLimitDecision | None) -> dict[str, str]:
    """Build Retry-After and X-RateLimit-* headers for a throttled response."""

    if decision is None or not settings.rate_limit.include_headers:
        return {}

    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
    }
    if decision.retry_after_seconds is not None:
        headers["Retry-After"] = str(decision.retry_after_seconds)
    return headers


def enforce_ip_rate_limit(
    limit_type: LimitType | str = LimitType.GENERAL_IP,
) -> Callable[..., Awaitable[None]]:
    """Build a dependency that rate limits the caller's IP address.

    Usage:
        @router.post("/signin", dependencies=[Depends(enforce_ip_rate_limit())])

    Raises (from the dependency):
        HTTPException: 429 when the bucket is exhausted or the IP is
            unknown, 503 when the limiter reports an infrastructure error.
    """

    async def dependency(
        request: Request,
        gateway: RateLimitGateway = Depends(get_rate_limit_gateway),
    ) -> None:
        outcome = await gateway.apply_ip_rate_limit(get_client_ip(request), limit_type)
        if not outcome.limited:
            return

        if isinstance(outcome.error, InfraAppError):
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=outcome.error.message,
            )

        logger.warning(
            "rate_limit.ip_limited",
            extra={
                "limit_type": limit_type_name(limit_type),
                "path": request.url.path,
                "reason": outcome.error.code if outcome.error else "exhausted",
            },
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests from this IP.",
            headers=rate_limit_headers(outcome.decision) or None,
        )

    return dependency
