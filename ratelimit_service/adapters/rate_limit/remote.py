"""HTTP client for the rate limit endpoint.

Used by processes that cannot reach Redis directly (edge gates, other
services). Every failure mode is treated as limited.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ratelimit_service.adapters.rate_limit.base import RateLimitOutcome
from ratelimit_service.core.config import settings
from ratelimit_service.core.errors import AppError, ConfigAppError, ErrorDetails, InfraAppError
from ratelimit_service.core.limits import LimitType, limit_type_name

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    try:
        body: Any = response.json()
    except ValueError:
        return f"Rate limit API error: {response.status_code}"
    if isinstance(body, dict):
        if isinstance(body.get("message"), str):
            return body["message"]
        error = body.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
    return f"Rate limit API error: {response.status_code}"


class RemoteRateLimitClient:
    """Calls ``POST /rate-limit`` on a running rate limit service."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout_seconds: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Service root URL; defaults to ``RATE_LIMIT_API_URL``.
            timeout_seconds: Per-request timeout; defaults to settings.
            client: Pre-built httpx client (tests inject a MockTransport).
        """
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url or settings.rate_limit.api_url,
            timeout=timeout_seconds or settings.rate_limit.api_timeout_seconds,
        )

    async def __aenter__(self) -> "RemoteRateLimitClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def apply_rate_limit(
        self,
        identifier: str,
        limit_type: LimitType | str,
    ) -> RateLimitOutcome:
        """Ask the service whether ``identifier`` may proceed.

        Returns:
            RateLimitOutcome with ``limited=True`` on denial (429, no error, the
            server message in ``message``), on any other non-2xx status (4xx
            as ConfigAppError, 5xx as InfraAppError), and on network or
            decoding failures (InfraAppError).
        """
        name = limit_type_name(limit_type)
        try:
            response = await self._client.post(
                "/rate-limit",
                json={"identifier": identifier, "limitType": name},
            )
        except httpx.HTTPError as exc:
            logger.error(
                "rate_limit.remote_unreachable",
                extra={"identifier": identifier, "limit_type": name, "error_type": type(exc).__name__},
            )
            return RateLimitOutcome(
                limited=True,
                error=InfraAppError(
                    code="rate_limit_api_unreachable",
                    message="Rate limit check failed due to network error.",
                    details={"limit_type": name, "error_type": type(exc).__name__},
                ),
            )

        if response.status_code == 429:
            # Ordinary denial, not an error
            reason = _error_message(response)
            logger.warning(
                "rate_limit.remote_denied",
                extra={"identifier": identifier, "limit_type": name, "reason": reason},
            )
            return RateLimitOutcome(limited=True, message=reason)

        if response.is_error:
            message = _error_message(response)
            logger.error(
                "rate_limit.remote_error",
                extra={"identifier": identifier, "limit_type": name, "status_code": response.status_code},
            )
            details: ErrorDetails = {"status_code": response.status_code, "limit_type": name}
            if response.is_client_error:
                error: AppError = ConfigAppError(code="rate_limit_api_rejected", message=message, details=details)
            else:
                error = InfraAppError(code="rate_limit_api_error", message=message, details=details)
            return RateLimitOutcome(limited=True, error=error)

        try:
            allowed = response.json().get("allowed") is True
        except (ValueError, AttributeError):
            return RateLimitOutcome(
                limited=True,
                error=InfraAppError(
                    code="rate_limit_api_bad_response",
                    message="Rate limit API returned an unreadable body.",
                    details={"limit_type": name},
                ),
            )

        return RateLimitOutcome(limited=not allowed)
