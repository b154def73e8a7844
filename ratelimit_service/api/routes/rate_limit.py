import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from ratelimit_service.core.rate_limit import (
    RateLimitGateway,
    get_rate_limit_gateway,
    rate_limit_headers,
)
from ratelimit_service.schemas.rate_limit import RateLimitCheckRequest, RateLimitCheckResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["RateLimit"])


@router.post(
    "/rate-limit",
    response_model=RateLimitCheckResponse,
    response_model_exclude_none=True,
    responses={
        400: {"description": "Missing or malformed fields, or unknown limitType."},
        429: {"model": RateLimitCheckResponse, "description": "Rate limit exceeded."},
        500: {"description": "Rate limiter unavailable."},
    },
)
async def check_rate_limit(
    body: RateLimitCheckRequest,
    gateway: RateLimitGateway = Depends(get_rate_limit_gateway),
) -> RateLimitCheckResponse | JSONResponse:
    """Check and consume one token for an identifier.

    Args:
        body: Identifier and limit type name.
        gateway: Process-wide rate limit gateway.

    Returns:
        200 ``{"allowed": true}`` when a token was granted, 429 with
        ``{"allowed": false}`` when the bucket is exhausted.

    Raises:
        ConfigAppError: Unknown limit type (rendered as 400).
        ValidationAppError: Empty identifier (rendered as 400).
        InfraAppError: Store failure (rendered as 500).
    """
    decision = await gateway.check(body.identifier, body.limit_type)

    if decision.error is not None:
        raise decision.error

    if not decision.allowed:
        logger.warning(
            "rate_limit.exceeded",
            extra={"identifier": body.identifier, "limit_type": body.limit_type},
        )
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"allowed": False, "message": "Rate limit exceeded."},
            headers=rate_limit_headers(decision) or None,
        )

    return RateLimitCheckResponse(allowed=True)
