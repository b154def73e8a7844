from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ratelimit_service.core.rate_limit import RateLimitGateway, get_rate_limit_gateway

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness check.

    Returns:
        dict: A dictionary with a single "status" key set to "ok".
    """

    return {"status": "ok"}


@router.get("/health/ready", response_model=None)
async def readiness_check(
    gateway: RateLimitGateway = Depends(get_rate_limit_gateway),
) -> dict | JSONResponse:
    """Readiness check: the shared store must answer PING.

    Returns 503 while the store is unreachable so load balancers stop
    routing traffic that would be denied anyway.
    """

    if await gateway.limiter.ping():
        return {"status": "ok", "store": "up"}
    return JSONResponse(status_code=503, content={"status": "unavailable", "store": "down"})
