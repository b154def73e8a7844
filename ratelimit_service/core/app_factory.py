"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) and
owns the rate limiter's lifetime: the limiter and its script cache are
created once here and injected through ``app.state``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from ratelimit_service.adapters.rate_limit.base import AbstractRateLimiter
from ratelimit_service.adapters.rate_limit.factory import create_rate_limiter
from ratelimit_service.api.routes import health_router, rate_limit_router
from ratelimit_service.core.config import settings
from ratelimit_service.core.exception_handlers import setup_exception_handlers
from ratelimit_service.core.logging import configure_logging
from ratelimit_service.core.middleware import request_id_middleware
from ratelimit_service.core.openapi import apply_openapi_customizations
from ratelimit_service.core.rate_limit import RateLimitGateway


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    try:
        yield
    finally:
        await app.state.rate_limit_gateway.limiter.aclose()


def create_app(limiter: AbstractRateLimiter | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        limiter: Rate limiter to serve; built from settings when omitted.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title=settings.app.title,
        description=(
            "Distributed token bucket rate limiter. Checks are executed "
            "atomically in a shared Redis store and fail closed when the "
            "store is unavailable."
        ),
        version="0.1.0",
        debug=settings.app.debug,
        lifespan=_lifespan,
    )

    # Built eagerly so the gateway exists even without lifespan events
    app.state.rate_limit_gateway = RateLimitGateway(limiter or create_rate_limiter())

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(rate_limit_router)
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
