from __future__ import annotations

from ratelimit_service.api.routes.health import router as health_router
from ratelimit_service.api.routes.rate_limit import router as rate_limit_router

__all__ = ["health_router", "rate_limit_router"]
