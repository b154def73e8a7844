"""OpenAPI customization utilities.

Adds tag metadata and documents the limit types that ``POST /rate-limit``
accepts, keeping documentation concerns out of the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

from ratelimit_service.core.rate_limit import RateLimitGateway


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add tags and limit type metadata.

    - Adds tags metadata if not present
    - Publishes the configured limit types (with capacity and refill rate)
      under ``x-limit-types``
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {
                "name": "RateLimit",
                "description": "Token bucket checks by identifier and limit type.",
            },
            {
                "name": "Health",
                "description": "Liveness and readiness checks.",
            },
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        gateway: RateLimitGateway | None = getattr(app.state, "rate_limit_gateway", None)
        if gateway is not None:
            schema["x-limit-types"] = {
                name: {
                    "capacity": config.capacity,
                    "refill_rate_per_second": config.refill_rate,
                    "window_seconds": config.window_seconds,
                }
                for name, config in sorted(gateway.limiter.limits.items())
            }

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
