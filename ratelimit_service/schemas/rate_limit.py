"""Pydantic schemas for the rate limit endpoint."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, StrictStr


class RateLimitCheckRequest(BaseModel):
    """Body of ``POST /rate-limit``.

    Both fields must be JSON strings; numbers or nulls are rejected rather
    than coerced.
    """

    model_config = ConfigDict(populate_by_name=True)

    identifier: StrictStr = Field(
        ...,
        description="Entity being limited (IP address, username, email).",
    )
    limit_type: StrictStr = Field(
        ...,
        alias="limitType",
        description="Limit type name, e.g. GENERAL_IP or SENSITIVE_IDENTIFIER.",
    )


class RateLimitCheckResponse(BaseModel):
    """Decision returned to the caller."""

    allowed: bool = Field(..., description="Whether the request may proceed.")
    message: str | None = Field(
        default=None,
        description="Reason for a denial; omitted when allowed.",
    )
