"""Limit-type table.

Each limit type names a token bucket shape (capacity and refill rate) and
the key namespace its buckets live under. The table is assembled once at
process start from the built-in defaults plus configuration overrides and
is read-only afterwards.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from ratelimit_service.core.config import LimitSpec


class LimitType(str, Enum):
    """Built-in limit types."""

    GENERAL_IP = "GENERAL_IP"
    SENSITIVE_IDENTIFIER = "SENSITIVE_IDENTIFIER"
    API_HEAVY_ENDPOINT = "API_HEAVY_ENDPOINT"


@dataclass(frozen=True)
class RateLimitConfig:
    """Token bucket shape for one limit type.

    Attributes:
        key_prefix: Namespace for bucket keys of this type.
        capacity: Maximum tokens (burst size).
        refill_rate: Tokens added per second.
        window_seconds: Informational; the period over which the full
            capacity refills.
    """

    key_prefix: str
    capacity: float
    refill_rate: float
    window_seconds: int

    def __post_init__(self) -> None:
        if not self.key_prefix:
            raise ValueError("key_prefix must be a non-empty string")
        if self.capacity <= 0:
            raise ValueError("capacity must be > 0")
        if self.refill_rate <= 0:
            raise ValueError("refill_rate must be > 0")

    @property
    def expiry_seconds(self) -> int:
        """Idle time after which a bucket key is dropped by the store."""
        return math.ceil(self.capacity / self.refill_rate) * 2

    def key_for(self, identifier: str) -> str:
        return f"{self.key_prefix}:{identifier}"


DEFAULT_LIMITS: Mapping[str, RateLimitConfig] = MappingProxyType(
    {
        LimitType.GENERAL_IP.value: RateLimitConfig(
            key_prefix="rl:ip",
            capacity=100,
            refill_rate=100 / 60,
            window_seconds=60,
        ),
        LimitType.SENSITIVE_IDENTIFIER.value: RateLimitConfig(
            key_prefix="rl:id",
            capacity=5,
            refill_rate=5 / (5 * 60),
            window_seconds=5 * 60,
        ),
        LimitType.API_HEAVY_ENDPOINT.value: RateLimitConfig(
            key_prefix="rl:api_heavy",
            capacity=20,
            refill_rate=20 / 60,
            window_seconds=60,
        ),
    }
)


def limit_type_name(limit_type: LimitType | str) -> str:
    """Return the table key for an enum member or a plain string."""

    if isinstance(limit_type, LimitType):
        return limit_type.value
    return str(limit_type)


def build_limit_table(
    overrides: Mapping[str, LimitSpec] | None = None,
) -> Mapping[str, RateLimitConfig]:
    """Merge configured overrides into the defaults.

    Args:
        overrides: Limit specs keyed by limit type name. Names that match a
            default replace it, other names add a new limit type.

    Returns:
        Read-only mapping of limit type name to RateLimitConfig.

    Raises:
        ValueError: If an override describes an invalid bucket.
    """

    table = dict(DEFAULT_LIMITS)
    for name, spec in (overrides or {}).items():
        table[name] = RateLimitConfig(
            key_prefix=spec.key_prefix,
            capacity=spec.capacity,
            refill_rate=spec.refill_rate or spec.capacity / spec.window_seconds,
            window_seconds=spec.window_seconds,
        )
    return MappingProxyType(table)
