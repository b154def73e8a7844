"""Rate limiting adapters.

A token bucket engine executing atomically in Redis, an in-process
equivalent for single-instance use, and an HTTP client for the service's
own endpoint, all behind one small interface.
"""

from ratelimit_service.adapters.rate_limit.base import AbstractRateLimiter, RateLimitDecision
from ratelimit_service.adapters.rate_limit.factory import create_rate_limiter, create_redis_client
from ratelimit_service.adapters.rate_limit.in_memory import InMemoryTokenBucketLimiter
from ratelimit_service.adapters.rate_limit.redis_bucket import RedisTokenBucketLimiter
from ratelimit_service.adapters.rate_limit.script_cache import TOKEN_BUCKET_SCRIPT, ScriptCache

__all__ = [
    "AbstractRateLimiter",
    "InMemoryTokenBucketLimiter",
    "RateLimitDecision",
    "RedisTokenBucketLimiter",
    "ScriptCache",
    "TOKEN_BUCKET_SCRIPT",
    "create_rate_limiter",
    "create_redis_client",
]
