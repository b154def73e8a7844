"""Atomic token bucket routine and its handle cache.

The decision routine runs inside Redis as a Lua script, so the
read-refill-consume-write sequence for a key is a single indivisible
operation. Redis serializes scripts, which makes concurrent checks for the
same key linearizable without any locking in Python.

The script is loaded once with SCRIPT LOAD and then invoked by its SHA1
with EVALSHA. Redis forgets loaded scripts on restart (or SCRIPT FLUSH);
EVALSHA then fails with NOSCRIPT and the cached handle is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

from redis.asyncio import Redis
from redis.exceptions import NoScriptError

logger = logging.getLogger(__name__)


# KEYS[1] = bucket key
# ARGV[1] = capacity, ARGV[2] = refill rate (tokens/s),
# ARGV[3] = now (integer seconds), ARGV[4] = tokens requested
# Returns {allowed (1|0), tokens left as a string}
TOKEN_BUCKET_SCRIPT = """
local key = KEYS[1]
local capacity = tonumber(ARGV[1])
local refill_rate = tonumber(ARGV[2])
local now = tonumber(ARGV[3])
local requested = tonumber(ARGV[4])

local data = redis.call('HMGET', key, 'tokens', 'last_refill')
local tokens = tonumber(data[1])
local last_refill = tonumber(data[2])

if tokens == nil or last_refill == nil then
    tokens = capacity
    last_refill = now
end

local elapsed = math.max(0, now - last_refill)
tokens = math.min(capacity, tokens + elapsed * refill_rate)

-- the bucket clock advances on every touch, allowed or not
last_refill = now

local allowed = 0
if tokens >= requested then
    tokens = tokens - requested
    allowed = 1
end

-- stored at full double precision so the state round-trips exactly
local stored = string.format('%.17g', tokens)
redis.call('HSET', key, 'tokens', stored, 'last_refill', last_refill)
redis.call('EXPIRE', key, math.ceil(capacity / refill_rate) * 2)

return {allowed, stored}
"""


class ScriptCache:
    """Loads a Lua script into Redis and memoizes its SHA1 handle.

    One instance is created at startup and shared by the engine; the
    handle is per-instance state, so separate stores never share it.
    """

    def __init__(self, redis: Redis, script: str = TOKEN_BUCKET_SCRIPT) -> None:
        self._redis = redis
        self._script = script
        self._sha: str | None = None
        self._lock = asyncio.Lock()

    @property
    def sha(self) -> str | None:
        return self._sha

    def invalidate(self) -> None:
        """Forget the memoized handle so the next call reloads the script."""
        self._sha = None

    async def ensure_loaded(self) -> str:
        """Return the script handle, loading the script on first use.

        Raises:
            redis.exceptions.RedisError: If the script cannot be loaded.
        """

        if self._sha is not None:
            return self._sha

        async with self._lock:
            # Another task may have loaded it while we waited
            if self._sha is None:
                sha = await self._redis.script_load(self._script)
                self._sha = sha
                logger.info("rate_limit.script_loaded", extra={"script_sha": sha})
            return self._sha

    async def invoke(self, keys: Sequence[str], args: Sequence[Any]) -> Any:
        """Run the script by handle.

        Raises:
            NoScriptError: The store no longer knows the handle. The handle
                has been invalidated; the caller decides whether to retry.
            redis.exceptions.RedisError: Any other store failure.
        """

        sha = await self.ensure_loaded()
        try:
            return await self._redis.evalsha(sha, len(keys), *keys, *args)
        except NoScriptError:
            logger.warning("rate_limit.script_missing", extra={"script_sha": sha})
            self.invalidate()
            raise
