"""
Per-user fixed-window rate limiter kept in Redis.

The window lives in the hash agent:rate:{userId} with fields `start`
(epoch seconds) and `count`. A window older than RATE_WINDOW_SECONDS is
replaced on the next counted operation, so every process shares the same
quota. Counting runs as one Lua script: the check and the increment cannot
interleave with another worker's.
"""

import logging
import time
from typing import Callable

from config import MAX_OPS_PER_WINDOW, RATE_WINDOW_SECONDS
from redis_store import key

logger = logging.getLogger(__name__)

# KEYS[1] = window hash. ARGV = now, window seconds, ceiling (-1 for none).
# Returns the new count, or 0 when the ceiling was already reached.
RATE_SCRIPT = """
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local ceiling = tonumber(ARGV[3])
local start = tonumber(redis.call("HGET", KEYS[1], "start") or "0")
if start == 0 or now - start > window then
    if ceiling == 0 then
        return 0
    end
    redis.call("HSET", KEYS[1], "start", ARGV[1], "count", 1)
    redis.call("EXPIRE", KEYS[1], window * 2)
    return 1
end
local count = redis.call("HINCRBY", KEYS[1], "count", 1)
if ceiling >= 0 and count > ceiling then
    redis.call("HINCRBY", KEYS[1], "count", -1)
    return 0
end
return count
"""


def rate_key(user_id: str) -> str:
    return key("rate", user_id)


class RateLimiter:
    def __init__(self, redis_client, window_seconds: int = RATE_WINDOW_SECONDS,
                 max_ops: int = MAX_OPS_PER_WINDOW, clock: Callable[[], float] = time.time):
        self._redis = redis_client
        self.window_seconds = window_seconds
        self.max_ops = max_ops
        self._clock = clock

    async def _window(self, user_id: str) -> tuple[float, int]:
        data = await self._redis.hgetall(rate_key(user_id))
        if not data:
            return 0.0, 0
        return float(data.get("start", 0)), int(data.get("count", 0))

    async def _count(self, user_id: str, ceiling: int) -> int:
        return int(await self._redis.eval(
            RATE_SCRIPT, 1, rate_key(user_id),
            repr(self._clock()), self.window_seconds, ceiling,
        ))

    async def check(self, user_id: str) -> bool:
        """True when the user may perform one more counted operation. Counts nothing."""
        start, count = await self._window(user_id)
        if not start or self._clock() - start > self.window_seconds:
            return True
        return count < self.max_ops

    async def acquire(self, user_id: str) -> bool:
        """Check and count one operation in a single step. False when over the limit."""
        count = await self._count(user_id, self.max_ops)
        if not count:
            logger.debug("Rate window full for user %s", user_id)
        return bool(count)

    async def increment(self, user_id: str) -> int:
        """Count one operation that was already allowed, without a ceiling."""
        return await self._count(user_id, -1)
