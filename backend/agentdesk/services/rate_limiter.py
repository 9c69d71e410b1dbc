"""Sliding-window rate limiting for agent API tokens, backed by Redis.

Every accepted request is recorded in a sorted set scored by its timestamp;
members older than the window are trimmed before counting.
"""

import logging
import time
import uuid
from dataclasses import dataclass

from redis import asyncio as redis_async
from redis.exceptions import RedisError

from agentdesk.config import settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "ratelimit_agent"


@dataclass
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset: float  # unix timestamp (seconds) when a slot frees up

    def headers(self) -> dict[str, str]:
        reset_in = max(0, int(self.reset - time.time() + 0.999))
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(reset_in),
        }


class SlidingWindowRateLimiter:
    def __init__(self, client: redis_async.Redis):
        self.client = client

    async def limit(
        self,
        agent_id: int,
        identifier: str,
        requests: int,
        window_seconds: int,
    ) -> RateLimitResult:
        key = f"{KEY_PREFIX}:{agent_id}:{identifier}"
        now = time.time()
        window_start = now - window_seconds
        member = f"{now}:{uuid.uuid4().hex}"

        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zadd(key, {member: now})
            pipe.zcard(key)
            pipe.zrange(key, 0, 0, withscores=True)
            pipe.expire(key, window_seconds)
            _, _, count, oldest, _ = await pipe.execute()

        oldest_score = oldest[0][1] if oldest else now
        reset = oldest_score + window_seconds
        if count > requests:
            await self.client.zrem(key, member)
            return RateLimitResult(success=False, limit=requests, remaining=0, reset=reset)
        return RateLimitResult(
            success=True, limit=requests, remaining=requests - count, reset=reset
        )


_limiter: SlidingWindowRateLimiter | None = None


def get_rate_limiter() -> SlidingWindowRateLimiter | None:
    """Return the process-wide limiter, or None when Redis is not configured."""
    global _limiter
    if not settings.redis_url:
        return None
    if _limiter is None:
        try:
            client = redis_async.from_url(settings.redis_url, decode_responses=True)
        except (RedisError, ValueError) as e:
            logger.warning(f"Redis unavailable for rate limiting: {e}")
            return None
        logger.info("Redis client configured for rate limiting")
        _limiter = SlidingWindowRateLimiter(client)
    return _limiter
