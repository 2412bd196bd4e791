"""Sliding-window rate limiter backed by a Redis sorted set.

Each request adds one member to ``{prefix}:{identifier}`` scored by its
timestamp; members older than the window are trimmed before counting. All
steps run in a single MULTI/EXEC so concurrent callers on the same key see a
consistent count.
"""

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from uuid import uuid4

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

MICROSECONDS = 1_000_000


@dataclass(frozen=True)
class RateLimitPolicy:
    """How many requests an identity may make per trailing window."""

    max_requests: int
    window_seconds: float
    key_prefix: str
    expiry_slack_seconds: int = 60

    def __post_init__(self):
        if self.max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

    @property
    def key_ttl_seconds(self) -> int:
        """Lifetime of an idle counter key."""
        return math.ceil(self.window_seconds) + self.expiry_slack_seconds


class RateLimiter:
    """Counts requests per identity over a sliding window."""

    def __init__(self, redis: Redis, policy: RateLimitPolicy, clock: Callable[[], float] = time.time):
        self._redis = redis
        self.policy = policy
        self._clock = clock

    def key_for(self, identifier: str) -> str:
        return f"{self.policy.key_prefix}:{identifier}"

    async def allow(self, identifier: str) -> tuple[bool, int]:
        """Record a request and decide whether it is within the limit.

        The request is recorded even when it is over the limit, so a client
        that keeps hammering stays blocked until it pauses for a full window.

        Args:
            identifier: Caller identity (user id or client IP)

        Returns:
            Tuple of (allowed, current_count). ``(True, 0)`` when Redis is
            unavailable: limiting fails open.

        """
        key = self.key_for(identifier)
        now_us = int(self._clock() * MICROSECONDS)
        window_start_us = now_us - int(self.policy.window_seconds * MICROSECONDS)
        member = f"{now_us}:{uuid4().hex}"

        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(key, "-inf", f"({window_start_us}")
                pipe.zadd(key, {member: now_us})
                pipe.zcard(key)
                pipe.expire(key, self.policy.key_ttl_seconds)
                _, _, count, _ = await pipe.execute()
        except (RedisError, OSError):
            logger.exception(f"Redis error during rate limiting for {key} (fail-open)")
            return True, 0

        count = int(count)
        allowed = count <= self.policy.max_requests
        if not allowed:
            logger.warning(f"Rate limit exceeded for {key}: {count}/{self.policy.max_requests}")
        return allowed, count

    def remaining(self, count: int) -> int:
        return max(0, self.policy.max_requests - count)

    def reset_at(self) -> int:
        """Epoch seconds by which the current window will have fully elapsed."""
        return math.ceil(self._clock() + self.policy.window_seconds)

    def retry_after(self) -> int:
        """Seconds a rejected caller should wait before retrying."""
        return math.ceil(self.policy.window_seconds)

    def headers(self, count: int) -> dict[str, str]:
        """X-RateLimit-* headers for a response."""
        return {
            "X-RateLimit-Limit": str(self.policy.max_requests),
            "X-RateLimit-Remaining": str(self.remaining(count)),
            "X-RateLimit-Reset": str(self.reset_at()),
        }
