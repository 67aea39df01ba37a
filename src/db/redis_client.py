"""Redis connection and utilities."""

from typing import Any

import redis

from src.config import RATE_LIMIT_REQUESTS, RATE_LIMIT_WINDOW, REDIS_CONFIG


class RedisClient:
    def __init__(self, config: dict[str, Any] | None = None):
        self.client = redis.Redis(**(config or REDIS_CONFIG))

    def rate_limit_check(
        self,
        subject: str,
        endpoint: str,
        max_requests: int = RATE_LIMIT_REQUESTS,
        window: int = RATE_LIMIT_WINDOW,
    ) -> bool:
        """Check if a caller has exceeded the rate limit. Returns True if allowed, False if rate limit exceeded."""
        key = f"rate_limit:{subject}:{endpoint}"
        count = self.client.get(key)
        if count is None:
            # first request, set counter with expiry
            self.client.setex(key, window, 1)
            return True
        count = int(count)
        if count < max_requests:
            self.client.incr(key)
            return True
        return False

    def ping(self) -> bool:
        return bool(self.client.ping())
