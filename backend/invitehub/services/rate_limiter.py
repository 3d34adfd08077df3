"""
Fixed-window request limiter backed by Redis.

One counter per (scope, client, window); the key expires with its window.
When Redis is unreachable the request is let through and a warning is logged.
"""

import logging
import time
from typing import Callable, Optional

import redis

from invitehub.config import settings
from invitehub.database.redis_client import get_redis
from invitehub.services.exceptions import TooManyRequestsError

logger = logging.getLogger(__name__)

RATE_LIMIT_KEY_PREFIX = "ratelimit"
INVITE_SCOPE = "invite"


class RateLimiter:
    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        limit: Optional[int] = None,
        window_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._client = client
        self.limit = limit or settings.INVITE_RATE_LIMIT_MAX
        self.window_seconds = window_seconds or settings.INVITE_RATE_LIMIT_WINDOW_SECONDS
        self.clock = clock

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = get_redis()
        return self._client

    def hit(self, scope: str, identity: str) -> int:
        """Count one request and return the total for the current window."""
        window = int(self.clock()) // self.window_seconds
        key = f"{RATE_LIMIT_KEY_PREFIX}:{scope}:{identity}:{window}"
        pipe = self.client.pipeline()
        pipe.incr(key)
        pipe.expire(key, self.window_seconds)
        count, _ = pipe.execute()
        return count

    def retry_after(self) -> int:
        return self.window_seconds - int(self.clock()) % self.window_seconds

    def check(self, scope: str, identity: str) -> None:
        """
        Raises:
            TooManyRequestsError: identity already used up this window
        """
        try:
            count = self.hit(scope, identity)
        except redis.RedisError as e:
            logger.warning(f"Rate limiter unavailable, allowing {scope} request: {e}")
            return
        if count > self.limit:
            logger.warning(f"Rate limit exceeded for {scope} by {identity} ({count}/{self.limit})")
            raise TooManyRequestsError(
                "Too many invite requests. Please try again later.",
                retry_after=self.retry_after(),
            )
