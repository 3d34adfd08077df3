"""Shared Redis connection used for events, the dead-letter set and queue metrics."""

import logging

import redis

logger = logging.getLogger(__name__)

_client: redis.Redis | None = None


def get_redis() -> redis.Redis:
    global _client
    if _client is None:
        from invitehub.config import settings

        logger.info("Initializing Redis client")
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client
