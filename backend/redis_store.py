"""
Shared store: the Redis connection used by the task queue, event bus,
approval store, rate limiter and resource locks.

All keys live under the `agent:` prefix so the assistant can share a
Redis database with the storage service.
"""

import logging

import redis.asyncio as redis

from config import REDIS_URL

logger = logging.getLogger(__name__)

KEY_PREFIX = "agent:"


def create_redis_client(url: str = None) -> redis.Redis:
    """Create an asyncio Redis client that returns str instead of bytes."""
    url = url or REDIS_URL
    client = redis.from_url(url, encoding="utf-8", decode_responses=True)
    logger.info("Redis client created for %s", url.rsplit("@", 1)[-1])
    return client


def key(*parts) -> str:
    """Build a namespaced key: key("tasks", "job", tid) -> agent:tasks:job:<tid>."""
    return KEY_PREFIX + ":".join(str(p) for p in parts)
