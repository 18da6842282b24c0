"""
Distributed per-resource locks for mutating tool calls.

Two agents (or two users) writing the same file or folder at once would
race in the storage service, so every write tool runs while holding
agent:lock:{kind}:{id} for each resource it touches. Locks are plain
SET NX EX keys with an owner token; release is a compare-and-delete script.
"""

import asyncio
import logging
import random
import secrets
from typing import Awaitable, Callable, Optional

from config import LOCK_RETRIES, LOCK_RETRY_DELAY, LOCK_TTL, WRITE_TOOLS
from redis_store import key
from tools import ToolResult

logger = logging.getLogger(__name__)

LOCK_PREFIX = key("lock") + ":"

# Argument name -> resource kind
_RESOURCE_ARGS = (
    ("fileId", "file"),
    ("folderId", "folder"),
    ("destinationFolderId", "folder"),
    ("destinationId", "folder"),
    ("parentFolderId", "folder"),
    ("parentId", "folder"),
    ("linkId", "link"),
    ("resourceId", "resource"),
)

_RELEASE_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
else
    return 0
end
"""


def needs_lock(tool_name: str) -> bool:
    return tool_name in WRITE_TOOLS


def get_resource_keys(tool_name: str, args: dict, user_id: str) -> list[str]:
    """Lock keys for a call, sorted so multi-key acquisition cannot deadlock."""
    keys = set()
    for arg, kind in _RESOURCE_ARGS:
        value = args.get(arg)
        if value:
            keys.add(f"{LOCK_PREFIX}{kind}:{value}")
    if not keys:
        keys.add(f"{LOCK_PREFIX}tool:{tool_name}:{user_id}")
    return sorted(keys)


class ResourceLock:
    def __init__(self, redis_client, ttl: int = LOCK_TTL, retries: int = LOCK_RETRIES,
                 retry_delay: float = LOCK_RETRY_DELAY):
        self._redis = redis_client
        self.ttl = ttl
        self.retries = retries
        self.retry_delay = retry_delay

    async def _acquire_one(self, lock_key: str, owner: str) -> bool:
        for attempt in range(self.retries + 1):
            if await self._redis.set(lock_key, owner, nx=True, ex=self.ttl):
                return True
            if attempt < self.retries:
                await asyncio.sleep(self.retry_delay + random.uniform(0, self.retry_delay / 2))
        return False

    async def acquire(self, keys: list[str]) -> Optional[str]:
        """Acquire every key or none. Returns the owner token on success."""
        owner = secrets.token_hex(16)
        held = []
        try:
            for lock_key in keys:
                if not await self._acquire_one(lock_key, owner):
                    logger.debug("Resource busy: %s", lock_key)
                    await self.release(held, owner)
                    return None
                held.append(lock_key)
        except Exception as e:
            logger.warning("Lock acquisition failed for %s: %s", keys, e)
            await self.release(held, owner)
            return None
        logger.debug("Acquired locks %s", keys)
        return owner

    async def release(self, keys: list[str], owner: str):
        for lock_key in keys:
            try:
                await self._redis.eval(_RELEASE_SCRIPT, 1, lock_key, owner)
            except Exception as e:
                # Lock may already have expired
                logger.debug("Lock release failed for %s: %s", lock_key, e)

    async def with_lock(self, tool_name: str, args: dict, user_id: str,
                        fn: Callable[[], Awaitable[ToolResult]]) -> ToolResult:
        """Run fn while holding the call's resource locks. Never raises."""
        keys = get_resource_keys(tool_name, args, user_id)
        owner = await self.acquire(keys)
        if owner is None:
            return ToolResult(
                f"Error: the resource is busy with another operation ({tool_name}). "
                "Please retry shortly.",
                True,
            )
        try:
            return await fn()
        except Exception as e:
            logger.error("Locked call %s raised: %s", tool_name, e)
            return ToolResult(f"Error executing {tool_name}: {e}", True)
        finally:
            await self.release(keys, owner)
