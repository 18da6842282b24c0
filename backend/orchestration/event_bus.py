"""
EventBus: reference-counted Redis pub/sub fan-out.

One Redis subscription and one reader task exist per channel no matter how
many local handlers listen on it. The first `subscribe` on a channel opens
the subscription; later ones only add a handler; the last unsubscribe
cancels the reader and closes the pubsub connection.

Payloads are JSON objects. Handlers may be sync or async; a failing handler
is logged and does not affect the others.
"""

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Handler = Callable[[dict], Optional[Awaitable[None]]]


@dataclass
class _ChannelSubscription:
    pubsub: Any
    reader: Optional[asyncio.Task] = None
    handlers: dict[int, Handler] = field(default_factory=dict)


class EventBus:
    def __init__(self, redis_client):
        self._redis = redis_client
        self._channels: dict[str, _ChannelSubscription] = {}
        self._lock = asyncio.Lock()
        self._ids = itertools.count(1)

    async def publish(self, channel: str, payload: dict) -> int:
        """Publish a JSON payload. Returns the number of Redis-level receivers."""
        return await self._redis.publish(channel, json.dumps(payload, default=str))

    async def subscribe(self, channel: str, handler: Handler) -> Callable[[], Awaitable[None]]:
        """Attach a handler to a channel and return its (idempotent) unsubscribe."""
        async with self._lock:
            sub = self._channels.get(channel)
            if sub is None:
                pubsub = self._redis.pubsub()
                await pubsub.subscribe(channel)
                sub = _ChannelSubscription(pubsub=pubsub)
                sub.reader = asyncio.create_task(self._read_loop(channel, sub))
                self._channels[channel] = sub
                logger.debug("Opened bus subscription on %s", channel)
            handler_id = next(self._ids)
            sub.handlers[handler_id] = handler

        async def unsubscribe():
            await self._remove_handler(channel, handler_id)

        return unsubscribe

    async def _remove_handler(self, channel: str, handler_id: int):
        async with self._lock:
            sub = self._channels.get(channel)
            if sub is None or sub.handlers.pop(handler_id, None) is None:
                return
            if sub.handlers:
                return
            del self._channels[channel]
        await self._teardown(channel, sub)

    async def _teardown(self, channel: str, sub: _ChannelSubscription):
        if sub.reader and not sub.reader.done():
            sub.reader.cancel()
            try:
                await sub.reader
            except asyncio.CancelledError:
                pass
        try:
            await sub.pubsub.unsubscribe(channel)
            await sub.pubsub.aclose()
        except Exception as e:
            logger.warning("Error closing bus subscription on %s: %s", channel, e)
        logger.debug("Closed bus subscription on %s", channel)

    async def _read_loop(self, channel: str, sub: _ChannelSubscription):
        try:
            async for message in sub.pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    payload = json.loads(message["data"])
                except (TypeError, ValueError):
                    logger.warning("Dropping non-JSON message on %s", channel)
                    continue
                for handler in list(sub.handlers.values()):
                    await self._dispatch(channel, handler, payload)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Bus reader for %s stopped: %s", channel, e)

    @staticmethod
    async def _dispatch(channel: str, handler: Handler, payload: dict):
        try:
            result = handler(payload)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error("Bus handler on %s failed: %s", channel, e)

    def active_channels(self) -> list[str]:
        return list(self._channels)

    def subscriber_count(self, channel: str) -> int:
        sub = self._channels.get(channel)
        return len(sub.handlers) if sub else 0

    async def close(self):
        """Drop every subscription (shutdown)."""
        async with self._lock:
            channels = list(self._channels.items())
            self._channels.clear()
        for channel, sub in channels:
            await self._teardown(channel, sub)
