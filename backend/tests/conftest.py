"""
Test fixtures for the Drive Assistant test suite.
"""

import asyncio
import fnmatch
import json
import os
import sys
import time
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

# Add backend to path
BACKEND_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(BACKEND_DIR))

# Set up a minimal profile before importing anything that reads config
os.environ["PROFILE_PATH"] = str(BACKEND_DIR.parent / "profile.yaml.example")
os.environ.setdefault("DRIVE_API_KEY", "test-api-key")


# ── Redis double ──

class FakePubSub:
    """In-process stand-in for redis.asyncio PubSub."""

    def __init__(self, server: "FakeRedis"):
        self._server = server
        self._queue: asyncio.Queue = asyncio.Queue()
        self.channels: set = set()
        self.closed = False

    async def subscribe(self, *channels):
        for ch in channels:
            self.channels.add(ch)
            self._server.subscribers.setdefault(ch, set()).add(self)
            self._queue.put_nowait({"type": "subscribe", "channel": ch, "data": len(self.channels)})

    async def unsubscribe(self, *channels):
        for ch in channels or list(self.channels):
            self.channels.discard(ch)
            self._server.subscribers.get(ch, set()).discard(self)

    def deliver(self, channel: str, data: str):
        self._queue.put_nowait({"type": "message", "channel": channel, "data": data})

    async def listen(self):
        while True:
            yield await self._queue.get()

    async def aclose(self):
        await self.unsubscribe()
        self.closed = True


class FakeRedis:
    """Covers the command subset the assistant uses, with decode_responses semantics.

    Keys written with `ex` expire against `clock`, which tests may swap for
    their own. With `interleave` set, every command yields to the event loop
    first, the way a network round trip would.
    """

    def __init__(self):
        self.data: dict = {}
        self.ttls: dict = {}
        self.deadlines: dict = {}
        self.subscribers: dict[str, set] = {}
        self.published: list[tuple[str, dict]] = []
        self.clock = time.time
        self.interleave = False

    async def _command(self):
        if self.interleave:
            await asyncio.sleep(0)
        now = self.clock()
        for k, deadline in list(self.deadlines.items()):
            if deadline <= now:
                self._forget(k)

    def _forget(self, k):
        self.deadlines.pop(k, None)
        self.ttls.pop(k, None)
        return self.data.pop(k, None)

    def _set_ttl(self, k, seconds):
        self.ttls[k] = seconds
        self.deadlines[k] = self.clock() + seconds

    # Strings
    async def get(self, k):
        await self._command()
        value = self.data.get(k)
        return value if isinstance(value, str) else None

    async def set(self, k, value, nx=False, ex=None):
        await self._command()
        if nx and k in self.data:
            return None
        self.data[k] = str(value)
        if ex is not None:
            self._set_ttl(k, ex)
        else:
            self.ttls.pop(k, None)
            self.deadlines.pop(k, None)
        return True

    async def mget(self, keys):
        return [await self.get(k) for k in keys]

    async def delete(self, *keys):
        await self._command()
        return sum(1 for k in keys if self._forget(k) is not None)

    async def expire(self, k, seconds):
        await self._command()
        if k not in self.data:
            return False
        self._set_ttl(k, seconds)
        return True

    # Hashes
    async def hset(self, name, key=None, value=None, mapping=None):
        await self._command()
        h = self.data.setdefault(name, {})
        items = dict(mapping or {})
        if key is not None:
            items[key] = value
        for field, v in items.items():
            h[field] = str(v)
        return len(items)

    async def hgetall(self, name):
        await self._command()
        return dict(self.data.get(name) or {})

    async def hincrby(self, name, field, amount=1):
        await self._command()
        return self._hincrby(name, field, amount)

    def _hincrby(self, name, field, amount):
        h = self.data.setdefault(name, {})
        h[field] = str(int(h.get(field, 0)) + amount)
        return int(h[field])

    # Sets
    async def sadd(self, name, *values):
        await self._command()
        s = self.data.setdefault(name, set())
        before = len(s)
        s.update(values)
        return len(s) - before

    async def srem(self, name, *values):
        await self._command()
        s = self.data.get(name) or set()
        before = len(s)
        s.difference_update(values)
        return before - len(s)

    async def smembers(self, name):
        await self._command()
        return set(self.data.get(name) or set())

    # Lists
    async def lpush(self, name, *values):
        await self._command()
        lst = self.data.setdefault(name, [])
        for v in values:
            lst.insert(0, v)
        return len(lst)

    async def rpop(self, name):
        await self._command()
        lst = self.data.get(name)
        return lst.pop() if lst else None

    # Keys
    async def scan_iter(self, match="*"):
        await self._command()
        for k in list(self.data):
            if fnmatch.fnmatchcase(k, match):
                yield k

    # Scripts: the lock release and the rate window, each applied in one step
    async def eval(self, script, numkeys, *args):
        from core.rate_limit import RATE_SCRIPT
        await self._command()
        if script == RATE_SCRIPT:
            return self._rate_script(args[0], float(args[1]), int(args[2]), int(args[3]))
        k, owner = args[0], args[1]
        if self.data.get(k) == owner:
            self._forget(k)
            return 1
        return 0

    def _rate_script(self, k, now, window, ceiling):
        start = float((self.data.get(k) or {}).get("start", 0))
        if not start or now - start > window:
            if ceiling == 0:
                return 0
            self.data[k] = {"start": repr(now), "count": "1"}
            self._set_ttl(k, window * 2)
            return 1
        count = self._hincrby(k, "count", 1)
        if ceiling >= 0 and count > ceiling:
            self._hincrby(k, "count", -1)
            return 0
        return count

    # Pub/sub
    async def publish(self, channel, message):
        self.published.append((channel, json.loads(message)))
        receivers = list(self.subscribers.get(channel, set()))
        for sub in receivers:
            sub.deliver(channel, message)
        return len(receivers)

    def pubsub(self):
        return FakePubSub(self)

    async def ping(self):
        return True

    async def aclose(self):
        pass


async def settle(rounds: int = 5):
    """Let reader tasks deliver what was just published."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ── LLM responses ──

def text_response(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def tool_call_response(*calls, content: str = "") -> dict:
    """calls: (name, args) pairs."""
    return {"choices": [{"message": {
        "role": "assistant",
        "content": content,
        "tool_calls": [
            {"id": f"call_{i}", "type": "function",
             "function": {"name": name, "arguments": json.dumps(args)}}
            for i, (name, args) in enumerate(calls)
        ],
    }}]}


# ── Storage service double ──

class FakeStorageClient:
    """Records tool calls; answers from `responses` (name -> str or ToolResult)."""

    def __init__(self):
        self.calls: list[tuple[str, str, dict]] = []
        self.responses: dict = {}

    async def call(self, name, user_id, args):
        from tools import ToolResult
        self.calls.append((name, user_id, args))
        response = self.responses.get(name, f"{name} ok")
        if isinstance(response, Exception):
            raise response
        if isinstance(response, ToolResult):
            return response
        return ToolResult(response)

    def names(self) -> list[str]:
        return [c[0] for c in self.calls]


# ── Fixtures ──

@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def bus(fake_redis):
    from orchestration.event_bus import EventBus
    return EventBus(fake_redis)


@pytest.fixture
def llm():
    """Response builders for mocked inference."""
    return SimpleNamespace(text=text_response, tool_calls=tool_call_response, settle=settle)


@pytest.fixture
def storage():
    """Routes every catalogue tool to an in-memory storage double."""
    import tools
    client = FakeStorageClient()
    tools.set_storage_client(client)
    yield client
    tools.set_storage_client(None)


@pytest.fixture
def temp_db(tmp_path):
    """Point the conversation store at a fresh SQLite file."""
    db_path = tmp_path / "assistant.db"
    with patch("db.DB_PATH", db_path):
        from schema import init_db
        init_db()
        yield db_path


@pytest.fixture
def agent_core(fake_redis, bus, storage):
    """The pieces agents reach through their core, with a mocked model."""
    from core.approvals import ApprovalStore
    from core.gateway import CapabilityGateway
    from core.memory_manager import MemoryManager
    from core.rate_limit import RateLimiter
    from core.resource_lock import ResourceLock
    from tools import ToolRegistry

    inference = AsyncMock()
    approvals = ApprovalStore(fake_redis, bus)
    rate_limiter = RateLimiter(fake_redis)
    return SimpleNamespace(
        inference=inference,
        tools=ToolRegistry(),
        approvals=approvals,
        rate_limiter=rate_limiter,
        gateway=CapabilityGateway(approvals, rate_limiter),
        resource_lock=ResourceLock(fake_redis, retries=0),
        memory=MemoryManager(inference),
        bus=bus,
        storage=storage,
    )
