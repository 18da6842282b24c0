"""
TaskQueue: Redis-backed chat task queue with a local worker pool.

Flow:
  1. The HTTP layer enqueues a chat request under a caller-chosen taskId.
  2. Worker loops in any process pop ids and run the processing function.
  3. Every event the processor emits is published on agent:task:events:{taskId}.
  4. Stream endpoints subscribe to that channel through the EventBus.

A job is attempted at most once: model-driven execution is not idempotent,
so a record that is no longer pending is never picked up again.
"""

import asyncio
import json
import logging
import time
from typing import Awaitable, Callable, Optional

from config import TASK_RESULT_TTL, WORKER_CONCURRENCY, WORKER_POLL_INTERVAL
from orchestration.event_bus import EventBus
from orchestration.events import EventType, StreamEvent
from redis_store import key

logger = logging.getLogger(__name__)

QUEUE_KEY = key("tasks", "queue")
EVENT_CHANNEL_PREFIX = key("task", "events") + ":"
CANCEL_CHANNEL = key("task", "cancel")

STATUS_PENDING = "pending"
STATUS_ACTIVE = "active"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_NOT_FOUND = "not_found"

# (job data, emit, cancel event) -> result dict
TaskProcessor = Callable[
    [dict, Callable[[StreamEvent], Awaitable[None]], asyncio.Event], Awaitable[dict]
]


def job_key(task_id: str) -> str:
    return key("tasks", "job", task_id)


def active_tasks_key(user_id: str) -> str:
    return key("dashboard", "active_tasks", user_id)


def event_channel(task_id: str) -> str:
    return EVENT_CHANNEL_PREFIX + task_id


class TaskQueue:
    def __init__(self, redis_client, bus: EventBus, concurrency: int = WORKER_CONCURRENCY,
                 result_ttl: int = TASK_RESULT_TTL, poll_interval: float = WORKER_POLL_INTERVAL):
        self._redis = redis_client
        self._bus = bus
        self._concurrency = concurrency
        self._result_ttl = result_ttl
        self._poll_interval = poll_interval
        self._processor: Optional[TaskProcessor] = None
        self._workers: list[asyncio.Task] = []
        self._running = False
        # taskId -> cancel event for jobs running in this process
        self._cancel_events: dict[str, asyncio.Event] = {}
        self._cancel_unsubscribe = None

    # ── Producer side ──

    async def enqueue(self, data: dict) -> tuple[str, bool]:
        """Store and queue a job. Returns (taskId, created).

        A taskId that already has a record is not queued again.
        """
        task_id = data["taskId"]
        record = {
            "taskId": task_id,
            "userId": data["userId"],
            "message": data["message"],
            "conversationId": data.get("conversationId"),
            "context": data.get("context") or {},
            "status": STATUS_PENDING,
            "createdAt": time.time(),
        }
        created = await self._redis.set(job_key(task_id), json.dumps(record), nx=True)
        if not created:
            logger.info("Duplicate task %s ignored", task_id)
            return task_id, False

        await self._redis.lpush(QUEUE_KEY, task_id)
        await self._redis.sadd(active_tasks_key(data["userId"]), task_id)
        logger.info("Task %s enqueued for user %s", task_id, data["userId"])
        return task_id, True

    async def _load(self, task_id: str) -> Optional[dict]:
        raw = await self._redis.get(job_key(task_id))
        return json.loads(raw) if raw else None

    async def get_status(self, task_id: str) -> dict:
        record = await self._load(task_id)
        if record is None:
            return {"status": STATUS_NOT_FOUND}
        status = record.get("status", STATUS_PENDING)
        out = {"status": status}
        if status == STATUS_COMPLETED:
            out["result"] = record.get("result")
        elif status == STATUS_FAILED:
            out["error"] = record.get("error")
        return out

    async def get_active_tasks(self, user_id: str) -> list[dict]:
        """In-flight tasks for a user, newest first. Stale ids are pruned."""
        task_ids = await self._redis.smembers(active_tasks_key(user_id))
        results, stale = [], []
        for task_id in task_ids:
            record = await self._load(task_id)
            if record is None or record.get("status") in (STATUS_COMPLETED, STATUS_FAILED):
                stale.append(task_id)
                continue
            results.append({
                "taskId": task_id,
                "conversationId": record.get("conversationId"),
                "message": record.get("message", "")[:120],
                "agentType": (record.get("context") or {}).get("type"),
                "status": "running" if record.get("status") == STATUS_ACTIVE else "queued",
                "startedAt": record.get("startedAt") or record.get("createdAt"),
            })
        if stale:
            await self._redis.srem(active_tasks_key(user_id), *stale)
        return sorted(results, key=lambda r: r["startedAt"] or 0, reverse=True)

    # ── Events ──

    async def publish_event(self, task_id: str, user_id: str, event: StreamEvent):
        envelope = {"taskId": task_id, "userId": user_id, "event": event.to_dict()}
        try:
            await self._bus.publish(event_channel(task_id), envelope)
        except Exception as e:
            logger.warning("Failed to publish event for task %s: %s", task_id, e)

    async def subscribe(self, task_id: str, handler: Callable[[dict], object]):
        """Receive the inner {type, data} event of every envelope on a task channel."""

        async def unwrap(envelope: dict):
            result = handler(envelope.get("event") or {})
            if asyncio.iscoroutine(result):
                await result

        return await self._bus.subscribe(event_channel(task_id), unwrap)

    # ── Cancellation ──

    async def request_cancel(self, task_id: str):
        """Ask whichever process runs the task to stop waiting on approvals."""
        await self._bus.publish(CANCEL_CHANNEL, {"taskId": task_id})

    def _on_cancel(self, payload: dict):
        event = self._cancel_events.get(payload.get("taskId"))
        if event is not None:
            logger.info("Cancellation requested for task %s", payload.get("taskId"))
            event.set()

    # ── Worker pool ──

    @property
    def running(self) -> bool:
        return self._running

    @property
    def worker_count(self) -> int:
        return sum(1 for w in self._workers if not w.done())

    async def start(self, processor: TaskProcessor):
        if self._running:
            return
        self._processor = processor
        self._running = True
        self._cancel_unsubscribe = await self._bus.subscribe(CANCEL_CHANNEL, self._on_cancel)
        self._workers = [
            asyncio.create_task(self._worker_loop(i)) for i in range(self._concurrency)
        ]
        logger.info("Task queue started with %d workers", self._concurrency)

    async def stop(self):
        self._running = False
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        if self._cancel_unsubscribe:
            await self._cancel_unsubscribe()
            self._cancel_unsubscribe = None
        logger.info("Task queue stopped")

    async def _worker_loop(self, worker_id: int):
        while self._running:
            try:
                task_id = await self._redis.rpop(QUEUE_KEY)
                if task_id is None:
                    await asyncio.sleep(self._poll_interval)
                    continue
                await self.process(task_id)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Worker %d error: %s", worker_id, e)
                await asyncio.sleep(self._poll_interval)

    async def _save(self, record: dict, terminal: bool = False):
        await self._redis.set(
            job_key(record["taskId"]), json.dumps(record, default=str),
            ex=self._result_ttl if terminal else None,
        )

    async def process(self, task_id: str) -> Optional[dict]:
        """Run one job. Records that are missing or not pending are skipped."""
        record = await self._load(task_id)
        if record is None or record.get("status") != STATUS_PENDING:
            logger.debug("Skipping task %s (not pending)", task_id)
            return None

        user_id = record["userId"]
        record["status"] = STATUS_ACTIVE
        record["startedAt"] = time.time()
        await self._save(record)
        logger.info("Processing task %s for user %s", task_id, user_id)

        async def emit(event: StreamEvent):
            await self.publish_event(task_id, user_id, event)

        cancel_event = asyncio.Event()
        self._cancel_events[task_id] = cancel_event
        try:
            result = await self._processor(record, emit, cancel_event)
        except asyncio.CancelledError:
            record.update(status=STATUS_FAILED, error="Task interrupted by shutdown",
                          finishedAt=time.time())
            await self._save(record, terminal=True)
            await self._redis.srem(active_tasks_key(user_id), task_id)
            raise
        except Exception as e:
            logger.error("Task %s failed: %s", task_id, e)
            record.update(status=STATUS_FAILED, error=str(e) or type(e).__name__,
                          finishedAt=time.time())
            await self._save(record, terminal=True)
            await emit(StreamEvent.create(EventType.ERROR, message=record["error"]))
            await self._redis.srem(active_tasks_key(user_id), task_id)
            return None
        finally:
            self._cancel_events.pop(task_id, None)

        record.update(status=STATUS_COMPLETED, result=result, finishedAt=time.time())
        await self._save(record, terminal=True)
        await emit(StreamEvent(EventType.DONE, dict(result or {})))
        await self._redis.srem(active_tasks_key(user_id), task_id)
        logger.info("Task %s completed", task_id)
        return result
