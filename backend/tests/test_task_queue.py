"""
Tests for the Redis-backed task queue: dedup, status records,
at-most-once processing, event publishing and cancellation.
"""

import asyncio

import pytest

from conftest import settle


def _job(task_id="t1", user_id="u1", **extra):
    return {"taskId": task_id, "userId": user_id, "message": "list my files", **extra}


def _queue(fake_redis, bus, **kwargs):
    from orchestration.task_queue import TaskQueue
    kwargs.setdefault("poll_interval", 0.01)
    return TaskQueue(fake_redis, bus, **kwargs)


async def _wait_for_status(queue, task_id, statuses=("completed", "failed"), timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        status = await queue.get_status(task_id)
        if status["status"] in statuses:
            return status
        await asyncio.sleep(0.01)
    raise AssertionError(f"task {task_id} never reached {statuses}")


class TestEnqueue:

    @pytest.mark.asyncio
    async def test_duplicate_task_id_not_queued(self, fake_redis, bus):
        from orchestration.task_queue import QUEUE_KEY
        queue = _queue(fake_redis, bus)
        assert await queue.enqueue(_job()) == ("t1", True)
        assert await queue.enqueue(_job(message="again")) == ("t1", False)
        assert fake_redis.data[QUEUE_KEY] == ["t1"]

    @pytest.mark.asyncio
    async def test_status_lifecycle(self, fake_redis, bus):
        queue = _queue(fake_redis, bus)
        assert await queue.get_status("t1") == {"status": "not_found"}
        await queue.enqueue(_job())
        assert await queue.get_status("t1") == {"status": "pending"}

    @pytest.mark.asyncio
    async def test_active_tasks_listed_and_pruned(self, fake_redis, bus):
        queue = _queue(fake_redis, bus)
        await queue.enqueue(_job("t1", context={"type": "document"}))
        await queue.enqueue(_job("t2"))
        await fake_redis.sadd("agent:dashboard:active_tasks:u1", "gone")

        tasks = await queue.get_active_tasks("u1")
        assert {t["taskId"] for t in tasks} == {"t1", "t2"}
        assert all(t["status"] == "queued" for t in tasks)
        assert next(t for t in tasks if t["taskId"] == "t1")["agentType"] == "document"
        assert "gone" not in await fake_redis.smembers("agent:dashboard:active_tasks:u1")


class TestProcess:

    @pytest.mark.asyncio
    async def test_success_records_result_and_publishes_done(self, fake_redis, bus):
        from orchestration.events import EventType, StreamEvent
        from orchestration.task_queue import TASK_RESULT_TTL, event_channel, job_key

        async def processor(record, emit, cancel_event):
            await emit(StreamEvent.create(EventType.CONTENT, content="3 files"))
            return {"content": "3 files", "success": True}

        queue = _queue(fake_redis, bus)
        queue._processor = processor
        await queue.enqueue(_job())
        result = await queue.process("t1")

        assert result == {"content": "3 files", "success": True}
        status = await queue.get_status("t1")
        assert status == {"status": "completed", "result": {"content": "3 files", "success": True}}
        assert fake_redis.ttls[job_key("t1")] == TASK_RESULT_TTL

        published = [p for ch, p in fake_redis.published if ch == event_channel("t1")]
        assert [p["event"]["type"] for p in published] == ["content", "done"]
        assert published[0] == {"taskId": "t1", "userId": "u1",
                                "event": {"type": "content", "data": {"content": "3 files"}}}
        assert await queue.get_active_tasks("u1") == []

    @pytest.mark.asyncio
    async def test_failure_records_error(self, fake_redis, bus):
        async def processor(record, emit, cancel_event):
            raise RuntimeError("model provider returned 500")

        queue = _queue(fake_redis, bus)
        queue._processor = processor
        await queue.enqueue(_job())
        assert await queue.process("t1") is None

        assert await queue.get_status("t1") == {"status": "failed", "error": "model provider returned 500"}
        last = fake_redis.published[-1][1]["event"]
        assert last == {"type": "error", "data": {"message": "model provider returned 500"}}

    @pytest.mark.asyncio
    async def test_job_processed_at_most_once(self, fake_redis, bus):
        calls = []

        async def processor(record, emit, cancel_event):
            calls.append(record["taskId"])
            return {}

        queue = _queue(fake_redis, bus)
        queue._processor = processor
        await queue.enqueue(_job())
        await queue.process("t1")
        assert await queue.process("t1") is None
        assert calls == ["t1"]


class TestWorkers:

    @pytest.mark.asyncio
    async def test_worker_pool_drains_queue(self, fake_redis, bus):
        seen = []

        async def processor(record, emit, cancel_event):
            seen.append(record["taskId"])
            return {"ok": record["taskId"]}

        queue = _queue(fake_redis, bus, concurrency=2)
        await queue.start(processor)
        assert queue.worker_count == 2
        for i in range(3):
            await queue.enqueue(_job(f"t{i}"))
        for i in range(3):
            await _wait_for_status(queue, f"t{i}")
        await queue.stop()

        assert sorted(seen) == ["t0", "t1", "t2"]
        assert queue.worker_count == 0
        await bus.close()

    @pytest.mark.asyncio
    async def test_cancel_reaches_other_process(self, fake_redis, bus):
        from orchestration.event_bus import EventBus
        started = asyncio.Event()

        async def processor(record, emit, cancel_event):
            started.set()
            await asyncio.wait_for(cancel_event.wait(), timeout=1)
            return {"cancelled": True}

        worker = _queue(fake_redis, bus, concurrency=1)
        await worker.start(processor)
        await worker.enqueue(_job())
        await asyncio.wait_for(started.wait(), timeout=1)

        web_bus = EventBus(fake_redis)
        web = _queue(fake_redis, web_bus)
        await web.request_cancel("t1")
        status = await _wait_for_status(worker, "t1")

        assert status == {"status": "completed", "result": {"cancelled": True}}
        await worker.stop()
        await bus.close()

    @pytest.mark.asyncio
    async def test_subscribe_unwraps_envelope(self, fake_redis, bus):
        from orchestration.events import EventType, StreamEvent
        queue = _queue(fake_redis, bus)
        got = []
        unsubscribe = await queue.subscribe("t1", got.append)
        await queue.publish_event("t1", "u1", StreamEvent.create(EventType.CONTENT, content="hi"))
        await settle(10)
        await unsubscribe()
        assert got == [{"type": "content", "data": {"content": "hi"}}]
