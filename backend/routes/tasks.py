"""Task status, listing, cancellation and event stream endpoints."""

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from auth import verify_api_key, get_core, get_current_user
from orchestration.events import EventType, TERMINAL_EVENTS
from orchestration.task_queue import STATUS_COMPLETED, STATUS_FAILED, STATUS_NOT_FOUND

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(verify_api_key)])

_KEEPALIVE_SECONDS = 15.0


def _sse(event: dict) -> str:
    return f"data: {json.dumps(event, default=str)}\n\n"


@router.get("/api/agent/tasks")
async def list_active_tasks(user_id: str = Depends(get_current_user)):
    return {"tasks": await get_core().get_active_tasks(user_id)}


@router.get("/api/agent/tasks/{task_id}")
async def get_task_status(task_id: str, user_id: str = Depends(get_current_user)):
    status = await get_core().get_task_status(task_id)
    if status["status"] == STATUS_NOT_FOUND:
        raise HTTPException(status_code=404, detail="Task not found")
    return status


@router.post("/api/agent/tasks/{task_id}/cancel")
async def cancel_task(task_id: str, user_id: str = Depends(get_current_user)):
    core = get_core()
    status = await core.get_task_status(task_id)
    if status["status"] in (STATUS_NOT_FOUND, STATUS_COMPLETED, STATUS_FAILED):
        raise HTTPException(status_code=404, detail="Task not found or not running")
    await core.cancel_task(task_id)
    return {"status": "cancelling", "taskId": task_id}


@router.get("/api/agent/tasks/{task_id}/stream")
async def stream_task(task_id: str, request: Request, cancelOnDisconnect: bool = True,
                      user_id: str = Depends(get_current_user)):
    """Server-sent events for one task, closed after `done` or `error`.

    A task that already finished gets its terminal event straight away.
    A client leaving before the terminal event cancels the task, which also
    ends its pending approval waits. Passive observers such as dashboards
    pass cancelOnDisconnect=false to leave the task running.
    """
    core = get_core()

    async def release(unsubscribe, finished: bool):
        await unsubscribe()
        if cancelOnDisconnect and not finished:
            logger.info("Stream for task %s closed early, cancelling", task_id)
            await core.cancel_task(task_id)

    async def event_stream():
        queue: asyncio.Queue = asyncio.Queue()
        unsubscribe = await core.subscribe_task(task_id, queue.put_nowait)
        finished = False
        try:
            # Subscribed first, so nothing published after this check is missed
            status = await core.get_task_status(task_id)
            if status["status"] == STATUS_NOT_FOUND:
                finished = True
                yield _sse({"type": EventType.ERROR.value, "data": {"message": "Task not found"}})
                return
            if status["status"] == STATUS_COMPLETED:
                finished = True
                yield _sse({"type": EventType.DONE.value, "data": status.get("result") or {}})
                return
            if status["status"] == STATUS_FAILED:
                finished = True
                yield _sse({"type": EventType.ERROR.value, "data": {"message": status.get("error")}})
                return

            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    if await request.is_disconnected():
                        break
                    yield ": keepalive\n\n"
                    continue
                yield _sse(event)
                if event.get("type") in TERMINAL_EVENTS:
                    finished = True
                    break
        finally:
            # A disconnect cancels this generator; the cleanup must still finish
            await asyncio.shield(release(unsubscribe, finished))

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
