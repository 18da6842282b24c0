"""Chat submission endpoint."""

import logging

from fastapi import APIRouter, Depends

from auth import verify_api_key, require_ready, get_core, get_current_user
from models import ChatRequest

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/api/agent/chat", dependencies=[Depends(verify_api_key), Depends(require_ready)])
async def agent_chat(req: ChatRequest, user_id: str = Depends(get_current_user)):
    """Queue a chat request and return its task id.

    Progress is read from /api/agent/tasks/{taskId}/stream. Resubmitting
    the same taskId returns it again without running the request twice.
    """
    core = get_core()
    context = req.context.model_dump(exclude_none=True) if req.context else {}
    task_id, created = await core.enqueue_chat(
        user_id, req.message, req.conversationId, context, req.taskId,
    )
    if not created:
        logger.info("Chat task %s already submitted", task_id)
    return {"taskId": task_id}
