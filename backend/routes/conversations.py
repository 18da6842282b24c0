"""Conversation listing, detail and deletion, scoped to the calling user."""

from fastapi import APIRouter, Depends, HTTPException

from auth import verify_api_key, get_core, get_current_user

router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.get("/api/agent/conversations")
def list_conversations(user_id: str = Depends(get_current_user)):
    return {"conversations": get_core().conversations.list_for_user(user_id)}


@router.get("/api/agent/conversations/{conversation_id}")
def get_conversation(conversation_id: str, user_id: str = Depends(get_current_user)):
    store = get_core().conversations
    conv = store.get(conversation_id, user_id)
    if not conv:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {
        "id": conv.id,
        "agentType": conv.agent_type,
        "plan": conv.plan.to_dict() if conv.plan else None,
        "messages": store.load_messages(conv.id),
    }


@router.delete("/api/agent/conversations/{conversation_id}")
def delete_conversation(conversation_id: str, user_id: str = Depends(get_current_user)):
    if not get_core().conversations.delete(conversation_id, user_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"status": "deleted", "id": conversation_id}
