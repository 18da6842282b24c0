"""Approval listing and resolution endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from auth import verify_api_key, get_core, get_current_user
from models import ApprovalDecision

router = APIRouter(dependencies=[Depends(verify_api_key)])


@router.get("/api/agent/approvals")
async def list_pending_approvals(user_id: str = Depends(get_current_user)):
    pending = await get_core().get_pending_approvals(user_id)
    return {"approvals": [a.to_dict() for a in pending]}


@router.post("/api/agent/approvals/{approval_id}")
async def resolve_approval(approval_id: str, req: ApprovalDecision,
                           user_id: str = Depends(get_current_user)):
    request = await get_core().resolve_approval(approval_id, user_id, req.approved, req.modifiedArgs)
    if request is None:
        raise HTTPException(status_code=404, detail="Approval not found or already resolved")
    return {"id": request.id, "status": request.status}
