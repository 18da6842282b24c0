"""
Pydantic request models shared across route modules.
"""

from typing import Optional
from pydantic import BaseModel, Field


class ChatContext(BaseModel):
    type: Optional[str] = None
    folderId: Optional[str] = None
    fileId: Optional[str] = None


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=10_000)
    conversationId: Optional[str] = None
    context: Optional[ChatContext] = None
    taskId: Optional[str] = Field(default=None, max_length=128)


class ApprovalDecision(BaseModel):
    approved: bool
    modifiedArgs: Optional[dict] = None
