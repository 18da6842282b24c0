"""
AgentCore: owns every long-lived component of the assistant and exposes the
operations the HTTP layer needs (enqueue, status, subscribe, approvals).

One AgentCore runs per process. Processes share work only through Redis:
the task queue, the event bus, approvals and rate windows all live there.
"""

import logging
import time
import uuid
from typing import Optional

import agents  # noqa: F401  (registers agent classes)
from agents.registry import AgentRouter, build_agent_table
from conversations import ConversationStore
from core.approvals import ApprovalRequest, ApprovalStore
from core.chat_pipeline import _ChatPipelineMixin
from core.gateway import CapabilityGateway
from core.memory_manager import MemoryManager
from core.rate_limit import RateLimiter
from core.resource_lock import ResourceLock
from inference import get_router
from orchestration.event_bus import EventBus
from orchestration.planner import TaskPlanner
from orchestration.task_queue import TaskQueue
from redis_store import create_redis_client
from tools import ToolRegistry

logger = logging.getLogger(__name__)


class AgentCore(_ChatPipelineMixin):
    def __init__(self, redis_client=None, inference=None, tools: ToolRegistry = None,
                 conversations: ConversationStore = None):
        self.redis = redis_client if redis_client is not None else create_redis_client()
        # Inference router (multi-backend)
        self.inference = inference if inference is not None else get_router()
        self.tools = tools if tools is not None else ToolRegistry()
        self.conversations = conversations if conversations is not None else ConversationStore()
        # Shared-store components
        self.bus = EventBus(self.redis)
        self.queue = TaskQueue(self.redis, self.bus)
        self.approvals = ApprovalStore(self.redis, self.bus)
        self.rate_limiter = RateLimiter(self.redis)
        self.gateway = CapabilityGateway(self.approvals, self.rate_limiter)
        self.resource_lock = ResourceLock(self.redis)
        # Planning and memory
        self.memory = MemoryManager(self.inference)
        self.planner = TaskPlanner(self.inference)
        self.router = AgentRouter()
        # Agent table: agent type -> agent
        self.agents = build_agent_table(self)
        self._ready = False
        self._startup_time: Optional[float] = None

    # ── Startup / Shutdown ──

    async def start(self):
        """Start the approval sweeper and this process's worker pool."""
        self._startup_time = time.time()
        self.gateway.start()
        await self.queue.start(self.process_chat_task)
        self._ready = True
        logger.info("Core ready (%d agents: %s)", len(self.agents), ", ".join(sorted(self.agents)))

    async def shutdown(self):
        """Clean shutdown: stop workers, stop the sweeper, close subscriptions."""
        self._ready = False
        await self.queue.stop()
        await self.gateway.stop()
        await self.bus.close()
        try:
            await self.redis.aclose()
        except Exception as e:
            logger.warning("Error closing Redis connection: %s", e)

    @property
    def ready(self) -> bool:
        return self._ready

    # ── Tasks ──

    async def enqueue_chat(self, user_id: str, message: str, conversation_id: str = None,
                           context: dict = None, task_id: str = None) -> tuple[str, bool]:
        """Queue a chat request. A repeated task_id is not executed twice."""
        return await self.queue.enqueue({
            "taskId": task_id or str(uuid.uuid4()),
            "userId": user_id,
            "message": message,
            "conversationId": conversation_id,
            "context": context or {},
        })

    async def get_task_status(self, task_id: str) -> dict:
        return await self.queue.get_status(task_id)

    async def get_active_tasks(self, user_id: str) -> list[dict]:
        return await self.queue.get_active_tasks(user_id)

    async def subscribe_task(self, task_id: str, handler):
        """Returns the unsubscribe coroutine function."""
        return await self.queue.subscribe(task_id, handler)

    async def cancel_task(self, task_id: str):
        await self.queue.request_cancel(task_id)

    # ── Approvals ──

    async def resolve_approval(self, approval_id: str, user_id: str, approved: bool,
                               modified_args: dict = None) -> Optional[ApprovalRequest]:
        return await self.gateway.resolve_approval(approval_id, user_id, approved, modified_args)

    async def get_pending_approvals(self, user_id: str) -> list[ApprovalRequest]:
        return await self.gateway.get_pending_approvals(user_id)

    # ── Status ──

    async def get_status(self) -> dict:
        try:
            redis_ok = bool(await self.redis.ping())
        except Exception as e:
            logger.warning("Redis ping failed: %s", e)
            redis_ok = False
        return {
            "ready": self._ready,
            "redis": redis_ok,
            "workers": self.queue.worker_count,
            "agents": sorted(self.agents),
            "uptime_seconds": round(time.time() - self._startup_time, 1) if self._startup_time else 0,
        }
