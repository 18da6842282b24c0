"""
Main chat pipeline: the worker's processing function for one chat task.
Mixed into AgentCore, which provides conversations, memory, planner,
router and the agent table.
"""

import asyncio
import logging
from typing import Optional

from agents.base import AgentContext
from agents.registry import get_agent
from config import AGENT_TYPES
from core.memory_manager import MemoryManager, MemoryState
from orchestration.events import EmitFn, EventType, emit_event
from orchestration.orchestrator import TaskOrchestrator

logger = logging.getLogger(__name__)


def _planning_hint(memory_context: Optional[str], context: dict) -> Optional[str]:
    parts = []
    if memory_context:
        parts.append(memory_context)
    if context.get("fileId"):
        parts.append(f"currentFileId: {context['fileId']}")
    if context.get("folderId"):
        parts.append(f"currentFolderId: {context['folderId']}")
    return "\n".join(parts) if parts else None


class _ChatPipelineMixin:
    """Mixin providing process_chat_task() for AgentCore."""

    async def process_chat_task(self, record: dict, emit: EmitFn,
                                cancel_event: asyncio.Event = None) -> dict:
        """Handle one queued chat request end to end.

        Flow:
          1. Load or create the conversation, store the user message
          2. Build memory (summaries + sliding window), persist new summaries
          3. Planner decides on decomposition
          4. Plan -> DAG orchestrator; no plan -> routed single agent
          5. Store the reply, plan snapshot and agent type; emit content
        """
        user_id = record["userId"]
        message = record["message"]
        ctx = record.get("context") or {}
        explicit_type = ctx.get("type") if ctx.get("type") in AGENT_TYPES else None

        conv = self.conversations.get_or_create(record.get("conversationId"), user_id, explicit_type)
        self.conversations.append_message(conv.id, "user", message)

        history = self.conversations.load_messages(conv.id)
        summaries = self.conversations.load_summaries(conv.id)
        active_plan = conv.plan if conv.plan and not conv.plan.is_complete else None
        memory: MemoryState = await self.memory.build_memory_state(history, summaries, active_plan)
        self.conversations.save_summaries(conv.id, memory.new_summaries)

        base_context = AgentContext(
            user_id=user_id,
            type=explicit_type or conv.agent_type,
            folder_id=ctx.get("folderId"),
            file_id=ctx.get("fileId"),
            conversation_id=conv.id,
        )

        hint = _planning_hint(MemoryManager.get_router_context(memory), ctx)
        plan = None
        if await self.planner.should_plan_task(message, hint):
            plan = await self.planner.generate_task_plan(message, hint)

        if plan:
            for step in plan.steps:
                step.agent_type = step.agent_type or base_context.type
            await emit_event(emit, EventType.TASK_PLAN, plan=plan.to_dict())

            orchestrator = TaskOrchestrator(self.agents)
            outcome = await orchestrator.execute_plan(plan, base_context, memory, emit, cancel_event)
            content, tool_calls, success = outcome.content, outcome.tool_calls, outcome.success
            if orchestrator.needs_orchestration(plan):
                agent_type = base_context.type
            else:
                # One step on one agent: the conversation continues with that agent
                agent_type = plan.steps[0].agent_type
                logger.debug("Single-step plan ran on the %s agent", agent_type)
            plan = outcome.plan
            self.conversations.save_plan(conv.id, plan)
        else:
            decision = self.router.route_to_agent(
                message, explicit_type,
                None if conv.created else conv.agent_type,
            )
            await emit_event(emit, EventType.ROUTE_DECISION, **decision.to_dict())
            agent_type = decision.agent_type
            agent = get_agent(self.agents, agent_type)
            if agent is None:
                raise RuntimeError(f"No agent for type: {agent_type}")
            result = await agent.run(base_context.with_type(agent_type), memory=memory,
                                     emit=emit, cancel_event=cancel_event)
            content, tool_calls, success = result.content, result.tool_calls, True

        tool_call_dicts = [tc.to_dict() for tc in tool_calls]
        self.conversations.append_message(conv.id, "assistant", content, tool_call_dicts)
        self.conversations.set_agent_type(conv.id, agent_type)

        await emit_event(emit, EventType.CONTENT, content=content, conversationId=conv.id)
        logger.info("Chat task done for conversation %s (%s agent, %d tool calls)",
                    conv.id, agent_type, len(tool_calls))

        return {
            "conversationId": conv.id,
            "agentType": agent_type,
            "content": content,
            "success": success,
            "toolCalls": tool_call_dicts,
            "plan": plan.to_dict() if plan else None,
        }
