"""
Base agent abstraction for the Drive Assistant multi-agent architecture.

Provides AgentContext, ToolCallRecord, AgentLoopResult and BaseAgent, the
tool-calling loop every specialist agent inherits.
"""

import dataclasses
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from config import (
    AGENT_MODEL, AGENT_TOOL_FILTER, DEFAULT_AGENT_TYPE, MAX_TOOL_CALLS_PER_TURN,
    MAX_TOOL_RESULT_CHARS, TEMPERATURE, TOKEN_LIMITS,
)
from core.memory_manager import MemoryManager, MemoryState
from core.resource_lock import needs_lock
from orchestration.events import EmitFn, EventType, emit_event
from tools import ToolResult

logger = logging.getLogger(__name__)

EMPTY_RESPONSE_MESSAGE = "I apologize, but I received an empty response. Please try again."
MAX_ITERATIONS_MESSAGE = (
    "I've reached the maximum number of operations in a single turn. "
    "Please continue with additional instructions."
)
TOOL_EVENT_PREVIEW_CHARS = 500


@dataclass
class AgentContext:
    """Where the user is and what the agent learned about it before the loop."""
    user_id: str
    type: str = DEFAULT_AGENT_TYPE
    folder_id: Optional[str] = None
    file_id: Optional[str] = None
    conversation_id: str = ""
    # Filled by enrich_context
    workspace_snapshot: Optional[str] = None
    folder_path: Optional[str] = None
    document_content: Optional[str] = None
    document_name: Optional[str] = None
    related_context: Optional[str] = None

    def with_type(self, agent_type: str) -> "AgentContext":
        return dataclasses.replace(self, type=agent_type)


@dataclass
class ToolCallRecord:
    tool_name: str
    args: dict
    result: str
    is_error: bool = False
    approval_id: Optional[str] = None

    def to_dict(self) -> dict:
        d = {
            "toolName": self.tool_name,
            "args": self.args,
            "result": self.result,
            "isError": self.is_error,
        }
        if self.approval_id:
            d["approvalId"] = self.approval_id
        return d


@dataclass
class AgentLoopResult:
    content: str
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    # Approval ids the user rejected or let expire during this run
    denied_approvals: list[str] = field(default_factory=list)

    @property
    def only_errors(self) -> bool:
        return bool(self.tool_calls) and all(tc.is_error for tc in self.tool_calls)

    @property
    def approval_denied(self) -> bool:
        return bool(self.denied_approvals)


def truncate_result(text: str, limit: int = MAX_TOOL_RESULT_CHARS) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}\n\n[Truncated: {limit} of {len(text)} chars]"


def _parse_arguments(raw) -> dict:
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw or "{}")
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


class BaseAgent(ABC):
    """Base class for all specialist agents.

    ## Agent Protocol

    Every agent subclass must:
    1. Define an AGENT_ID class attribute (str), one of AGENT_TYPES.
    2. Implement async enrich_context(context) -> AgentContext. Failures
       are logged and the context returned as far as it got.
    3. Implement get_system_prompt(context) -> str.
    4. Decorate the class with @register_agent_class to enable auto-registration.

    The core passed to __init__ provides `inference`, `gateway`, `tools`
    (ToolRegistry) and `resource_lock`.
    """

    AGENT_ID = ""

    # Class-level registry: agent_id -> agent class
    _registry: dict[str, type] = {}

    @classmethod
    def create_all(cls, agent_core) -> dict[str, "BaseAgent"]:
        """Instantiate all registered agent classes, keyed by agent_id."""
        return {aid: acls(agent_core) for aid, acls in cls._registry.items()}

    def __init__(self, agent_core):
        self.agent_id = self.AGENT_ID
        self._core = agent_core

    @property
    def allowed_tools(self) -> list[str]:
        return AGENT_TOOL_FILTER.get(self.agent_id, [])

    # ── Specialization ──

    @abstractmethod
    async def enrich_context(self, context: AgentContext) -> AgentContext:
        ...

    @abstractmethod
    def get_system_prompt(self, context: AgentContext) -> str:
        ...

    async def fetch(self, context: AgentContext, tool_name: str, **args) -> ToolResult:
        """Read-only tool call used for enrichment. Bypasses the gateway."""
        return await self._core.tools.execute(tool_name, args, context.user_id)

    # ── LLM Delegation ──

    def get_tool_schemas(self) -> list[dict]:
        return self._core.tools.schemas_for(self.agent_id)

    async def call_llm(self, messages: list[dict], tools: list[dict] = None) -> dict:
        return await self._core.inference.call_llm(
            AGENT_MODEL, messages,
            tools=tools or None,
            max_tokens=TOKEN_LIMITS[AGENT_MODEL],
            temperature=TEMPERATURE[AGENT_MODEL],
        )

    # ── Tool loop ──

    async def run(self, context: AgentContext, messages: list[dict] = None,
                  memory: MemoryState = None, emit: EmitFn = None,
                  cancel_event=None, step_id: int = None) -> AgentLoopResult:
        """Run the tool-calling loop for one turn.

        Args:
            context: The caller's location; enriched before the prompt is built.
            messages: Extra user/assistant turns appended after the history.
            memory: Conversation memory; when absent only `messages` are sent.
            emit: Event callback for tool and approval events.
            cancel_event: Set when the requester went away; ends approval waits.
            step_id: Plan step this run belongs to, echoed in events.

        Raises:
            LLMProviderError: The model provider answered with a failure.
        """
        context = await self.enrich_context(context)
        system_prompt = self.get_system_prompt(context)

        if memory is not None:
            llm_messages = self._core.memory.assemble_llm_messages(system_prompt, memory)
        else:
            llm_messages = [{"role": "system", "content": system_prompt}]
        for msg in messages or []:
            if msg.get("role") in ("user", "assistant"):
                llm_messages.append({"role": msg["role"], "content": msg.get("content") or ""})

        schemas = self.get_tool_schemas()
        result = AgentLoopResult(content="")

        for _round in range(MAX_TOOL_CALLS_PER_TURN):
            MemoryManager.compress_if_needed(llm_messages)
            response = await self.call_llm(llm_messages, tools=schemas)

            choices = response.get("choices") or []
            if not choices:
                result.content = EMPTY_RESPONSE_MESSAGE
                return result

            msg = choices[0].get("message") or {}
            tool_calls = msg.get("tool_calls") or []
            if not tool_calls:
                result.content = msg.get("content") or "Done."
                return result

            llm_messages.append({
                "role": "assistant",
                "content": msg.get("content") or "",
                "tool_calls": tool_calls,
            })
            for tc in tool_calls:
                fn = tc.get("function") or {}
                record = await self._handle_tool_call(
                    context, fn.get("name", ""), _parse_arguments(fn.get("arguments")),
                    emit, cancel_event, step_id, result,
                )
                llm_messages.append({
                    "role": "tool",
                    "tool_call_id": tc.get("id", ""),
                    "content": record.result,
                })

        logger.warning("%s agent hit the tool-call limit (%d)", self.agent_id, MAX_TOOL_CALLS_PER_TURN)
        result.content = MAX_ITERATIONS_MESSAGE
        return result

    async def _handle_tool_call(self, context: AgentContext, name: str, args: dict,
                                emit: EmitFn, cancel_event, step_id: Optional[int],
                                loop_result: AgentLoopResult) -> ToolCallRecord:
        await emit_event(emit, EventType.TOOL_CALL_START, toolName=name, args=args, stepId=step_id)

        gateway = self._core.gateway
        decision = await gateway.check_tool_permission(
            self.agent_id, name, context.user_id, context.conversation_id, args,
        )
        approval_id = None
        if decision.requires_approval:
            approval_id = decision.approval_id
            tool_result = await self._run_after_approval(
                context, name, args, decision, emit, cancel_event, step_id, loop_result,
            )
        elif not decision.allowed:
            tool_result = ToolResult(f"[BLOCKED] {decision.reason}", True)
        else:
            tool_result = await self.execute_tool(name, args, context.user_id)

        content = truncate_result(tool_result.content)
        record = ToolCallRecord(name, args, content, tool_result.is_error, approval_id)
        loop_result.tool_calls.append(record)

        await emit_event(
            emit, EventType.TOOL_CALL_END,
            toolName=name, result=content[:TOOL_EVENT_PREVIEW_CHARS],
            isError=tool_result.is_error, stepId=step_id,
        )
        return record

    async def _run_after_approval(self, context: AgentContext, name: str, args: dict,
                                  decision, emit: EmitFn, cancel_event, step_id,
                                  loop_result: AgentLoopResult) -> ToolResult:
        approval_id = decision.approval_id
        await emit_event(
            emit, EventType.APPROVAL_NEEDED,
            approvalId=approval_id, toolName=name, args=args,
            reason=decision.reason, risk=decision.risk, stepId=step_id,
        )
        logger.info("Waiting for approval %s (%s)", approval_id, name)

        resolution = await self._core.gateway.wait_for_approval(approval_id, cancel_event)
        await emit_event(
            emit, EventType.APPROVAL_RESOLVED,
            approvalId=approval_id, approved=resolution.approved,
            status=resolution.status, stepId=step_id,
        )

        if not resolution.approved:
            loop_result.denied_approvals.append(approval_id)
            return ToolResult(
                f"[APPROVAL DENIED] The user did not approve {name} ({resolution.status}). "
                "Do not retry this operation.",
                True,
            )

        final_args = resolution.modified_args or args
        result = await self.execute_tool(name, final_args, context.user_id)
        await self._core.gateway.consume_approval(approval_id)
        return result

    async def execute_tool(self, name: str, args: dict, user_id: str) -> ToolResult:
        """Execute an already-permitted call, holding resource locks for writes."""
        tools = self._core.tools
        if not needs_lock(name):
            return await tools.execute(name, args, user_id)
        return await self._core.resource_lock.with_lock(
            name, args, user_id, lambda: tools.execute(name, args, user_id),
        )


def register_agent_class(cls):
    """Decorator to register an agent class for auto-registration.

    Usage:
        @register_agent_class
        class MyAgent(BaseAgent):
            AGENT_ID = "my_agent"
            ...
    """
    agent_id = getattr(cls, "AGENT_ID", None)
    if not agent_id:
        raise ValueError(f"Agent class {cls.__name__} must define AGENT_ID class attribute")
    BaseAgent._registry[agent_id] = cls
    return cls
