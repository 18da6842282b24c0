"""
TaskOrchestrator: executes a TaskPlan as a dependency DAG.

Each round collects every pending step whose dependencies are all terminal
(completed or failed) and runs that wave concurrently, each step on the agent
named by its agent type. A failed dependency still unblocks its dependents;
they run without its output. Steps that never become ready (cycles, unknown
dependency ids) are marked skipped, so execution always terminates.

The plan's current_step cursor is refreshed for progress text only; it is
never read for scheduling.
"""

import asyncio
import copy
import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Optional

from agents.base import AgentContext, AgentLoopResult, BaseAgent, ToolCallRecord
from agents.prompts import build_step_instruction
from agents.registry import get_agent
from config import MAX_TOOL_RETRIES
from core.memory_manager import MemoryState
from orchestration.events import EmitFn, EventType, emit_event
from orchestration.plan import StepStatus, TaskPlan, TaskPlanTracker, TaskStep

logger = logging.getLogger(__name__)

UNREACHABLE_REASON = "Skipped: unreachable, its dependencies never completed"
STEP_RESULT_CHARS = 200
PREVIOUS_RESULT_CHARS = 300


@dataclass
class StepResult:
    step_id: int
    title: str
    success: bool
    content: str = ""
    error: Optional[str] = None
    tool_calls: list[ToolCallRecord] = field(default_factory=list)


@dataclass
class OrchestratorResult:
    content: str
    plan: TaskPlan
    tool_calls: list[ToolCallRecord]
    step_results: list[StepResult]

    @property
    def success(self) -> bool:
        return any(r.success for r in self.step_results)


class TaskOrchestrator:
    def __init__(self, agents: dict[str, BaseAgent], max_retries: int = MAX_TOOL_RETRIES):
        self.agents = agents
        self.max_retries = max_retries
        self.tracker = TaskPlanTracker()

    @staticmethod
    def needs_orchestration(plan: TaskPlan) -> bool:
        types = {s.agent_type for s in plan.steps if s.agent_type}
        return len(types) > 1 or len(plan.steps) > 1

    async def execute_plan(self, plan: TaskPlan, base_context: AgentContext,
                           memory: MemoryState = None, emit: EmitFn = None,
                           cancel_event: asyncio.Event = None) -> OrchestratorResult:
        plan = copy.deepcopy(plan)
        completed = {s.id for s in plan.steps if s.status == StepStatus.COMPLETED}
        failed = {s.id for s in plan.steps if s.status == StepStatus.FAILED}
        step_results: list[StepResult] = []
        all_tool_calls: list[ToolCallRecord] = []

        logger.info("Executing plan '%s' (%d steps, agents: %s)", plan.goal, len(plan.steps),
                    ", ".join(sorted(t for t in plan.agent_types if t)) or "default")

        wave_index = 0
        while True:
            terminal = completed | failed
            ready = [s for s in plan.steps
                     if s.status == StepStatus.PENDING
                     and all(dep in terminal for dep in s.dependencies)]
            if not ready:
                break

            logger.info("Wave %d: steps %s", wave_index, [s.id for s in ready])
            await emit_event(emit, EventType.PARALLEL_BATCH,
                             stepIds=[s.id for s in ready], batchIndex=wave_index)

            # Every step in the wave sees the same finished results
            previous = list(step_results)
            results = await asyncio.gather(*(
                self.execute_step(step, plan, base_context, previous, memory, emit, cancel_event)
                for step in ready
            ))

            for result in results:
                step = plan.get_step(result.step_id)
                if result.success:
                    step.status = StepStatus.COMPLETED
                    step.result = result.content[:STEP_RESULT_CHARS]
                    completed.add(step.id)
                    await emit_event(emit, EventType.TASK_STEP_UPDATE, stepId=step.id,
                                     status=step.status.value, result=step.result)
                else:
                    step.status = StepStatus.FAILED
                    step.error = result.error
                    failed.add(step.id)
                    await emit_event(emit, EventType.TASK_STEP_UPDATE, stepId=step.id,
                                     status=step.status.value, error=step.error)
                all_tool_calls.extend(result.tool_calls)
                step_results.append(result)

            TaskPlanTracker.refresh(plan)
            wave_index += 1

        for step in plan.steps:
            if step.status == StepStatus.PENDING:
                step.status = StepStatus.SKIPPED
                step.error = UNREACHABLE_REASON
                logger.info("Step %d unreachable (dependencies %s)", step.id, step.dependencies)
                await emit_event(emit, EventType.TASK_STEP_UPDATE, stepId=step.id,
                                 status=step.status.value, error=step.error)
        TaskPlanTracker.refresh(plan)
        plan.is_complete = True

        return OrchestratorResult(
            content=self.build_final_response(plan, step_results),
            plan=plan,
            tool_calls=all_tool_calls,
            step_results=step_results,
        )

    async def execute_step(self, step: TaskStep, plan: TaskPlan, base_context: AgentContext,
                           previous: list[StepResult], memory: MemoryState = None,
                           emit: EmitFn = None, cancel_event: asyncio.Event = None) -> StepResult:
        agent_type = step.agent_type or base_context.type
        agent = get_agent(self.agents, agent_type)
        if agent is None:
            return StepResult(step.id, step.title, False, error=f"No agent for type: {agent_type}")

        step.status = StepStatus.IN_PROGRESS
        await emit_event(emit, EventType.TASK_STEP_UPDATE, stepId=step.id,
                         status=step.status.value, title=step.title)

        context = base_context.with_type(agent_type)
        step_memory = dataclasses.replace(memory, active_plan=plan) if memory else None
        messages = self.build_step_messages(step, plan, previous)
        tool_calls: list[ToolCallRecord] = []
        last_error = ""
        attempts = self.max_retries + 1

        for attempt in range(attempts):
            attempt_messages = messages
            if attempt > 0:
                attempt_messages = messages + [{
                    "role": "user",
                    "content": f"Previous attempt failed: {last_error}. Please retry with a "
                               f"different approach. Attempt {attempt + 1} of {attempts}.",
                }]
            try:
                result: AgentLoopResult = await agent.run(
                    context, attempt_messages, memory=step_memory, emit=emit,
                    cancel_event=cancel_event, step_id=step.id,
                )
            except Exception as e:
                last_error = str(e) or e.__class__.__name__
                logger.error("Step %d attempt %d raised: %s", step.id, attempt + 1, last_error)
                continue

            tool_calls.extend(result.tool_calls)
            if result.approval_denied:
                # A human said no; retrying would only ask again
                logger.info("Step %d stopped: approval denied", step.id)
                return StepResult(step.id, step.title, False, result.content,
                                  error="Approval denied for a required operation",
                                  tool_calls=tool_calls)

            if result.only_errors:
                last_error = "; ".join(tc.result or "Unknown error" for tc in result.tool_calls)
                logger.warning("Step %d attempt %d had only tool errors: %s",
                               step.id, attempt + 1, last_error[:200])
                continue

            logger.info("Step %d completed (%d tool calls, %d attempts)",
                        step.id, len(result.tool_calls), attempt + 1)
            return StepResult(step.id, step.title, True, result.content, tool_calls=tool_calls)

        return StepResult(step.id, step.title, False,
                          error=f"Failed after {attempts} attempts: {last_error}",
                          tool_calls=tool_calls)

    @staticmethod
    def build_step_messages(step: TaskStep, plan: TaskPlan,
                            previous: list[StepResult]) -> list[dict]:
        messages = []
        if previous:
            parts = []
            for r in previous:
                if r.success:
                    parts.append(f"[Step {r.step_id}] ✅ {r.title}: {r.content[:PREVIOUS_RESULT_CHARS]}")
                else:
                    parts.append(f"[Step {r.step_id}] ❌ {r.title}: {r.error or 'Failed'}")
            messages.append({
                "role": "assistant",
                "content": "I've completed the following steps so far:\n\n" + "\n\n".join(parts),
            })
        messages.append({"role": "user", "content": build_step_instruction(step, plan)})
        return messages

    def build_final_response(self, plan: TaskPlan, step_results: list[StepResult]) -> str:
        parts = []
        last_success = next((r for r in reversed(step_results) if r.success), None)
        if last_success:
            parts.append(last_success.content)
        elif step_results:
            parts.append("I encountered errors while executing the task plan. Here's what happened:")
            for r in step_results:
                if not r.success:
                    parts.append(f"- Step {r.step_id} ({r.title}): {r.error or 'Unknown error'}")

        parts += ["", "---", self.tracker.format_plan_for_user(plan)]
        return "\n".join(parts)
