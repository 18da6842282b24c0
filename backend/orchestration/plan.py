"""
Task plan data model and the advisory progress tracker.

A TaskPlan is a goal plus a handful of steps with declared dependencies.
Execution order comes from those dependencies (see orchestration.orchestrator);
`current_step` only drives the user-facing progress line.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class StepStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATUSES = {StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.SKIPPED}

_STATUS_ICONS = {
    StepStatus.COMPLETED: "✅",
    StepStatus.IN_PROGRESS: "🔄",
    StepStatus.FAILED: "❌",
    StepStatus.SKIPPED: "⏭️",
    StepStatus.PENDING: "⬜",
}


def status_icon(status: StepStatus) -> str:
    return _STATUS_ICONS.get(status, "⬜")


@dataclass
class TaskStep:
    id: int
    title: str
    description: str = ""
    status: StepStatus = StepStatus.PENDING
    agent_type: Optional[str] = None
    dependencies: list[int] = field(default_factory=list)
    result: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "agentType": self.agent_type,
            "dependencies": list(self.dependencies),
            "result": self.result,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "TaskStep":
        return cls(
            id=int(d["id"]),
            title=d.get("title", ""),
            description=d.get("description", ""),
            status=StepStatus(d.get("status", "pending")),
            agent_type=d.get("agentType"),
            dependencies=list(d.get("dependencies") or []),
            result=d.get("result"),
            error=d.get("error"),
        )


@dataclass
class TaskPlan:
    goal: str
    steps: list[TaskStep] = field(default_factory=list)
    current_step: int = 1
    is_complete: bool = False
    summary: Optional[str] = None

    def get_step(self, step_id: int) -> Optional[TaskStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    @property
    def agent_types(self) -> set:
        return {s.agent_type for s in self.steps}

    def to_dict(self) -> dict:
        return {
            "goal": self.goal,
            "steps": [s.to_dict() for s in self.steps],
            "currentStep": self.current_step,
            "isComplete": self.is_complete,
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "TaskPlan":
        return cls(
            goal=d.get("goal", ""),
            steps=[TaskStep.from_dict(s) for s in d.get("steps", [])],
            current_step=d.get("currentStep", 1),
            is_complete=bool(d.get("isComplete", False)),
            summary=d.get("summary"),
        )


class TaskPlanTracker:
    """Pure state transitions over a plan.

    Every method returns a new plan; the input is never mutated. After each
    transition the cursor moves to the first pending step and `is_complete`
    becomes true once no step is left in a non-terminal state.
    """

    @staticmethod
    def refresh(plan: TaskPlan) -> TaskPlan:
        """Recompute the cursor and completion flag in place."""
        next_pending = next((s for s in plan.steps if s.status == StepStatus.PENDING), None)
        if next_pending:
            plan.current_step = next_pending.id
        plan.is_complete = all(s.is_terminal for s in plan.steps)
        return plan

    def _transition(self, plan: TaskPlan, status: StepStatus, result: str = None,
                    error: str = None, advance: bool = True) -> TaskPlan:
        updated = copy.deepcopy(plan)
        step = updated.get_step(plan.current_step)
        if step:
            step.status = status
            if result is not None:
                step.result = result
            if error is not None:
                step.error = error
        if advance:
            self.refresh(updated)
        return updated

    def start_current_step(self, plan: TaskPlan) -> TaskPlan:
        return self._transition(plan, StepStatus.IN_PROGRESS, advance=False)

    def complete_current_step(self, plan: TaskPlan, result: str = None) -> TaskPlan:
        return self._transition(plan, StepStatus.COMPLETED, result=result)

    def fail_current_step(self, plan: TaskPlan, error: str) -> TaskPlan:
        return self._transition(plan, StepStatus.FAILED, error=error)

    def skip_current_step(self, plan: TaskPlan, reason: str = None) -> TaskPlan:
        return self._transition(plan, StepStatus.SKIPPED, result=reason or "Skipped")

    def get_progress_summary(self, plan: TaskPlan) -> str:
        completed = sum(1 for s in plan.steps if s.status == StepStatus.COMPLETED)
        failed = sum(1 for s in plan.steps if s.status == StepStatus.FAILED)

        parts = [f"Progress: {completed}/{len(plan.steps)} completed"]
        if failed:
            parts.append(f"{failed} failed")

        if plan.is_complete:
            parts.append("· Plan complete!")
        else:
            current = plan.get_step(plan.current_step)
            if current:
                parts.append(f"· Current: {current.title}")
        return " ".join(parts)

    def format_plan_for_user(self, plan: TaskPlan) -> str:
        lines = [f"📋 **Task Plan**: {plan.goal}", ""]
        for step in plan.steps:
            line = f"{status_icon(step.status)} **Step {step.id}**: {step.title}"
            if step.status == StepStatus.COMPLETED and step.result:
                line += f"\n   _{step.result[:120]}_"
            if step.status == StepStatus.FAILED and step.error:
                line += f"\n   ⚠️ _{step.error[:120]}_"
            lines.append(line)
        lines.append("")
        lines.append(self.get_progress_summary(plan))
        return "\n".join(lines)
