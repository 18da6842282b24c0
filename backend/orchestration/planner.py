"""
TaskPlanner: decides whether a request needs decomposition and builds the plan.

Decision flow:
  1. Short or obviously single-action messages are never planned
  2. Multi-step cues (sequencing, batch, conditional) plan once
     TASK_COMPLEXITY_THRESHOLD of them match
  3. Otherwise the planner model classifies complexity; any failure means
     "no plan", so a broken classifier never blocks the user
"""

import json
import logging
import re
from typing import Optional

from agents.prompts import CLASSIFIER_PROMPT, PLANNER_PROMPT
from config import (
    AGENT_TYPES, MAX_PLAN_STEPS, PLANNER_MODEL, TASK_COMPLEXITY_THRESHOLD,
    TEMPERATURE, TOKEN_LIMITS,
)
from orchestration.plan import StepStatus, TaskPlan, TaskStep

logger = logging.getLogger(__name__)

MIN_PLANNABLE_LENGTH = 15

MULTI_STEP_PATTERNS = [
    # Sequencing
    re.compile(r"\b(first|then|after that|next|finally|lastly|and then)\b", re.I),
    re.compile(r"(先|然后|接着|最后|之后|再|并且|同时)"),
    # Several operations in one request
    re.compile(r"\b(and|also|plus|as well as|in addition|additionally)\b.*"
               r"\b(create|delete|move|rename|share|edit|write|search|find|index)", re.I),
    re.compile(r"(所有|全部|每个|批量|一起)"),
    # Batch
    re.compile(r"\b(all|every|each|batch|multiple|several)\s+(files?|folders?|documents?)\b", re.I),
    # Conditional
    re.compile(r"\b(if|when|unless|in case)\b.*\b(then|otherwise|else)\b", re.I),
    re.compile(r"(如果|要是|假如).*(就|那么|否则)"),
]

SIMPLE_REQUEST_PATTERNS = [
    re.compile(r"^(list|show|display)\s+(my\s+)?(files?|folders?|contents?|starred|trashed|recent)\s*$", re.I),
    re.compile(r"^(create|make|new)\s+(a\s+)?(file|folder|directory)\s+", re.I),
    re.compile(r"^(delete|rename|move|star|trash|restore)\s+", re.I),
    re.compile(r"^(search|find)\s+(for\s+)?[\w.\-]+\s*$", re.I),
    re.compile(r"^(who\s*am\s*i|get\s+status|help)\s*$", re.I),
    re.compile(r"^(列出|显示|查看)(文件|文件夹|目录|收藏|回收站)\s*$"),
]

_JSON_OBJECT = re.compile(r"\{.*\}", re.S)


def is_simple_request(message: str) -> bool:
    trimmed = message.strip()
    if len(trimmed) < MIN_PLANNABLE_LENGTH:
        return True
    return any(p.search(trimmed) for p in SIMPLE_REQUEST_PATTERNS)


def count_multi_step_cues(message: str) -> int:
    return sum(1 for p in MULTI_STEP_PATTERNS if p.search(message))


def needs_task_planning(message: str, threshold: int = TASK_COMPLEXITY_THRESHOLD) -> bool:
    return count_multi_step_cues(message) >= threshold


def _extract_json(content: str) -> Optional[dict]:
    match = _JSON_OBJECT.search(content or "")
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _parse_dependencies(raw) -> list[int]:
    if not isinstance(raw, list):
        return []
    deps = []
    for dep in raw:
        try:
            deps.append(int(dep))
        except (TypeError, ValueError):
            continue
    return deps


def parse_plan(data: dict) -> Optional[TaskPlan]:
    """Validate a planner answer. Zero usable steps means no plan."""
    raw_steps = data.get("steps")
    if not isinstance(raw_steps, list) or not raw_steps:
        return None

    steps = []
    for raw in raw_steps[:MAX_PLAN_STEPS]:
        if not isinstance(raw, dict):
            continue
        agent_type = raw.get("agentType")
        steps.append(TaskStep(
            id=len(steps) + 1,
            title=str(raw.get("title") or f"Step {len(steps) + 1}"),
            description=str(raw.get("description") or ""),
            status=StepStatus.PENDING,
            agent_type=agent_type if agent_type in AGENT_TYPES else None,
            dependencies=_parse_dependencies(raw.get("dependencies")),
        ))
    if not steps:
        return None

    return TaskPlan(goal=str(data.get("goal") or ""), steps=steps)


class TaskPlanner:
    def __init__(self, inference, threshold: int = TASK_COMPLEXITY_THRESHOLD):
        self.inference = inference
        self.threshold = threshold

    async def _ask(self, system_prompt: str, user_content: str, context_hint: str,
                   max_tokens: int, temperature: float) -> Optional[dict]:
        messages = [{"role": "system", "content": system_prompt}]
        if context_hint:
            messages.append({"role": "system", "content": f"Current context:\n{context_hint}"})
        messages.append({"role": "user", "content": user_content})

        result = await self.inference.call_llm(
            PLANNER_MODEL, messages, max_tokens=max_tokens, temperature=temperature,
        )
        content = (result.get("choices") or [{}])[0].get("message", {}).get("content") or ""
        return _extract_json(content.strip())

    async def classify_complexity(self, message: str, context_hint: str = None) -> bool:
        """Ask the model whether a request needs a plan. Failures answer False."""
        try:
            parsed = await self._ask(
                CLASSIFIER_PROMPT, f'Classify this request:\n"{message}"', context_hint,
                TOKEN_LIMITS["classifier"], TEMPERATURE["classifier"],
            )
        except Exception as e:
            logger.warning("Complexity classifier failed, defaulting to no plan: %s", e)
            return False
        if not parsed:
            return False
        logger.debug("Complexity classification: needs_plan=%s (%s)",
                     parsed.get("needs_plan"), parsed.get("reason"))
        return parsed.get("needs_plan") is True

    async def should_plan_task(self, message: str, context_hint: str = None) -> bool:
        if is_simple_request(message):
            logger.debug("Simple request, skipping task planning")
            return False
        if needs_task_planning(message, self.threshold):
            logger.debug("Multi-step cues matched")
            return True
        return await self.classify_complexity(message, context_hint)

    async def generate_task_plan(self, message: str, context_hint: str = None) -> Optional[TaskPlan]:
        """Decompose a request into steps. Unusable answers return None."""
        try:
            parsed = await self._ask(
                PLANNER_PROMPT, f'Break down this request into steps:\n"{message}"', context_hint,
                TOKEN_LIMITS[PLANNER_MODEL], TEMPERATURE[PLANNER_MODEL],
            )
        except Exception as e:
            logger.warning("Task plan generation failed: %s", e)
            return None
        if not parsed:
            return None

        plan = parse_plan(parsed)
        if plan:
            logger.info("Task plan generated: %s (%d steps)", plan.goal, len(plan.steps))
        return plan
