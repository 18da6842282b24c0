"""
MemoryManager: bounded context for long conversations.

  - Sliding window: the newest MEMORY_SLIDING_WINDOW messages stay verbatim
  - Summaries: older messages are summarized by the model, in contiguous ranges
  - Assembly: system prompt + summaries + active plan + window, in that order
  - Compression: a last-resort character budget applied before every model call
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from config import (
    KEEP_RECENT, MAX_CONTEXT_CHARS, MEMORY_SLIDING_WINDOW,
    MEMORY_SUMMARY_THRESHOLD, SUMMARIZER_MODEL, TEMPERATURE, TOKEN_LIMITS,
)
from orchestration.plan import TaskPlan, status_icon

logger = logging.getLogger(__name__)

SUMMARY_PROMPT = """You are a conversation summarizer. Given a series of messages from a chat between a user and an AI assistant for a cloud drive platform, create a concise summary that captures:
1. Key user intents and requests
2. Important actions taken (files created, moved, edited, etc.)
3. Any decisions made or preferences expressed
4. Current context (what file/folder the user is working with)

Rules:
- Be concise but preserve critical details
- Include specific file/folder names, IDs, or paths that were discussed
- Preserve any unresolved requests or pending actions
- Output the summary in the same language as the conversation
- Maximum 300 words"""

TOOL_SHRINK_THRESHOLD = 200
TOOL_SHRINK_KEEP = 150


@dataclass
class ConversationSummary:
    summary: str
    range_from: int
    range_to: int  # exclusive
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "summary": self.summary,
            "messageRange": {"from": self.range_from, "to": self.range_to},
            "createdAt": self.created_at,
        }


@dataclass
class MemoryState:
    summaries: list[ConversationSummary]
    recent_messages: list[dict]
    active_plan: Optional[TaskPlan] = None
    total_message_count: int = 0
    # Summaries created by this build, for the caller to persist
    new_summaries: list[ConversationSummary] = field(default_factory=list)


def _format_for_summary(messages: list[dict]) -> str:
    lines = []
    for m in messages:
        text = f"[{m.get('role')}]: {m.get('content') or ''}"
        tools = [t.get("toolName") or t.get("name", "") for t in (m.get("tool_calls") or [])]
        if tools:
            text += f"\n  (Tools used: {', '.join(tools)})"
        lines.append(text)
    return "\n".join(lines)


def estimate_chars(messages: list[dict]) -> int:
    total = 0
    for msg in messages:
        total += len(msg.get("content") or "")
        for tc in msg.get("tool_calls") or []:
            fn = tc.get("function", {})
            total += len(fn.get("arguments") or "") + len(fn.get("name") or "")
    return total


class MemoryManager:
    def __init__(self, inference, sliding_window: int = MEMORY_SLIDING_WINDOW,
                 summary_threshold: int = MEMORY_SUMMARY_THRESHOLD):
        self.inference = inference
        self.sliding_window = sliding_window
        self.summary_threshold = summary_threshold

    async def generate_summary(self, messages: list[dict]) -> Optional[str]:
        """Summarize a slice of the log. Any failure returns None."""
        try:
            result = await self.inference.call_llm(
                SUMMARIZER_MODEL,
                messages=[
                    {"role": "system", "content": SUMMARY_PROMPT},
                    {"role": "user",
                     "content": f"Summarize this conversation:\n\n{_format_for_summary(messages)}"},
                ],
                max_tokens=TOKEN_LIMITS[SUMMARIZER_MODEL],
                temperature=TEMPERATURE[SUMMARIZER_MODEL],
            )
            content = result["choices"][0]["message"].get("content") or ""
            return content.strip() or None
        except Exception as e:
            logger.warning("Summary generation failed: %s", e)
            return None

    async def build_memory_state(self, messages: list[dict],
                                 existing_summaries: list[ConversationSummary] = None,
                                 active_plan: TaskPlan = None) -> MemoryState:
        summaries = list(existing_summaries or [])
        total = len(messages)

        if total <= self.summary_threshold:
            return MemoryState(summaries, list(messages), active_plan, total)

        cutoff = total - self.sliding_window
        covered = summaries[-1].range_to if summaries else 0
        new_summaries = []

        if covered < cutoff:
            text = await self.generate_summary(messages[covered:cutoff])
            if text:
                summary = ConversationSummary(text, covered, cutoff)
                summaries.append(summary)
                new_summaries.append(summary)
                logger.info("Generated conversation summary for msgs %d-%d (%d chars)",
                            covered, cutoff, len(text))

        return MemoryState(summaries, messages[cutoff:], active_plan, total, new_summaries)

    # ── Assembly ──

    @staticmethod
    def format_task_plan(plan: TaskPlan) -> str:
        lines = [
            f"**Goal**: {plan.goal}",
            f"**Progress**: Step {plan.current_step} of {len(plan.steps)}",
            "",
        ]
        for step in plan.steps:
            line = f"{status_icon(step.status)} Step {step.id}: {step.title}"
            if step.result:
                line += f": {step.result[:80]}"
            if step.error:
                line += f" (Error: {step.error[:80]})"
            lines.append(line)
        if plan.summary:
            lines += ["", f"**Summary so far**: {plan.summary}"]
        return "\n".join(lines)

    def assemble_llm_messages(self, system_prompt: str, state: MemoryState) -> list[dict]:
        messages = [{"role": "system", "content": system_prompt}]

        if state.summaries:
            block = "\n\n".join(
                f"[Summary {i} (msgs {s.range_from}-{s.range_to})]: {s.summary}"
                for i, s in enumerate(state.summaries, 1)
            )
            messages.append({
                "role": "system",
                "content": "## Conversation History Summary\n"
                           "The following is a summary of earlier messages in this conversation:\n\n"
                           f"{block}\n\n---\nRecent messages follow below.",
            })

        if state.active_plan and not state.active_plan.is_complete:
            messages.append({
                "role": "system",
                "content": f"## Active Task Plan\n{self.format_task_plan(state.active_plan)}",
            })

        for msg in state.recent_messages:
            if msg.get("role") in ("user", "assistant"):
                messages.append({"role": msg["role"], "content": msg.get("content") or ""})

        return self.compress_if_needed(messages)

    @staticmethod
    def get_router_context(state: MemoryState) -> Optional[str]:
        """Short context for routing and planning decisions."""
        parts = []
        if state.summaries:
            parts.append(f"Previous context: {state.summaries[-1].summary[:200]}")
        recent_user = [(m.get("content") or "")[:100]
                       for m in state.recent_messages if m.get("role") == "user"][-3:]
        if recent_user:
            parts.append(f"Recent user messages: {' | '.join(recent_user)}")
        return "\n".join(parts) if parts else None

    # ── Compression ──

    @staticmethod
    def compress_if_needed(messages: list[dict], max_chars: int = MAX_CONTEXT_CHARS) -> list[dict]:
        """Shrink in place until the budget holds.

        Old tool results are cut to a marker first; then the oldest
        non-system messages are evicted. The newest KEEP_RECENT messages are
        never modified.
        """
        total = estimate_chars(messages)
        if total <= max_chars:
            return messages

        logger.info("Compressing context: %d chars (limit %d)", total, max_chars)
        shrink_bound = max(1, len(messages) - KEEP_RECENT)
        for i in range(1, shrink_bound):
            if total <= max_chars:
                break
            msg = messages[i]
            content = msg.get("content") or ""
            if msg.get("role") == "tool" and len(content) > TOOL_SHRINK_THRESHOLD:
                msg["content"] = (content[:TOOL_SHRINK_KEEP]
                                  + f"\n[...compressed, original {len(content)} chars]")
                total -= len(content) - len(msg["content"])

        while total > max_chars:
            protected_from = len(messages) - KEEP_RECENT
            idx = next((i for i in range(protected_from)
                        if messages[i].get("role") != "system"), None)
            if idx is None:
                break
            # An assistant turn leaves together with its tool results
            end = idx + 1
            if messages[idx].get("tool_calls"):
                while end < len(messages) and messages[end].get("role") == "tool":
                    end += 1
                # Its results reach into the recent tail, and so does everything after it
                if end > protected_from:
                    break
            removed = messages[idx:end]
            del messages[idx:end]
            total -= estimate_chars(removed)

        logger.info("Context compressed to %d chars across %d messages", total, len(messages))
        return messages
