"""
Tests for conversation memory: summaries, sliding window, assembly and
context compression.
"""

import pytest
from unittest.mock import AsyncMock


def _log(n):
    return [{"role": "user" if i % 2 == 0 else "assistant", "content": f"message {i}"}
            for i in range(n)]


def _manager(summary="summary text"):
    from core.memory_manager import MemoryManager
    inference = AsyncMock()
    inference.call_llm.return_value = {"choices": [{"message": {"content": summary}}]}
    return MemoryManager(inference, sliding_window=10, summary_threshold=16), inference


class TestBuildMemoryState:

    @pytest.mark.asyncio
    async def test_short_log_kept_verbatim(self):
        manager, inference = _manager()
        state = await manager.build_memory_state(_log(16))
        assert len(state.recent_messages) == 16
        assert state.summaries == []
        inference.call_llm.assert_not_called()

    @pytest.mark.asyncio
    async def test_long_log_summarizes_prefix(self):
        manager, _ = _manager()
        state = await manager.build_memory_state(_log(20))

        assert len(state.recent_messages) == 10
        assert state.recent_messages[0]["content"] == "message 10"
        assert len(state.summaries) == 1
        assert (state.summaries[0].range_from, state.summaries[0].range_to) == (0, 10)
        assert state.new_summaries == state.summaries
        assert state.total_message_count == 20

    @pytest.mark.asyncio
    async def test_summaries_stay_contiguous_as_log_grows(self):
        manager, _ = _manager()
        summaries = []
        log = _log(17)
        for _ in range(6):
            state = await manager.build_memory_state(log, summaries)
            summaries = state.summaries
            log = log + _log(3)

        assert len(summaries) >= 2
        assert summaries[0].range_from == 0
        for a, b in zip(summaries, summaries[1:]):
            assert a.range_to == b.range_from
        # Window never overlaps the summarized prefix
        assert summaries[-1].range_to <= len(log) - 3

    @pytest.mark.asyncio
    async def test_summary_failure_degrades(self):
        manager, inference = _manager()
        inference.call_llm.side_effect = RuntimeError("summarizer down")
        state = await manager.build_memory_state(_log(30))
        assert state.summaries == []
        assert len(state.recent_messages) == 10

    @pytest.mark.asyncio
    async def test_existing_summaries_not_regenerated(self):
        from core.memory_manager import ConversationSummary
        manager, inference = _manager()
        existing = [ConversationSummary("old", 0, 10)]
        state = await manager.build_memory_state(_log(20), existing)
        inference.call_llm.assert_not_called()
        assert state.new_summaries == []


class TestAssembly:

    def test_order_is_system_summaries_plan_window(self):
        from core.memory_manager import ConversationSummary, MemoryState
        from orchestration.plan import TaskPlan, TaskStep

        manager, _ = _manager()
        plan = TaskPlan(goal="Archive old files", steps=[TaskStep(id=1, title="Find files")])
        state = MemoryState(
            summaries=[ConversationSummary("user wants cleanup", 0, 10)],
            recent_messages=[
                {"role": "user", "content": "hello"},
                {"role": "tool", "content": "dropped"},
                {"role": "assistant", "content": "hi"},
            ],
            active_plan=plan,
        )
        messages = manager.assemble_llm_messages("SYSTEM", state)

        assert messages[0] == {"role": "system", "content": "SYSTEM"}
        assert messages[1]["content"].startswith("## Conversation History Summary")
        assert "[Summary 1 (msgs 0-10)]: user wants cleanup" in messages[1]["content"]
        assert messages[2]["content"].startswith("## Active Task Plan")
        assert "**Goal**: Archive old files" in messages[2]["content"]
        assert [m["role"] for m in messages[3:]] == ["user", "assistant"]

    def test_complete_plan_omitted(self):
        from core.memory_manager import MemoryState
        from orchestration.plan import TaskPlan

        manager, _ = _manager()
        plan = TaskPlan(goal="done", is_complete=True)
        messages = manager.assemble_llm_messages("S", MemoryState([], [], plan))
        assert len(messages) == 1

    def test_router_context(self):
        from core.memory_manager import ConversationSummary, MemoryManager, MemoryState
        state = MemoryState(
            summaries=[ConversationSummary("earlier we moved reports", 0, 4)],
            recent_messages=_log(8),
        )
        context = MemoryManager.get_router_context(state)
        assert "Previous context: earlier we moved reports" in context
        assert "Recent user messages: message 2 | message 4 | message 6" in context

    def test_router_context_empty(self):
        from core.memory_manager import MemoryManager, MemoryState
        assert MemoryManager.get_router_context(MemoryState([], [])) is None


class TestCompression:

    def test_under_budget_untouched(self):
        from core.memory_manager import MemoryManager
        messages = [{"role": "system", "content": "s"}, {"role": "user", "content": "u"}]
        assert MemoryManager.compress_if_needed(messages, max_chars=100) == messages

    def test_old_tool_results_shrunk_first(self):
        from core.memory_manager import MemoryManager
        messages = [{"role": "system", "content": "s"},
                    {"role": "assistant", "content": "", "tool_calls": [{"function": {"name": "x"}}]},
                    {"role": "tool", "content": "x" * 1000}]
        messages += [{"role": "user", "content": "recent"} for _ in range(6)]

        MemoryManager.compress_if_needed(messages, max_chars=400)
        assert len(messages) == 9
        assert messages[2]["content"].startswith("x" * 150)
        assert "[...compressed, original 1000 chars]" in messages[2]["content"]

    def test_evicts_oldest_but_keeps_system_and_recent(self):
        from core.memory_manager import MemoryManager
        messages = [{"role": "system", "content": "s"}]
        messages += [{"role": "user", "content": "y" * 100} for _ in range(10)]

        MemoryManager.compress_if_needed(messages, max_chars=650)
        assert messages[0]["role"] == "system"
        assert len(messages) == 7
        assert sum(len(m["content"]) for m in messages) <= 650

    def test_turn_reaching_into_recent_tail_kept_whole(self):
        from core.memory_manager import MemoryManager
        messages = [
            {"role": "system", "content": "s"},
            {"role": "user", "content": "u" * 100},
            {"role": "assistant", "content": "a" * 10, "tool_calls": [{"function": {"name": "t"}}]},
            {"role": "tool", "content": "r" * 10},
            {"role": "tool", "content": "r" * 10},
            {"role": "tool", "content": "r" * 10},
        ]
        messages += [{"role": "user", "content": "z" * 10} for _ in range(4)]

        MemoryManager.compress_if_needed(messages, max_chars=50)
        # The older message went; the turn stays paired with all of its results
        assert [m["role"] for m in messages] == (
            ["system", "assistant", "tool", "tool", "tool"] + ["user"] * 4
        )
        assert all(m["content"] != "u" * 100 for m in messages)
        assert [m["content"] for m in messages[-4:]] == ["z" * 10] * 4

    def test_assistant_turn_evicted_with_its_tool_results(self):
        from core.memory_manager import MemoryManager
        messages = [
            {"role": "system", "content": "s"},
            {"role": "assistant", "content": "a" * 50, "tool_calls": [{"function": {"name": "t"}}]},
            {"role": "tool", "content": "r" * 50},
        ]
        messages += [{"role": "user", "content": "z" * 10} for _ in range(6)]

        MemoryManager.compress_if_needed(messages, max_chars=70)
        assert all(m["role"] != "tool" for m in messages)
        assert all(not m.get("tool_calls") for m in messages)
