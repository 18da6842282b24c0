"""
Tests for the task plan model and its advisory progress tracker.
"""


def _plan(n=3):
    from orchestration.plan import TaskPlan, TaskStep
    return TaskPlan(goal="Tidy the drive", steps=[
        TaskStep(id=i, title=f"Step {i} title", dependencies=[i - 1] if i > 1 else [])
        for i in range(1, n + 1)
    ])


class TestTaskPlanTracker:
    """Pure transitions: input plans are never mutated."""

    def test_complete_advances_cursor(self):
        from orchestration.plan import StepStatus, TaskPlanTracker
        tracker = TaskPlanTracker()
        plan = _plan()

        updated = tracker.complete_current_step(plan, "found 3 files")
        assert updated.current_step == 2
        assert updated.steps[0].status == StepStatus.COMPLETED
        assert updated.steps[0].result == "found 3 files"
        # Original untouched
        assert plan.steps[0].status == StepStatus.PENDING
        assert plan.current_step == 1

    def test_start_does_not_advance(self):
        from orchestration.plan import StepStatus, TaskPlanTracker
        updated = TaskPlanTracker().start_current_step(_plan())
        assert updated.steps[0].status == StepStatus.IN_PROGRESS
        assert updated.current_step == 1

    def test_fail_and_skip_are_terminal(self):
        from orchestration.plan import StepStatus, TaskPlanTracker
        tracker = TaskPlanTracker()
        plan = tracker.fail_current_step(_plan(2), "storage unavailable")
        plan = tracker.skip_current_step(plan)

        assert plan.steps[0].status == StepStatus.FAILED
        assert plan.steps[0].error == "storage unavailable"
        assert plan.steps[1].status == StepStatus.SKIPPED
        assert plan.steps[1].result == "Skipped"
        assert plan.is_complete

    def test_refresh_uses_first_pending_step(self):
        from orchestration.plan import StepStatus, TaskPlanTracker
        plan = _plan()
        # Completed out of order, as a wave can do
        plan.steps[1].status = StepStatus.COMPLETED
        TaskPlanTracker.refresh(plan)
        assert plan.current_step == 1
        assert not plan.is_complete

    def test_progress_summary(self):
        from orchestration.plan import TaskPlanTracker
        tracker = TaskPlanTracker()
        plan = tracker.complete_current_step(_plan())
        plan = tracker.fail_current_step(plan, "boom")

        summary = tracker.get_progress_summary(plan)
        assert "Progress: 1/3 completed" in summary
        assert "1 failed" in summary
        assert "Current: Step 3 title" in summary

    def test_format_plan_for_user(self):
        from orchestration.plan import TaskPlanTracker
        tracker = TaskPlanTracker()
        plan = tracker.complete_current_step(_plan(2), "moved 4 files")
        plan = tracker.complete_current_step(plan, "shared")

        text = tracker.format_plan_for_user(plan)
        assert text.startswith("📋 **Task Plan**: Tidy the drive")
        assert "✅ **Step 1**: Step 1 title" in text
        assert "_moved 4 files_" in text
        assert "Plan complete!" in text


class TestTaskPlanSerialization:

    def test_round_trip_keeps_status_and_dependencies(self):
        from orchestration.plan import StepStatus, TaskPlan
        plan = _plan()
        plan.steps[0].status = StepStatus.IN_PROGRESS
        plan.steps[2].agent_type = "document"

        d = plan.to_dict()
        assert d["steps"][0]["status"] == "in-progress"
        assert d["steps"][2]["agentType"] == "document"

        restored = TaskPlan.from_dict(d)
        assert restored.steps[0].status == StepStatus.IN_PROGRESS
        assert restored.steps[2].dependencies == [2]
        assert restored.get_step(3).agent_type == "document"
        assert restored.get_step(9) is None
