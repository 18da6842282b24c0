"""
Tests for the capability gateway: per-agent ACL, shared rate limiting,
and the approval flow for dangerous operations.
"""

import asyncio

import pytest


class Clock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def _gateway(fake_redis, bus, clock=None):
    from core.approvals import ApprovalStore
    from core.gateway import CapabilityGateway
    from core.rate_limit import RateLimiter

    clock = clock or Clock()
    limiter = RateLimiter(fake_redis, window_seconds=60, max_ops=50, clock=clock)
    approvals = ApprovalStore(fake_redis, bus, ttl_seconds=300, clock=clock)
    return CapabilityGateway(approvals, limiter), clock


class TestAccessControl:

    @pytest.mark.asyncio
    async def test_tool_outside_agent_list_denied(self, fake_redis, bus):
        gateway, _ = _gateway(fake_redis, bus)
        decision = await gateway.check_tool_permission("document", "delete_folder", "u1", "c1", {})
        assert not decision.allowed
        assert not decision.requires_approval
        assert "not available for the document agent" in decision.reason
        assert "Drive workspace" in decision.reason

    @pytest.mark.asyncio
    async def test_unknown_agent_type_denied(self, fake_redis, bus):
        gateway, _ = _gateway(fake_redis, bus)
        decision = await gateway.check_tool_permission("wizard", "list_files", "u1", "c1", {})
        assert not decision.allowed

    @pytest.mark.asyncio
    async def test_safe_and_moderate_allowed(self, fake_redis, bus):
        gateway, _ = _gateway(fake_redis, bus)
        safe = await gateway.check_tool_permission("drive", "list_files", "u1", "c1", {})
        moderate = await gateway.check_tool_permission("drive", "create_folder", "u1", "c1", {"name": "A"})
        assert safe.allowed and safe.risk == "safe"
        assert moderate.allowed and moderate.risk == "moderate"

    def test_unlisted_tool_defaults_to_moderate(self):
        from core.gateway import get_operation_risk
        assert get_operation_risk("brand_new_tool") == "moderate"
        assert get_operation_risk("delete_file") == "dangerous"


class TestRateLimit:

    @pytest.mark.asyncio
    async def test_51st_call_denied_then_window_resets(self, fake_redis, bus):
        from core.gateway import RATE_LIMIT_MESSAGE
        gateway, clock = _gateway(fake_redis, bus)
        start = clock.now

        for i in range(50):
            clock.now = start + i * 0.5
            decision = await gateway.check_tool_permission("drive", "list_files", "u1", "c1", {})
            assert decision.allowed, f"call {i + 1} should pass"

        denied = await gateway.check_tool_permission("drive", "list_files", "u1", "c1", {})
        assert not denied.allowed
        assert denied.reason == RATE_LIMIT_MESSAGE

        clock.now = start + 61
        assert (await gateway.check_tool_permission("drive", "list_files", "u1", "c1", {})).allowed

    @pytest.mark.asyncio
    async def test_users_counted_separately(self, fake_redis, bus):
        gateway, _ = _gateway(fake_redis, bus)
        for _ in range(50):
            await gateway.check_tool_permission("drive", "list_files", "u1", "c1", {})
        assert (await gateway.check_tool_permission("drive", "list_files", "u2", "c2", {})).allowed

    @pytest.mark.asyncio
    async def test_quota_shared_between_gateways(self, fake_redis, bus):
        """Two processes on one Redis see one window."""
        first, clock = _gateway(fake_redis, bus)
        second, _ = _gateway(fake_redis, bus, clock)
        for _ in range(25):
            await first.check_tool_permission("drive", "list_files", "u1", "c1", {})
            await second.check_tool_permission("drive", "list_files", "u1", "c1", {})
        assert not (await first.check_tool_permission("drive", "list_files", "u1", "c1", {})).allowed

    @pytest.mark.asyncio
    async def test_window_state_in_redis(self, fake_redis, bus):
        from core.rate_limit import rate_key
        gateway, clock = _gateway(fake_redis, bus)
        await gateway.check_tool_permission("drive", "list_files", "u1", "c1", {})
        window = await fake_redis.hgetall(rate_key("u1"))
        assert float(window["start"]) == clock.now
        assert window["count"] == "1"
        assert fake_redis.ttls[rate_key("u1")] == 120

    @pytest.mark.asyncio
    async def test_concurrent_burst_stops_at_ceiling(self, fake_redis, bus):
        """Workers racing on one window cannot overshoot it."""
        from core.rate_limit import rate_key
        gateway, _ = _gateway(fake_redis, bus)
        for _ in range(48):
            await gateway.check_tool_permission("drive", "list_files", "u1", "c1", {})

        fake_redis.interleave = True
        decisions = await asyncio.gather(*[
            gateway.check_tool_permission("drive", "list_files", "u1", "c1", {})
            for _ in range(6)
        ])
        assert sum(d.allowed for d in decisions) == 2
        assert (await fake_redis.hgetall(rate_key("u1")))["count"] == "50"

    @pytest.mark.asyncio
    async def test_denied_call_leaves_count(self, fake_redis, bus):
        from core.rate_limit import rate_key
        gateway, _ = _gateway(fake_redis, bus)
        for _ in range(51):
            await gateway.check_tool_permission("drive", "list_files", "u1", "c1", {})
        assert (await fake_redis.hgetall(rate_key("u1")))["count"] == "50"

    @pytest.mark.asyncio
    async def test_dangerous_call_checks_without_counting(self, fake_redis, bus):
        from core.gateway import RATE_LIMIT_MESSAGE
        from core.rate_limit import rate_key
        gateway, _ = _gateway(fake_redis, bus)
        for _ in range(50):
            await gateway.check_tool_permission("drive", "list_files", "u1", "c1", {})
        decision = await gateway.check_tool_permission("drive", "delete_file", "u1", "c1", {"fileId": "a"})
        assert not decision.requires_approval
        assert decision.reason == RATE_LIMIT_MESSAGE
        assert (await fake_redis.hgetall(rate_key("u1")))["count"] == "50"


class TestApprovalFlow:

    @pytest.mark.asyncio
    async def test_delete_folder_needs_approval(self, fake_redis, bus):
        gateway, _ = _gateway(fake_redis, bus)
        decision = await gateway.check_tool_permission(
            "drive", "delete_folder", "owner", "c1", {"folderId": "fold-9"},
        )
        assert not decision.allowed
        assert decision.requires_approval
        assert decision.approval_id
        assert decision.risk == "dangerous"
        assert decision.reason == (
            "Permanently delete folder (fold-9) and ALL its contents. This cannot be undone."
        )

        pending = await gateway.get_pending_approvals("owner")
        assert [p.id for p in pending] == [decision.approval_id]
        assert pending[0].to_dict()["toolName"] == "delete_folder"

    @pytest.mark.asyncio
    async def test_resolve_is_idempotent(self, fake_redis, bus):
        from core.approvals import STATUS_APPROVED
        gateway, _ = _gateway(fake_redis, bus)
        decision = await gateway.check_tool_permission(
            "drive", "delete_folder", "owner", "c1", {"folderId": "fold-9"},
        )

        first = await gateway.resolve_approval(decision.approval_id, "owner", True)
        assert first.status == STATUS_APPROVED
        assert await gateway.resolve_approval(decision.approval_id, "owner", True) is None
        assert await gateway.resolve_approval(decision.approval_id, "owner", False) is None

        stored = await gateway.approvals.get(decision.approval_id)
        assert stored.status == STATUS_APPROVED
        await bus.close()

    @pytest.mark.asyncio
    async def test_only_owner_can_resolve(self, fake_redis, bus):
        gateway, _ = _gateway(fake_redis, bus)
        decision = await gateway.check_tool_permission(
            "drive", "trash_file", "owner", "c1", {"fileId": "f1"},
        )
        assert await gateway.resolve_approval(decision.approval_id, "intruder", True) is None
        assert (await gateway.resolve_approval(decision.approval_id, "owner", False)).status == "rejected"

    @pytest.mark.asyncio
    async def test_only_approval_counts_against_quota(self, fake_redis, bus):
        from core.rate_limit import rate_key
        gateway, _ = _gateway(fake_redis, bus)
        rejected = await gateway.check_tool_permission("drive", "delete_file", "u1", "c1", {"fileId": "a"})
        approved = await gateway.check_tool_permission("drive", "delete_file", "u1", "c1", {"fileId": "b"})
        assert await fake_redis.hgetall(rate_key("u1")) == {}

        await gateway.resolve_approval(rejected.approval_id, "u1", False)
        assert await fake_redis.hgetall(rate_key("u1")) == {}
        await gateway.resolve_approval(approved.approval_id, "u1", True)
        assert (await fake_redis.hgetall(rate_key("u1")))["count"] == "1"

    @pytest.mark.asyncio
    async def test_consume_removes_record(self, fake_redis, bus):
        gateway, _ = _gateway(fake_redis, bus)
        decision = await gateway.check_tool_permission("drive", "delete_file", "u1", "c1", {"fileId": "a"})
        await gateway.resolve_approval(decision.approval_id, "u1", True)
        consumed = await gateway.consume_approval(decision.approval_id)
        assert consumed.id == decision.approval_id
        assert await gateway.approvals.get(decision.approval_id) is None


class TestDescriptions:

    def test_share_with_users(self):
        from core.gateway import describe_dangerous_operation
        text = describe_dangerous_operation(
            "share_with_users", {"emails": ["a@x.io", "b@x.io"], "role": "editor"},
        )
        assert text == "Share resource with a@x.io, b@x.io as editor."

    def test_fallback(self):
        from core.gateway import describe_dangerous_operation
        assert describe_dangerous_operation("mystery", {}) == "Execute dangerous operation: mystery"
