"""
CapabilityGateway: per-call checks in front of every agent tool call.

  1. ACL: each agent type may only use its own tool list
  2. Rate limit: shared per-user window (see core.rate_limit)
  3. Risk: safe / moderate run directly, dangerous needs human approval

Denials are returned as decisions the agent reads, never raised.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from config import (
    AGENT_REDIRECT_HINTS, AGENT_TOOL_FILTER, APPROVAL_SWEEP_INTERVAL,
    DEFAULT_RISK, OPERATION_RISK,
)
from core.approvals import (
    ApprovalRequest, ApprovalResolution, ApprovalStore, STATUS_APPROVED,
)
from core.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Too many operations in a short time. Please wait a moment."


@dataclass
class GatewayDecision:
    allowed: bool
    requires_approval: bool = False
    reason: Optional[str] = None
    approval_id: Optional[str] = None
    risk: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "requiresApproval": self.requires_approval,
            "reason": self.reason,
            "approvalId": self.approval_id,
        }


def get_operation_risk(tool_name: str) -> str:
    return OPERATION_RISK.get(tool_name, DEFAULT_RISK)


def describe_dangerous_operation(tool_name: str, args: dict) -> str:
    """Human-readable consequence shown on the approval card."""
    def ref(arg):
        return f" ({args[arg]})" if args.get(arg) else ""

    if tool_name == "delete_file":
        return f"Permanently delete file{ref('fileId')}. This cannot be undone."
    if tool_name == "delete_folder":
        return f"Permanently delete folder{ref('folderId')} and ALL its contents. This cannot be undone."
    if tool_name == "trash_file":
        return f"Move file{ref('fileId')} to trash."
    if tool_name == "trash_folder":
        return f"Move folder{ref('folderId')} and all its contents to trash."
    if tool_name == "revoke_share_link":
        return f"Revoke share link{ref('linkId')}. Recipients will lose access."
    if tool_name == "share_with_users":
        emails = args.get("emails")
        who = ", ".join(emails) if isinstance(emails, list) else "users"
        return f"Share resource with {who} as {args.get('role') or 'viewer'}."
    if tool_name == "write_file":
        return f"Overwrite the entire content of file{ref('fileId')}."
    if tool_name == "patch_file":
        return f"Edit the content of file{ref('fileId')}."
    return f"Execute dangerous operation: {tool_name}"


class CapabilityGateway:
    def __init__(self, approvals: ApprovalStore, rate_limiter: RateLimiter,
                 sweep_interval: float = APPROVAL_SWEEP_INTERVAL):
        self.approvals = approvals
        self.rate_limiter = rate_limiter
        self._sweep_interval = sweep_interval
        self._sweeper: Optional[asyncio.Task] = None
        self._running = False

    async def check_tool_permission(self, agent_type: str, tool_name: str, user_id: str,
                                    conversation_id: str, args: dict) -> GatewayDecision:
        allowed_tools = AGENT_TOOL_FILTER.get(agent_type, [])
        if tool_name not in allowed_tools:
            logger.warning("Tool %s not permitted for %s agent (user %s)",
                           tool_name, agent_type, user_id)
            hint = AGENT_REDIRECT_HINTS.get(agent_type, "")
            return GatewayDecision(
                allowed=False,
                reason=f"Tool '{tool_name}' is not available for the {agent_type} agent. {hint}".strip(),
            )

        # Dangerous calls are counted on approval, not here
        risk = get_operation_risk(tool_name)
        if risk == "dangerous":
            within_limit = await self.rate_limiter.check(user_id)
        else:
            within_limit = await self.rate_limiter.acquire(user_id)
        if not within_limit:
            logger.info("Rate limit hit for user %s on %s", user_id, tool_name)
            return GatewayDecision(allowed=False, reason=RATE_LIMIT_MESSAGE)

        if risk == "dangerous":
            reason = describe_dangerous_operation(tool_name, args)
            request = await self.approvals.create(
                user_id, conversation_id, tool_name, args, risk, reason,
            )
            return GatewayDecision(
                allowed=False, requires_approval=True, reason=reason,
                approval_id=request.id, risk=risk,
            )

        return GatewayDecision(allowed=True, risk=risk)

    async def wait_for_approval(self, approval_id: str,
                                cancel_event: asyncio.Event = None) -> ApprovalResolution:
        return await self.approvals.wait(approval_id, cancel_event)

    async def resolve_approval(self, approval_id: str, user_id: str, approved: bool,
                               modified_args: dict = None) -> Optional[ApprovalRequest]:
        """Apply the owner's decision. Only an approval counts against the quota."""
        request = await self.approvals.resolve(approval_id, user_id, approved, modified_args)
        if request is not None and request.status == STATUS_APPROVED:
            await self.rate_limiter.increment(user_id)
        return request

    async def get_pending_approvals(self, user_id: str) -> list[ApprovalRequest]:
        return await self.approvals.list_pending(user_id)

    async def consume_approval(self, approval_id: str) -> Optional[ApprovalRequest]:
        return await self.approvals.consume(approval_id)

    # ── Expiry sweep ──

    def start(self):
        if self._running:
            return
        self._running = True
        self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop(self):
        self._running = False
        if self._sweeper:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

    async def _sweep_loop(self):
        while self._running:
            try:
                await asyncio.sleep(self._sweep_interval)
                await self.approvals.sweep_expired()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Approval sweep error: %s", e)
