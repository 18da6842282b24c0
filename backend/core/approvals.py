"""
ApprovalStore: human-in-the-loop approvals shared across processes.

Each request is a JSON record at agent:approval:{id}. The Redis key outlives
the request TTL by a grace period, so the expiry sweep and a late resolve
still find the record and report it expired. A terminal transition (approved, rejected, expired) first claims
agent:approval-claim:{id} with SET NX, so only one caller anywhere ever
moves a request out of `pending`. Every transition is broadcast on
agent:approval:resolved, which is how a step suspended in one worker
learns about a decision made through another process.
"""

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

from config import APPROVAL_SWEEP_INTERVAL, APPROVAL_TTL_SECONDS
from orchestration.event_bus import EventBus
from redis_store import key

logger = logging.getLogger(__name__)

APPROVAL_PREFIX = key("approval") + ":"
CLAIM_PREFIX = key("approval-claim") + ":"
APPROVAL_CHANNEL = key("approval", "resolved")

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
STATUS_EXPIRED = "expired"

# How long a waiter that lost the claim race waits for the winner's broadcast
_CLAIM_SETTLE_SECONDS = 1.0


@dataclass
class ApprovalRequest:
    id: str
    user_id: str
    conversation_id: str
    tool_name: str
    args: dict
    risk: str
    reason: str
    status: str = STATUS_PENDING
    created_at: float = field(default_factory=time.time)
    resolved_at: Optional[float] = None
    ttl_seconds: int = APPROVAL_TTL_SECONDS
    modified_args: Optional[dict] = None

    def age(self, now: float) -> float:
        return now - self.created_at

    def is_expired(self, now: float) -> bool:
        return self.age(now) > self.ttl_seconds

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "conversationId": self.conversation_id,
            "toolName": self.tool_name,
            "args": self.args,
            "risk": self.risk,
            "reason": self.reason,
            "status": self.status,
            "createdAt": self.created_at,
            "resolvedAt": self.resolved_at,
            "ttlSeconds": self.ttl_seconds,
            "modifiedArgs": self.modified_args,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ApprovalRequest":
        return cls(
            id=d["id"],
            user_id=d["userId"],
            conversation_id=d.get("conversationId", ""),
            tool_name=d["toolName"],
            args=d.get("args") or {},
            risk=d.get("risk", "dangerous"),
            reason=d.get("reason", ""),
            status=d.get("status", STATUS_PENDING),
            created_at=float(d.get("createdAt", 0)),
            resolved_at=d.get("resolvedAt"),
            ttl_seconds=int(d.get("ttlSeconds", APPROVAL_TTL_SECONDS)),
            modified_args=d.get("modifiedArgs"),
        )


@dataclass
class ApprovalResolution:
    approved: bool
    modified_args: Optional[dict] = None
    status: str = STATUS_REJECTED


class ApprovalStore:
    def __init__(self, redis_client, bus: EventBus, ttl_seconds: int = APPROVAL_TTL_SECONDS,
                 clock: Callable[[], float] = time.time, grace_seconds: Optional[int] = None):
        self._redis = redis_client
        self._bus = bus
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        # Long enough for at least one sweep to run after the TTL lapses
        if grace_seconds is None:
            grace_seconds = max(ttl_seconds, 2 * APPROVAL_SWEEP_INTERVAL)
        self.grace_seconds = grace_seconds

    # ── Records ──

    async def _write(self, request: ApprovalRequest, now: float):
        remaining = request.ttl_seconds + self.grace_seconds - request.age(now)
        await self._redis.set(APPROVAL_PREFIX + request.id, json.dumps(request.to_dict()),
                              ex=max(1, int(remaining)))

    async def create(self, user_id: str, conversation_id: str, tool_name: str,
                     args: dict, risk: str, reason: str) -> ApprovalRequest:
        request = ApprovalRequest(
            id=str(uuid.uuid4()),
            user_id=user_id,
            conversation_id=conversation_id,
            tool_name=tool_name,
            args=args,
            risk=risk,
            reason=reason,
            created_at=self._clock(),
            ttl_seconds=self.ttl_seconds,
        )
        await self._write(request, request.created_at)
        logger.info("Created approval %s for %s (user %s)", request.id, tool_name, user_id)
        return request

    async def get(self, approval_id: str) -> Optional[ApprovalRequest]:
        raw = await self._redis.get(APPROVAL_PREFIX + approval_id)
        if not raw:
            return None
        return ApprovalRequest.from_dict(json.loads(raw))

    async def _scan(self) -> list[ApprovalRequest]:
        keys = [k async for k in self._redis.scan_iter(match=APPROVAL_PREFIX + "*")]
        if not keys:
            return []
        results = []
        for raw in await self._redis.mget(keys):
            if not raw:
                continue
            try:
                results.append(ApprovalRequest.from_dict(json.loads(raw)))
            except (ValueError, KeyError):
                logger.debug("Skipping malformed approval record")
        return results

    async def list_pending(self, user_id: str) -> list[ApprovalRequest]:
        now = self._clock()
        requests = [r for r in await self._scan()
                    if r.user_id == user_id and r.status == STATUS_PENDING
                    and not r.is_expired(now)]
        return sorted(requests, key=lambda r: r.created_at)

    async def consume(self, approval_id: str) -> Optional[ApprovalRequest]:
        """Remove a request once its deferred call has run."""
        request = await self.get(approval_id)
        if request:
            await self._redis.delete(APPROVAL_PREFIX + approval_id)
        return request

    # ── Transitions ──

    async def _claim(self, approval_id: str) -> bool:
        return bool(await self._redis.set(CLAIM_PREFIX + approval_id, "1", nx=True,
                                          ex=self.ttl_seconds + self.grace_seconds))

    async def _broadcast(self, request: ApprovalRequest):
        await self._bus.publish(APPROVAL_CHANNEL, {
            "approvalId": request.id,
            "approved": request.status == STATUS_APPROVED,
            "status": request.status,
            "modifiedArgs": request.modified_args,
        })

    async def resolve(self, approval_id: str, user_id: str, approved: bool,
                      modified_args: dict = None) -> Optional[ApprovalRequest]:
        """Record the owner's decision.

        Returns None for unknown ids, foreign owners, and requests already
        out of `pending`. A request past its TTL is expired instead and
        returned with status `expired`.
        """
        request = await self.get(approval_id)
        if request is None or request.user_id != user_id or request.status != STATUS_PENDING:
            return None

        now = self._clock()
        if request.is_expired(now):
            if not await self._claim(approval_id):
                return None
            request.status = STATUS_EXPIRED
            request.resolved_at = now
            await self._redis.delete(APPROVAL_PREFIX + approval_id)
            await self._broadcast(request)
            logger.info("Approval %s expired before resolution", approval_id)
            return request

        if not await self._claim(approval_id):
            return None
        request.status = STATUS_APPROVED if approved else STATUS_REJECTED
        request.resolved_at = now
        if approved and modified_args:
            request.modified_args = modified_args
        await self._write(request, now)
        await self._broadcast(request)
        logger.info("Approval %s resolved: %s", approval_id, request.status)
        return request

    async def expire(self, approval_id: str) -> bool:
        """Force a pending request to `expired`. False if it already left pending."""
        request = await self.get(approval_id)
        if request is not None and request.status != STATUS_PENDING:
            return False
        if not await self._claim(approval_id):
            return False
        if request is None:
            request = ApprovalRequest(id=approval_id, user_id="", conversation_id="",
                                      tool_name="", args={}, risk="", reason="")
        request.status = STATUS_EXPIRED
        request.resolved_at = self._clock()
        await self._redis.delete(APPROVAL_PREFIX + approval_id)
        await self._broadcast(request)
        logger.debug("Approval %s expired", approval_id)
        return True

    async def sweep_expired(self) -> int:
        """Expire every pending request older than its TTL, waking its waiter."""
        now = self._clock()
        count = 0
        for request in await self._scan():
            if request.status == STATUS_PENDING and request.is_expired(now):
                if await self.expire(request.id):
                    count += 1
        if count:
            logger.info("Swept %d expired approvals", count)
        return count

    # ── Waiting ──

    async def wait(self, approval_id: str, cancel_event: asyncio.Event = None,
                   timeout: float = None) -> ApprovalResolution:
        """Suspend until the request is resolved, cancelled or times out.

        Resolution may come from any process. Cancellation and timeout
        expire the request, so a later resolve attempt is a no-op.
        """
        loop = asyncio.get_running_loop()
        outcome: asyncio.Future = loop.create_future()

        def on_message(payload: dict):
            if payload.get("approvalId") != approval_id or outcome.done():
                return
            outcome.set_result(ApprovalResolution(
                approved=bool(payload.get("approved")),
                modified_args=payload.get("modifiedArgs"),
                status=payload.get("status", STATUS_REJECTED),
            ))

        unsubscribe = await self._bus.subscribe(APPROVAL_CHANNEL, on_message)
        cancel_waiter = None
        try:
            # A decision published before the subscription is visible in the record
            request = await self.get(approval_id)
            if request is None:
                return ApprovalResolution(approved=False, status=STATUS_EXPIRED)
            if request.status != STATUS_PENDING:
                return ApprovalResolution(
                    approved=request.status == STATUS_APPROVED,
                    modified_args=request.modified_args,
                    status=request.status,
                )

            if timeout is None:
                timeout = max(0.0, request.ttl_seconds - request.age(self._clock()))
            waiters = [outcome]
            if cancel_event is not None:
                cancel_waiter = asyncio.ensure_future(cancel_event.wait())
                waiters.append(cancel_waiter)

            done, _ = await asyncio.wait(waiters, timeout=timeout,
                                         return_when=asyncio.FIRST_COMPLETED)
            if outcome in done:
                return outcome.result()

            reason = "cancelled" if cancel_waiter in done else "timed out"
            if await self.expire(approval_id):
                logger.info("Approval %s %s while waiting", approval_id, reason)
                return ApprovalResolution(approved=False, status=STATUS_EXPIRED)

            # Someone else claimed it first; take their decision
            try:
                return await asyncio.wait_for(asyncio.shield(outcome), _CLAIM_SETTLE_SECONDS)
            except asyncio.TimeoutError:
                request = await self.get(approval_id)
                if request and request.status == STATUS_APPROVED:
                    return ApprovalResolution(True, request.modified_args, STATUS_APPROVED)
                return ApprovalResolution(approved=False, status=STATUS_EXPIRED)
        finally:
            if cancel_waiter is not None and not cancel_waiter.done():
                cancel_waiter.cancel()
            await unsubscribe()
