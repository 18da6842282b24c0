"""
Core package: the engine behind the assistant's task processing.

Structure:
    agent_core.py      AgentCore, wires the shared store, queue, gateway and agents
    chat_pipeline.py   The worker's processing function for one chat task
    gateway.py         CapabilityGateway (ACL, rate limit, risk, approvals)
    approvals.py       Redis-backed ApprovalStore with cross-process waits
    rate_limit.py      Redis-backed per-user rate window
    resource_lock.py   Distributed per-resource locks for write tools
    memory_manager.py  Summaries, sliding window and context compression

Usage:
    from core.agent_core import AgentCore
"""
