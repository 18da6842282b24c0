"""
Stream event types emitted while a chat task runs.

Events flow from agents and the orchestrator through an `emit` callback
into the task queue, which republishes them on the task's bus channel.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional, Union


class EventType(Enum):
    ROUTE_DECISION = "route_decision"
    TASK_PLAN = "task_plan"
    TASK_STEP_UPDATE = "task_step_update"
    PARALLEL_BATCH = "parallel_batch"
    TOOL_CALL_START = "tool_call_start"
    TOOL_CALL_END = "tool_call_end"
    CONTENT = "content"
    APPROVAL_NEEDED = "approval_needed"
    APPROVAL_RESOLVED = "approval_resolved"
    DONE = "done"
    ERROR = "error"


TERMINAL_EVENTS = {EventType.DONE.value, EventType.ERROR.value}


@dataclass
class StreamEvent:
    type: EventType
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"type": self.type.value, "data": self.data}

    @classmethod
    def from_dict(cls, d: dict) -> "StreamEvent":
        return cls(type=EventType(d["type"]), data=d.get("data") or {})

    @classmethod
    def create(cls, event_type: EventType, **data) -> "StreamEvent":
        return cls(type=event_type, data=data)


# Sync or async callable receiving each event
EmitFn = Callable[[StreamEvent], Optional[Awaitable[None]]]


async def emit_event(emit: Optional[EmitFn], event: Union[StreamEvent, EventType], **data):
    """Deliver an event to an optional callback, awaiting it when it is async."""
    if emit is None:
        return
    if isinstance(event, EventType):
        event = StreamEvent.create(event, **data)
    result = emit(event)
    if result is not None and hasattr(result, "__await__"):
        await result
