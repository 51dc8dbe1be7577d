"""
State Event Schema - One immutable control-flow record.

The StateLog is an append-only sequence of these. Nothing is ever
updated in place: the current state of a node, loop or feedback pair is
reconstructed by scanning for the latest matching event.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class EventType(StrEnum):
    """Types of control-flow events."""

    # Node lifecycle (every Orchestrator.execute call)
    NODE_START = "node_start"
    NODE_COMPLETE = "node_complete"

    # LOOP lifecycle
    LOOP_START = "loop_start"
    LOOP_ITERATION = "loop_iteration"
    LOOP_COMPLETE = "loop_complete"
    LOOP_TIMEOUT = "loop_timeout"
    LOOP_MAX_ITERATIONS = "loop_max_iterations"

    # CONDITIONAL
    CONDITIONAL_EVAL = "conditional_eval"

    # Feedback lifecycle
    FEEDBACK_QUEUED = "feedback_queued"
    FEEDBACK_DELIVERED = "feedback_delivered"
    FEEDBACK_RESOLVED = "feedback_resolved"
    FEEDBACK_FAILED = "feedback_failed"


LOOP_TERMINAL_EVENTS = frozenset(
    {EventType.LOOP_COMPLETE, EventType.LOOP_TIMEOUT, EventType.LOOP_MAX_ITERATIONS}
)

FEEDBACK_EVENTS = frozenset(
    {
        EventType.FEEDBACK_QUEUED,
        EventType.FEEDBACK_DELIVERED,
        EventType.FEEDBACK_RESOLVED,
        EventType.FEEDBACK_FAILED,
    }
)


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


class StateEvent(BaseModel):
    """
    A single append-only control-flow record.

    ``seq`` is the position in the log and is the only ordering that
    matters; ``timestamp`` is informational.
    """

    seq: int = 0
    timestamp: str = Field(default_factory=utc_now_iso)
    run_id: str = ""
    node_id: str
    event_type: EventType
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}
