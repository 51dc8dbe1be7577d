"""State replay: derive the current workflow state from a StateLog.

Every view is "latest matching event wins", and every event sets absolute
values (a ``loop_iteration`` carries its iteration number rather than a
delta). Replaying a prefix of the log and then the full log therefore
reconstructs the same state as a single pass, which is what makes a
restart mid-log safe.
"""

from __future__ import annotations

from collections.abc import Iterable

from pydantic import BaseModel, Field

from reactree.schemas.state_event import EventType, StateEvent

_LOOP_STATUS = {
    EventType.LOOP_START: "running",
    EventType.LOOP_ITERATION: "running",
    EventType.LOOP_COMPLETE: "completed",
    EventType.LOOP_MAX_ITERATIONS: "max_iterations_reached",
    EventType.LOOP_TIMEOUT: "timed_out",
}

_FEEDBACK_STATUS = {
    EventType.FEEDBACK_QUEUED: "queued",
    EventType.FEEDBACK_DELIVERED: "delivered",
    EventType.FEEDBACK_RESOLVED: "resolved",
    EventType.FEEDBACK_FAILED: "failed",
}


class LoopState(BaseModel):
    status: str = "running"
    iterations: int = 0


class FeedbackPairState(BaseModel):
    status: str = "queued"
    round: int = 0
    error: str | None = None


class WorkflowState(BaseModel):
    """Derived view over a StateLog."""

    node_status: dict[str, str] = Field(default_factory=dict)  # {node_id: status}
    loops: dict[str, LoopState] = Field(default_factory=dict)
    branches: dict[str, str | None] = Field(default_factory=dict)  # {conditional_id: branch}
    feedback: dict[str, FeedbackPairState] = Field(default_factory=dict)  # {"a->b": state}
    last_seq: int = -1

    def succeeded(self) -> set[str]:
        """Node ids whose latest completion was a success."""
        return {node_id for node_id, status in self.node_status.items() if status == "success"}

    def apply(self, event: StateEvent) -> None:
        """Fold one event into the state."""
        self.last_seq = max(self.last_seq, event.seq)
        etype = event.event_type
        payload = event.payload

        if etype == EventType.NODE_START:
            self.node_status[event.node_id] = "running"
        elif etype == EventType.NODE_COMPLETE:
            self.node_status[event.node_id] = payload.get("status", "success")
        elif etype in _LOOP_STATUS:
            loop = self.loops.get(event.node_id, LoopState())
            if etype == EventType.LOOP_START:
                loop = LoopState()
            elif etype == EventType.LOOP_ITERATION:
                loop.iterations = payload.get("iteration", loop.iterations)
            else:
                loop.iterations = payload.get("iterations", loop.iterations)
            loop.status = _LOOP_STATUS[etype]
            self.loops[event.node_id] = loop
        elif etype == EventType.CONDITIONAL_EVAL:
            self.branches[event.node_id] = payload.get("branch")
        elif etype in _FEEDBACK_STATUS:
            pair = f"{payload.get('from_node', event.node_id)}->{payload.get('to_node', '')}"
            self.feedback[pair] = FeedbackPairState(
                status=_FEEDBACK_STATUS[etype],
                round=payload.get("round", 0),
                error=payload.get("error"),
            )


def replay_events(
    events: Iterable[StateEvent],
    state: WorkflowState | None = None,
) -> WorkflowState:
    """Fold ``events`` into ``state`` (a fresh one by default) and return it."""
    state = state if state is not None else WorkflowState()
    for event in events:
        state.apply(event)
    return state
