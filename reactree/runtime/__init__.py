"""Runtime: the WorkflowEngine façade, state replay and episodic memory."""

from reactree.runtime.engine import RunOutcome, WorkflowEngine
from reactree.runtime.episodes import EpisodeStore
from reactree.runtime.replay import FeedbackPairState, LoopState, WorkflowState, replay_events

__all__ = [
    "EpisodeStore",
    "FeedbackPairState",
    "LoopState",
    "RunOutcome",
    "WorkflowEngine",
    "WorkflowState",
    "replay_events",
]
