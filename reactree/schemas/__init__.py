"""Pydantic record schemas persisted by the reactree stores."""

from reactree.schemas.episode import Episode
from reactree.schemas.feedback import (
    FeedbackMessage,
    FeedbackPriority,
    FeedbackStatus,
    FeedbackType,
)
from reactree.schemas.state_event import EventType, StateEvent

__all__ = [
    "Episode",
    "EventType",
    "FeedbackMessage",
    "FeedbackPriority",
    "FeedbackStatus",
    "FeedbackType",
    "StateEvent",
]
