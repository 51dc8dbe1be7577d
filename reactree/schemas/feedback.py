"""
Feedback Schema - Backwards messages from a node to one of its ancestors.

Lifecycle:
    created by a node → queued → delivered to target ancestor
    → target re-executed (fix) → sender re-executed (verify)
    → resolved | failed

Every transition appends a new copy of the message to the feedback
queue; the latest record for a ``message_id`` is its current state.
"""

import uuid
from enum import StrEnum

from pydantic import BaseModel, Field

from reactree.schemas.state_event import utc_now_iso


class FeedbackType(StrEnum):
    """Kinds of backwards messages a node may send."""

    FIX_REQUEST = "FIX_REQUEST"
    CONTEXT_REQUEST = "CONTEXT_REQUEST"
    DEPENDENCY_MISSING = "DEPENDENCY_MISSING"
    ARCHITECTURE_ISSUE = "ARCHITECTURE_ISSUE"


class FeedbackStatus(StrEnum):
    """Routing status of a feedback message."""

    QUEUED = "queued"
    DELIVERED = "delivered"
    RESOLVED = "resolved"
    FAILED = "failed"


class FeedbackPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FeedbackMessage(BaseModel):
    """
    A feedback message and its routing state.

    Example:
        FeedbackMessage(
            from_node="write_specs",
            to_node="implement_model",
            feedback_type=FeedbackType.FIX_REQUEST,
            message="Validation for email is missing",
            suggested_fix="Add a presence validator",
        )
    """

    message_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    from_node: str = ""
    to_node: str = ""
    feedback_type: FeedbackType
    message: str = ""
    suggested_fix: str = ""
    priority: FeedbackPriority = FeedbackPriority.MEDIUM
    round: int = Field(default=0, ge=0)
    status: FeedbackStatus = FeedbackStatus.QUEUED

    # Set when routing stopped: one of the FeedbackError codes
    error: str | None = None
    # True when the message was turned away before delivery (loop prevention)
    refused: bool = False

    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)

    model_config = {"frozen": True}

    @property
    def pair(self) -> tuple[str, str]:
        return (self.from_node, self.to_node)

    def transition(self, status: FeedbackStatus, **updates) -> "FeedbackMessage":
        """Return a copy in the given status; the original is left untouched."""
        return self.model_copy(update={"status": status, "updated_at": utc_now_iso(), **updates})

    def payload(self) -> dict:
        """The part of the message a fixing node needs to see."""
        return {
            "message_id": self.message_id,
            "from_node": self.from_node,
            "feedback_type": str(self.feedback_type),
            "message": self.message,
            "suggested_fix": self.suggested_fix,
            "priority": str(self.priority),
            "round": self.round,
        }
