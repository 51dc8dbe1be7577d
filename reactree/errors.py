"""Exception hierarchy for the reactree engine.

All exceptions inherit from ReactreeError so callers can catch broadly
or narrowly as needed. Configuration errors fail fast and propagate out
of the orchestrator; feedback errors are raised by FeedbackRouter.route()
after the offending message has been marked ``failed``.

Loop exhaustion and loop timeouts are *not* exceptions: they are reported
as ``ResultStatus.FAILURE`` / ``ResultStatus.TIMEOUT`` results.
"""

from __future__ import annotations

from typing import Any


class ReactreeError(Exception):
    """Base exception for all reactree errors."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(ReactreeError):
    """Invalid or missing configuration."""


class InvalidConditionError(ConfigurationError):
    """A condition descriptor could not be evaluated (unknown type/operator, bad regex...)."""

    def __init__(self, message: str, condition: Any = None):
        self.condition = condition
        super().__init__(message)


class LoopConfigError(ConfigurationError):
    """A LOOP node has an unusable iteration or time budget."""

    def __init__(self, node_id: str, message: str):
        self.node_id = node_id
        super().__init__(f"Loop '{node_id}': {message}")


class ConditionalConfigError(ConfigurationError):
    """A CONDITIONAL node has no branch for the evaluated outcome."""

    def __init__(self, node_id: str, outcome: bool, condition: Any = None):
        self.node_id = node_id
        self.outcome = outcome
        self.condition = condition
        branch = "true_branch" if outcome else "false_branch"
        super().__init__(
            f"Conditional '{node_id}' evaluated {outcome} but has no {branch} configured"
        )


class WorkflowValidationError(ConfigurationError):
    """A workflow tree failed structural validation."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("Invalid workflow: " + "; ".join(problems))


# ---------------------------------------------------------------------------
# Feedback
# ---------------------------------------------------------------------------


class FeedbackError(ReactreeError):
    """A feedback message could not be routed or resolved."""

    code = "feedback_error"

    def __init__(
        self,
        message: str,
        from_node: str = "",
        to_node: str = "",
        round: int = 0,
    ):
        self.from_node = from_node
        self.to_node = to_node
        self.round = round
        super().__init__(message)


class InvalidFeedbackError(FeedbackError):
    """Malformed message: missing fields or unknown feedback type."""

    code = "invalid_feedback"


class RoundLimitExceededError(FeedbackError):
    """The (from_node, to_node) pair already used all of its rounds."""

    code = "round_limit_exceeded"


class ChainTooDeepError(FeedbackError):
    """The backwards feedback chain ending in this message is too long."""

    code = "chain_too_deep"

    def __init__(self, message: str, chain: list[str], depth: int, **kwargs: Any):
        self.chain = chain
        self.depth = depth
        super().__init__(message, **kwargs)


class CycleDetectedError(FeedbackError):
    """The backwards feedback chain revisits a node."""

    code = "cycle_detected"

    def __init__(self, message: str, chain: list[str], **kwargs: Any):
        self.chain = chain
        super().__init__(message, **kwargs)


class TargetNotAncestorError(FeedbackError):
    """The target node is not an ancestor of the sender within the search cap."""

    code = "target_not_ancestor"


class MaxRoundsExhaustedError(FeedbackError):
    """The fix-verify cycle used every allowed round without resolving."""

    code = "max_rounds_exhausted"
