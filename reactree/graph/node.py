"""
Node Protocol - The typed units of work in a workflow tree.

A Node is a closed variant, discriminated by ``kind``:

- action: leaf work, executed by an external NodeExecutor
- sequence: runs its children in order
- loop: repeats its children until an exit test holds or a budget runs out
- conditional: evaluates a condition once and runs exactly one branch

Ownership is strictly hierarchical. Children are stored as tuples and the
models are frozen, so a tree cannot be restructured while it executes.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Annotated, Any, Literal, Protocol, Union, runtime_checkable

from pydantic import BaseModel, Field

from reactree.graph.condition import ConditionDescriptor
from reactree.schemas.feedback import FeedbackMessage
from reactree.storage.memory_store import WorkingMemory


class NodeKind(StrEnum):
    ACTION = "action"
    SEQUENCE = "sequence"
    LOOP = "loop"
    CONDITIONAL = "conditional"


class ExitOn(StrEnum):
    """When a LOOP stops successfully."""

    CONDITION_TRUE = "condition_true"  # Stop once the condition holds
    CONDITION_FALSE = "condition_false"  # Stop once the condition no longer holds
    MANUAL_BREAK = "manual_break"  # Stop once the break signal is written true during the loop


class BaseNode(BaseModel):
    id: str
    name: str = ""
    description: str = ""

    model_config = {"frozen": True, "extra": "allow"}

    def child_nodes(self) -> tuple[Node, ...]:
        """Direct children in execution order."""
        return ()


class ActionNode(BaseNode):
    """
    Leaf node. ``action`` and ``params`` are opaque to the engine and
    interpreted by the NodeExecutor.
    """

    kind: Literal["action"] = "action"
    action: str = "noop"
    params: dict[str, Any] = Field(default_factory=dict)


class SequenceNode(BaseNode):
    kind: Literal["sequence"] = "sequence"
    children: tuple[Node, ...] = ()

    def child_nodes(self) -> tuple[Node, ...]:
        return self.children


class LoopNode(BaseNode):
    """
    Bounded iteration over ``children``.

    ``max_iterations`` has no default: a loop without one is rejected when
    it runs. ``timeout_seconds`` falls back to the engine's ceiling.
    """

    kind: Literal["loop"] = "loop"
    children: tuple[Node, ...] = ()
    condition: ConditionDescriptor | None = None
    max_iterations: int | None = None
    timeout_seconds: float | None = None
    exit_on: ExitOn = ExitOn.CONDITION_TRUE
    break_key: str | None = Field(
        default=None, description="Memory key checked for MANUAL_BREAK (default '<id>.break')"
    )

    @property
    def break_signal_key(self) -> str:
        return self.break_key or f"{self.id}.break"

    def child_nodes(self) -> tuple[Node, ...]:
        return self.children


class ConditionalNode(BaseNode):
    kind: Literal["conditional"] = "conditional"
    condition: ConditionDescriptor | None = None
    true_branch: Node | None = None
    false_branch: Node | None = None

    def child_nodes(self) -> tuple[Node, ...]:
        return tuple(b for b in (self.true_branch, self.false_branch) if b is not None)


Node = Annotated[
    Union[ActionNode, SequenceNode, LoopNode, ConditionalNode],
    Field(discriminator="kind"),
]

SequenceNode.model_rebuild()
LoopNode.model_rebuild()
ConditionalNode.model_rebuild()


# ---------------------------------------------------------------------------
# Execution results and context
# ---------------------------------------------------------------------------


class ResultStatus(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"


@dataclass
class NodeResult:
    """Outcome of executing one node."""

    status: ResultStatus
    detail: str = ""
    node_id: str = ""
    output: dict[str, Any] = field(default_factory=dict)

    # Feedback emitted by an ACTION node, routed by the orchestrator
    feedback: list[FeedbackMessage] = field(default_factory=list)
    # Codes of feedback errors hit while routing that feedback
    feedback_errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == ResultStatus.SUCCESS

    @classmethod
    def ok(cls, detail: str = "", **kwargs: Any) -> NodeResult:
        return cls(status=ResultStatus.SUCCESS, detail=detail, **kwargs)

    @classmethod
    def failed(cls, detail: str = "", **kwargs: Any) -> NodeResult:
        return cls(status=ResultStatus.FAILURE, detail=detail, **kwargs)

    @classmethod
    def timed_out(cls, detail: str = "", **kwargs: Any) -> NodeResult:
        return cls(status=ResultStatus.TIMEOUT, detail=detail, **kwargs)


class RecoveryPolicy(StrEnum):
    """What a SEQUENCE does after a child fails."""

    CONTINUE = "continue"  # Keep going (inside LOOPs: the loop retries anyway)
    PROPAGATE = "propagate"  # Stop and return the failure


@dataclass
class ExecContext:
    """
    Everything a node execution can see besides the node itself.

    Contexts are treated as immutable: use ``derive()`` to hand a modified
    copy to a subtree.
    """

    memory: WorkingMemory
    recovery_policy: RecoveryPolicy = RecoveryPolicy.PROPAGATE
    run_id: str = ""
    # Enclosing loop iterations, outermost first: "outer#2/fix_loop#1"
    loop_scope: str = ""

    # Set while a node is re-executed to address a feedback message
    feedback: FeedbackMessage | None = None
    # False while re-verifying a sender: the router owns that round
    route_feedback: bool = True

    # Free-form values for NodeExecutors (cancellation tokens, clients, ...)
    extras: dict[str, Any] = field(default_factory=dict)

    def derive(self, **changes: Any) -> ExecContext:
        return dataclasses.replace(self, **changes)

    def scoped(self, site: str) -> str:
        """Cache site for ``site`` evaluated in the current loop iteration."""
        return f"{self.loop_scope}/{site}" if self.loop_scope else site


@runtime_checkable
class NodeExecutor(Protocol):
    """
    Executes ACTION nodes. The engine only looks at the returned status.

    Implementations must tolerate being called again for the same node id
    during a feedback fix-verify cycle.
    """

    async def run(self, node: ActionNode, ctx: ExecContext) -> NodeResult: ...


@runtime_checkable
class TreeExecutor(Protocol):
    """What controllers call back into to run a child subtree (the Orchestrator)."""

    async def execute(self, node: Node, ctx: ExecContext) -> NodeResult: ...
