"""
reactree - Hierarchical workflow control-flow engine.

A workflow is a tree of ACTION, SEQUENCE, LOOP and CONDITIONAL nodes.
The engine runs it with bounded loops, cached condition checks,
conditional routing and backwards feedback between nodes, recording
every control-flow event in an append-only StateLog.
"""

from reactree.config import EngineConfig
from reactree.errors import (
    ConfigurationError,
    FeedbackError,
    ReactreeError,
)
from reactree.graph import (
    ActionNode,
    ConditionalNode,
    ConditionDescriptor,
    ExecContext,
    LoopNode,
    NodeResult,
    Orchestrator,
    ResultStatus,
    SequenceNode,
    SignalProviders,
    WorkflowTree,
)
from reactree.runtime import RunOutcome, WorkflowEngine
from reactree.schemas import FeedbackMessage, FeedbackType

__version__ = "0.1.0"

__all__ = [
    "ActionNode",
    "ConditionDescriptor",
    "ConditionalNode",
    "ConfigurationError",
    "EngineConfig",
    "ExecContext",
    "FeedbackError",
    "FeedbackMessage",
    "FeedbackType",
    "LoopNode",
    "NodeResult",
    "Orchestrator",
    "ReactreeError",
    "ResultStatus",
    "RunOutcome",
    "SequenceNode",
    "SignalProviders",
    "WorkflowEngine",
    "WorkflowTree",
]
