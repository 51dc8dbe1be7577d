"""Control-flow engine: node model, conditions, controllers and the orchestrator."""

from reactree.graph.condition import (
    ConditionDescriptor,
    ConditionEvaluator,
    ConditionType,
    Operator,
    SignalProviders,
)
from reactree.graph.condition_cache import CacheEntry, ConditionCache
from reactree.graph.conditional import ConditionalController
from reactree.graph.executors import FunctionExecutor, ScriptedExecutor
from reactree.graph.feedback import FeedbackRouter
from reactree.graph.loop import LoopController
from reactree.graph.node import (
    ActionNode,
    ConditionalNode,
    ExecContext,
    ExitOn,
    LoopNode,
    Node,
    NodeExecutor,
    NodeKind,
    NodeResult,
    RecoveryPolicy,
    ResultStatus,
    SequenceNode,
    TreeExecutor,
)
from reactree.graph.orchestrator import Orchestrator
from reactree.graph.tree import WorkflowTree

__all__ = [
    # Nodes
    "ActionNode",
    "ConditionalNode",
    "LoopNode",
    "Node",
    "NodeKind",
    "SequenceNode",
    "ExitOn",
    # Execution
    "ExecContext",
    "NodeExecutor",
    "NodeResult",
    "RecoveryPolicy",
    "ResultStatus",
    "TreeExecutor",
    "Orchestrator",
    "LoopController",
    "ConditionalController",
    "FeedbackRouter",
    "ScriptedExecutor",
    "FunctionExecutor",
    "WorkflowTree",
    # Conditions
    "ConditionDescriptor",
    "ConditionEvaluator",
    "ConditionType",
    "Operator",
    "SignalProviders",
    "CacheEntry",
    "ConditionCache",
]
