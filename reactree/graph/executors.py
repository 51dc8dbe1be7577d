"""
Built-in NodeExecutors.

- ScriptedExecutor interprets ``ActionNode.action`` against working memory,
  which is enough to drive workflow documents from the CLI and in tests.
- FunctionExecutor dispatches action names to registered callables.

Both are safe to call again for the same node id, as the feedback
fix-verify cycle requires.
"""

from __future__ import annotations

import inspect
import logging
from collections import Counter
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from reactree.graph.node import ActionNode, ExecContext, NodeResult
from reactree.schemas.feedback import FeedbackMessage

logger = logging.getLogger(__name__)


class ScriptedExecutor:
    """
    Executes actions described entirely by their ``params``.

    Actions:
        noop      succeed without side effects
        set       write every ``params`` item to memory
        set_each  on the n-th call of a node, write the n-th element of each
                  list in ``params`` (sticking at the last element)
        fail      fail with ``params["message"]``
        feedback  unless memory key ``params["resolved_when"]`` is truthy,
                  fail and emit a FeedbackMessage built from ``params``

    Example:
        {"id": "run_tests", "kind": "action", "action": "set_each",
         "params": {"status": ["failing", "passing"]}}
    """

    def __init__(self) -> None:
        self.calls: Counter[str] = Counter()

    async def run(self, node: ActionNode, ctx: ExecContext) -> NodeResult:
        invocation = self.calls[node.id]
        self.calls[node.id] += 1
        handler = getattr(self, f"_action_{node.action}", None)
        if handler is None:
            logger.warning("Unknown scripted action '%s' on '%s'", node.action, node.id)
            return NodeResult.failed(f"Unknown action '{node.action}'", node_id=node.id)
        return handler(node, ctx, invocation)

    def _action_noop(self, node: ActionNode, ctx: ExecContext, invocation: int) -> NodeResult:
        return NodeResult.ok(node_id=node.id)

    def _action_set(self, node: ActionNode, ctx: ExecContext, invocation: int) -> NodeResult:
        ctx.memory.write_many(node.params, agent=node.id)
        return NodeResult.ok(
            f"wrote {', '.join(node.params)}", node_id=node.id, output=dict(node.params)
        )

    def _action_set_each(self, node: ActionNode, ctx: ExecContext, invocation: int) -> NodeResult:
        values: dict[str, Any] = {}
        for key, value in node.params.items():
            if isinstance(value, list) and value:
                value = value[min(invocation, len(value) - 1)]
            values[key] = value
        ctx.memory.write_many(values, agent=node.id)
        return NodeResult.ok(f"call {invocation + 1}", node_id=node.id, output=values)

    def _action_fail(self, node: ActionNode, ctx: ExecContext, invocation: int) -> NodeResult:
        return NodeResult.failed(node.params.get("message", "scripted failure"), node_id=node.id)

    def _action_feedback(self, node: ActionNode, ctx: ExecContext, invocation: int) -> NodeResult:
        resolved_when = node.params.get("resolved_when")
        if resolved_when and ctx.memory.get(resolved_when):
            return NodeResult.ok(f"'{resolved_when}' is set", node_id=node.id)

        fields = {
            k: v
            for k, v in node.params.items()
            if k in ("to_node", "feedback_type", "message", "suggested_fix", "priority")
        }
        fields.setdefault("feedback_type", "FIX_REQUEST")
        try:
            message = FeedbackMessage(from_node=node.id, **fields)
        except ValidationError as e:
            return NodeResult.failed(f"Invalid feedback params: {e}", node_id=node.id)
        return NodeResult.failed(
            message.message or "feedback requested",
            node_id=node.id,
            feedback=[message],
        )


class FunctionExecutor:
    """
    Dispatches ``node.action`` to a registered callable.

    A callable receives ``(node, ctx)`` and may be sync or async. It can
    return a NodeResult, a bool (success flag), a dict (written to memory,
    success) or None (success).

    Example:
        executor = FunctionExecutor()
        executor.register_function("run_specs", run_specs)
    """

    def __init__(self, functions: dict[str, Callable] | None = None) -> None:
        self.functions: dict[str, Callable] = dict(functions or {})

    def register_function(self, name: str, func: Callable) -> None:
        """Register a function as an action."""
        self.functions[name] = func

    async def run(self, node: ActionNode, ctx: ExecContext) -> NodeResult:
        func = self.functions.get(node.action)
        if func is None:
            return NodeResult.failed(f"No function registered for '{node.action}'", node_id=node.id)

        value = func(node, ctx)
        if inspect.isawaitable(value):
            value = await value

        if isinstance(value, NodeResult):
            return value
        if isinstance(value, bool):
            return NodeResult.ok(node_id=node.id) if value else NodeResult.failed(node_id=node.id)
        if isinstance(value, dict):
            ctx.memory.write_many(value, agent=node.id)
            return NodeResult.ok(node_id=node.id, output=value)
        return NodeResult.ok(node_id=node.id)
