"""
Orchestrator - Recursive driver for a workflow tree.

The orchestrator:
1. Logs ``node_start``
2. Dispatches on node kind (ACTION to the NodeExecutor, SEQUENCE inline,
   LOOP and CONDITIONAL to their controllers)
3. Routes feedback emitted by ACTION nodes through the FeedbackRouter
4. Logs ``node_complete`` with the result status

Configuration errors (bad loop budgets, missing branches, invalid
conditions) propagate out of ``execute``. Exceptions raised by a
NodeExecutor are turned into FAILURE results.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable

from reactree.config import DEFAULT_LOOP_TIMEOUT_SECONDS
from reactree.errors import FeedbackError, ReactreeError
from reactree.graph.condition_cache import ConditionCache
from reactree.graph.conditional import ConditionalController
from reactree.graph.feedback import FeedbackRouter
from reactree.graph.loop import LoopController
from reactree.graph.node import (
    ActionNode,
    ConditionalNode,
    ExecContext,
    LoopNode,
    Node,
    NodeExecutor,
    NodeResult,
    RecoveryPolicy,
    SequenceNode,
)
from reactree.schemas.state_event import EventType
from reactree.storage.state_log import StateLog

logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Executes nodes recursively; satisfies the TreeExecutor protocol.

    Example:
        orchestrator = Orchestrator(executor, state_log, condition_cache)
        result = await orchestrator.execute(tree.root, ExecContext(memory=memory))
    """

    def __init__(
        self,
        node_executor: NodeExecutor,
        state_log: StateLog,
        condition_cache: ConditionCache,
        feedback_router: FeedbackRouter | None = None,
        default_loop_timeout_seconds: float = DEFAULT_LOOP_TIMEOUT_SECONDS,
        loop_clock: Callable[[], float] = time.monotonic,
        skip_completed: Iterable[str] = (),
    ) -> None:
        self.node_executor = node_executor
        self.state_log = state_log
        self.condition_cache = condition_cache
        self.feedback_router = feedback_router
        self.loops = LoopController(
            state_log,
            condition_cache,
            default_timeout_seconds=default_loop_timeout_seconds,
            clock=loop_clock,
        )
        self.conditionals = ConditionalController(state_log, condition_cache)

        # Node ids completed successfully by an earlier run (resume). Never
        # skipped while a feedback fix-verify cycle is running.
        self.skip_completed: set[str] = set(skip_completed)
        self.nodes_executed = 0

        if feedback_router is not None and feedback_router.executor is None:
            feedback_router.executor = self

    async def execute(self, node: Node, ctx: ExecContext) -> NodeResult:
        self.state_log.append(node.id, EventType.NODE_START, {"kind": str(node.kind)})

        if node.id in self.skip_completed and ctx.feedback is None and ctx.route_feedback:
            logger.info(
                "Skipping '%s': completed by a previous run",
                node.id,
                extra={"event": "node_skipped", "node_id": node.id},
            )
            result = NodeResult.ok("resumed", node_id=node.id)
        else:
            self.nodes_executed += 1
            logger.debug("▶ %s (%s)", node.id, node.kind, extra={"node_id": node.id})
            result = await self._dispatch(node, ctx)

        if not result.node_id:
            result.node_id = node.id

        self.state_log.append(
            node.id,
            EventType.NODE_COMPLETE,
            {
                "status": str(result.status),
                "detail": result.detail,
                **({"feedback_errors": result.feedback_errors} if result.feedback_errors else {}),
            },
        )
        if result.success:
            logger.debug("✓ %s", node.id, extra={"node_id": node.id})
        else:
            logger.info(
                "✗ %s %s: %s",
                node.id,
                result.status,
                result.detail,
                extra={"event": "node_complete", "node_id": node.id},
            )
        return result

    async def _dispatch(self, node: Node, ctx: ExecContext) -> NodeResult:
        if isinstance(node, ActionNode):
            return await self._run_action(node, ctx)
        if isinstance(node, SequenceNode):
            return await self._run_sequence(node, ctx)
        if isinstance(node, LoopNode):
            return await self.loops.run(node, self, ctx)
        if isinstance(node, ConditionalNode):
            return await self.conditionals.run(node, self, ctx)
        raise ReactreeError(f"Unhandled node type: {type(node).__name__}")

    # -------------------------------------------------------------------
    # Node kinds
    # -------------------------------------------------------------------

    async def _run_action(self, node: ActionNode, ctx: ExecContext) -> NodeResult:
        try:
            result = await self.node_executor.run(node, ctx)
        except ReactreeError:
            raise
        except Exception as e:
            logger.exception("Action '%s' raised", node.id, extra={"node_id": node.id})
            return NodeResult.failed(f"{type(e).__name__}: {e}", node_id=node.id)

        if result.feedback and ctx.route_feedback and self.feedback_router is not None:
            for message in result.feedback:
                try:
                    await self.feedback_router.route(message, ctx)
                except FeedbackError as e:
                    logger.warning(
                        "Feedback from '%s' not resolved: %s",
                        node.id,
                        e,
                        extra={"event": "feedback_error", "node_id": node.id},
                    )
                    result.feedback_errors.append(e.code)
            # Resolution includes a successful re-verification of this node
            if not result.success and not result.feedback_errors:
                return NodeResult.ok(
                    "resolved via feedback",
                    node_id=node.id,
                    output=result.output,
                    feedback=result.feedback,
                )
        elif result.feedback:
            logger.debug(
                "Not routing %d feedback message(s) from '%s'",
                len(result.feedback),
                node.id,
                extra={"node_id": node.id},
            )
        return result

    async def _run_sequence(self, node: SequenceNode, ctx: ExecContext) -> NodeResult:
        failures: list[NodeResult] = []
        for child in node.children:
            child_result = await self.execute(child, ctx)
            if child_result.success:
                continue
            if ctx.recovery_policy == RecoveryPolicy.PROPAGATE:
                return NodeResult(
                    status=child_result.status,
                    detail=f"'{child.id}' {child_result.status}: {child_result.detail}",
                    node_id=node.id,
                )
            failures.append(child_result)

        if failures:
            failed_ids = [r.node_id for r in failures]
            return NodeResult.failed(
                f"{len(failures)} child(ren) failed: {', '.join(failed_ids)}",
                node_id=node.id,
                output={"failed_children": failed_ids},
            )
        return NodeResult.ok(node_id=node.id)
