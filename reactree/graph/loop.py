"""
Loop Controller - Drives a LOOP node through bounded iterations.

State machine::

    Idle → Running → Completed | MaxIterationsReached | TimedOut

Each iteration runs every child in order (a failing child does not abort
the iteration: the loop's own retry supersedes it), evaluates the loop
condition through the ConditionCache, logs a ``loop_iteration`` event and
applies the exit test.

Timeouts are coarse: the budget is checked at the top of every iteration,
so a slow child is allowed to finish and the loop overruns by at most one
iteration. Exhausting ``max_iterations`` is reported as FAILURE and running
out of time as TIMEOUT, so callers can tell "gave up" from "ran out of time".
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from reactree.config import DEFAULT_LOOP_TIMEOUT_SECONDS
from reactree.errors import LoopConfigError
from reactree.graph.condition import to_bool
from reactree.graph.condition_cache import ConditionCache
from reactree.graph.node import (
    ExecContext,
    ExitOn,
    LoopNode,
    NodeResult,
    RecoveryPolicy,
    TreeExecutor,
)
from reactree.schemas.state_event import EventType
from reactree.storage.state_log import StateLog

logger = logging.getLogger(__name__)


class LoopController:
    """
    Runs LOOP nodes.

    Example:
        controller = LoopController(state_log, condition_cache)
        result = await controller.run(loop_node, orchestrator, ctx)
    """

    def __init__(
        self,
        state_log: StateLog,
        condition_cache: ConditionCache,
        default_timeout_seconds: float = DEFAULT_LOOP_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.state_log = state_log
        self.condition_cache = condition_cache
        self.default_timeout_seconds = default_timeout_seconds
        self._clock = clock

    async def run(self, node: LoopNode, executor: TreeExecutor, ctx: ExecContext) -> NodeResult:
        max_iterations, timeout = self._budget(node)
        condition = node.condition.model_dump(mode="json") if node.condition else None
        break_mark = self._break_mark(node, ctx)

        self.state_log.append(
            node.id,
            EventType.LOOP_START,
            {
                "max_iterations": max_iterations,
                "timeout_seconds": timeout,
                "exit_on": str(node.exit_on),
                "condition": condition,
            },
        )

        start = self._clock()
        iteration = 0
        while iteration < max_iterations:
            elapsed = self._clock() - start
            if elapsed >= timeout:
                self.state_log.append(
                    node.id,
                    EventType.LOOP_TIMEOUT,
                    {
                        "iterations": iteration,
                        "elapsed": elapsed,
                        "timeout_seconds": timeout,
                        "condition": condition,
                    },
                )
                logger.warning(
                    "Loop '%s' timed out after %d iteration(s) (%.1fs)",
                    node.id,
                    iteration,
                    elapsed,
                    extra={"event": "loop_timeout", "node_id": node.id, "iteration": iteration},
                )
                return NodeResult.timed_out(
                    f"Loop '{node.id}' timed out after {iteration} iteration(s)",
                    node_id=node.id,
                    output={"iterations": iteration, "elapsed": elapsed},
                )

            iteration += 1
            body_ctx = ctx.derive(
                recovery_policy=RecoveryPolicy.CONTINUE,
                loop_scope=ctx.scoped(f"{node.id}#{iteration}"),
            )
            failed_children: list[str] = []
            for child in node.children:
                child_result = await executor.execute(child, body_ctx)
                if not child_result.success:
                    failed_children.append(child.id)

            condition_met = self._evaluate(node, iteration, ctx)
            elapsed = self._clock() - start
            self.state_log.append(
                node.id,
                EventType.LOOP_ITERATION,
                {
                    "iteration": iteration,
                    "condition_met": condition_met,
                    "elapsed": elapsed,
                    "failed_children": failed_children,
                },
            )

            if self._should_exit(node, condition_met, ctx, break_mark):
                self.state_log.append(
                    node.id,
                    EventType.LOOP_COMPLETE,
                    {"iterations": iteration, "elapsed": elapsed},
                )
                logger.info(
                    "Loop '%s' completed after %d iteration(s)",
                    node.id,
                    iteration,
                    extra={"event": "loop_complete", "node_id": node.id, "iteration": iteration},
                )
                return NodeResult.ok(
                    f"Loop '{node.id}' completed after {iteration} iteration(s)",
                    node_id=node.id,
                    output={"iterations": iteration, "elapsed": elapsed},
                )

        self.state_log.append(
            node.id,
            EventType.LOOP_MAX_ITERATIONS,
            {"iterations": iteration, "elapsed": self._clock() - start, "condition": condition},
        )
        logger.warning(
            "Loop '%s' reached max_iterations=%d without meeting its exit condition",
            node.id,
            max_iterations,
            extra={"event": "loop_max_iterations", "node_id": node.id, "iteration": iteration},
        )
        return NodeResult.failed(
            f"Loop '{node.id}' reached max_iterations={max_iterations}",
            node_id=node.id,
            output={"iterations": iteration},
        )

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _budget(self, node: LoopNode) -> tuple[int, float]:
        if node.max_iterations is None:
            raise LoopConfigError(node.id, "max_iterations is required")
        if isinstance(node.max_iterations, bool) or node.max_iterations <= 0:
            raise LoopConfigError(
                node.id, f"max_iterations must be positive, got {node.max_iterations}"
            )
        timeout = (
            node.timeout_seconds
            if node.timeout_seconds is not None
            else self.default_timeout_seconds
        )
        if timeout <= 0:
            raise LoopConfigError(node.id, f"timeout_seconds must be positive, got {timeout}")
        if node.condition is None and node.exit_on != ExitOn.MANUAL_BREAK:
            raise LoopConfigError(node.id, f"exit_on={node.exit_on} needs a condition")
        return node.max_iterations, timeout

    def _evaluate(self, node: LoopNode, iteration: int, ctx: ExecContext) -> bool:
        if node.condition is None:
            return False
        # Cache site per iteration (and per enclosing iteration): the exit test
        # has to see this iteration's writes. A loop re-entered within the ttl
        # at the same scope reuses the live entries.
        return self.condition_cache.evaluate(
            node.condition,
            cache_key=ctx.scoped(f"{node.id}#{iteration}"),
            snapshot=ctx.memory.snapshot(),
        )

    @staticmethod
    def _break_mark(node: LoopNode, ctx: ExecContext) -> int:
        return len(ctx.memory.history(node.break_signal_key))

    @staticmethod
    def _should_exit(
        node: LoopNode, condition_met: bool, ctx: ExecContext, break_mark: int
    ) -> bool:
        if node.exit_on == ExitOn.CONDITION_TRUE:
            return condition_met
        if node.exit_on == ExitOn.CONDITION_FALSE:
            return not condition_met
        # Only a signal written since this loop started counts
        signals = ctx.memory.history(node.break_signal_key)[break_mark:]
        return bool(signals) and to_bool(signals[-1].value) is True
