"""
Conditional Controller - Evaluates a condition once and runs one branch.

CONDITIONAL is a pure router, not a recovery point: the chosen branch's
result is returned unchanged, failures included. A missing branch for the
evaluated outcome is a configuration error, never a silent no-op.
"""

from __future__ import annotations

import logging

from reactree.errors import ConditionalConfigError
from reactree.graph.condition_cache import ConditionCache
from reactree.graph.node import (
    ConditionalNode,
    ExecContext,
    NodeResult,
    RecoveryPolicy,
    TreeExecutor,
)
from reactree.schemas.state_event import EventType
from reactree.storage.state_log import StateLog

logger = logging.getLogger(__name__)


class ConditionalController:
    def __init__(self, state_log: StateLog, condition_cache: ConditionCache) -> None:
        self.state_log = state_log
        self.condition_cache = condition_cache

    async def run(
        self,
        node: ConditionalNode,
        executor: TreeExecutor,
        ctx: ExecContext,
    ) -> NodeResult:
        if node.condition is None:
            raise ConditionalConfigError(node.id, outcome=False)

        outcome = self.condition_cache.evaluate(
            node.condition,
            cache_key=ctx.scoped(node.id),
            snapshot=ctx.memory.snapshot(),
        )
        branch = node.true_branch if outcome else node.false_branch

        self.state_log.append(
            node.id,
            EventType.CONDITIONAL_EVAL,
            {
                "result": outcome,
                "branch": branch.id if branch is not None else None,
                "condition": node.condition.model_dump(mode="json"),
            },
        )

        if branch is None:
            raise ConditionalConfigError(node.id, outcome=outcome, condition=node.condition)

        logger.info(
            "Conditional '%s' evaluated %s → '%s'",
            node.id,
            outcome,
            branch.id,
            extra={"event": "conditional_eval", "node_id": node.id},
        )
        return await executor.execute(
            branch, ctx.derive(recovery_policy=RecoveryPolicy.PROPAGATE)
        )
