"""
Feedback Router - Routes backwards messages from a node to an ancestor.

Per (from_node, to_node) pair::

    None → Queued → Delivered → Resolved | Failed

Routing steps:
1. Validate the message (InvalidFeedbackError, nothing is recorded).
2. Loop prevention, all checks must pass:
   - round limit for the exact pair (RoundLimitExceededError)
   - chain depth: starting at ``to_node``, follow the most recent message
     sent *from* each node, up to a hard hop cap (ChainTooDeepError)
   - cycle detection on that same walk (CycleDetectedError)
   A refused message is recorded as ``failed``/``refused`` and the typed
   error is raised; the failing check is logged.
3. Queue with ``round = previous round for the pair + 1``.
4. Locate the target among the sender's ancestors (TargetNotAncestorError).
5. Deliver.
6. Fix-verify: re-execute the target with the message in context, then
   re-execute the sender. Resolved on success; otherwise retry with the
   next round until the round limit, then fail with MaxRoundsExhaustedError.

Round limiting alone cannot stop oscillation across different pairs
(A→B, B→C, C→A), hence the separate chain walk.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from reactree.config import (
    DEFAULT_ANCESTOR_SEARCH_CAP,
    DEFAULT_CHAIN_HOP_CAP,
    DEFAULT_MAX_FEEDBACK_CHAIN_DEPTH,
    DEFAULT_MAX_FEEDBACK_ROUNDS,
)
from reactree.errors import (
    ChainTooDeepError,
    CycleDetectedError,
    FeedbackError,
    InvalidFeedbackError,
    MaxRoundsExhaustedError,
    RoundLimitExceededError,
    TargetNotAncestorError,
)
from reactree.graph.node import ExecContext, Node, TreeExecutor
from reactree.graph.tree import WorkflowTree
from reactree.schemas.feedback import FeedbackMessage, FeedbackStatus
from reactree.schemas.state_event import EventType
from reactree.storage.feedback_queue import FeedbackQueue
from reactree.storage.memory_store import WorkingMemory
from reactree.storage.state_log import StateLog

logger = logging.getLogger(__name__)

_STATUS_EVENTS = {
    FeedbackStatus.QUEUED: EventType.FEEDBACK_QUEUED,
    FeedbackStatus.DELIVERED: EventType.FEEDBACK_DELIVERED,
    FeedbackStatus.RESOLVED: EventType.FEEDBACK_RESOLVED,
    FeedbackStatus.FAILED: EventType.FEEDBACK_FAILED,
}


class FeedbackRouter:
    """
    Routes feedback and drives the fix-verify cycle.

    Example:
        router = FeedbackRouter(tree, queue, state_log, memory, executor=orchestrator)
        resolved = await router.route(
            FeedbackMessage(
                from_node="run_specs",
                to_node="implement",
                feedback_type="FIX_REQUEST",
                message="UserPolicy#update? is missing",
            )
        )
    """

    def __init__(
        self,
        tree: WorkflowTree,
        queue: FeedbackQueue,
        state_log: StateLog,
        memory: WorkingMemory,
        executor: TreeExecutor | None = None,
        max_rounds: int = DEFAULT_MAX_FEEDBACK_ROUNDS,
        max_chain_depth: int = DEFAULT_MAX_FEEDBACK_CHAIN_DEPTH,
        ancestor_search_cap: int = DEFAULT_ANCESTOR_SEARCH_CAP,
        chain_hop_cap: int = DEFAULT_CHAIN_HOP_CAP,
    ) -> None:
        self.tree = tree
        self.queue = queue
        self.state_log = state_log
        self.memory = memory
        self.executor = executor
        self.max_rounds = max_rounds
        self.max_chain_depth = max_chain_depth
        self.ancestor_search_cap = ancestor_search_cap
        self.chain_hop_cap = chain_hop_cap

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------

    async def route(
        self,
        message: FeedbackMessage | Mapping[str, Any],
        ctx: ExecContext | None = None,
    ) -> FeedbackMessage:
        """Route ``message`` to completion and return its resolved record.

        Raises a FeedbackError subclass when the message is refused or the
        fix-verify cycle gives up; the message is marked ``failed`` first.
        """
        if self.executor is None:
            raise RuntimeError("FeedbackRouter has no executor to run the fix-verify cycle")

        msg = self._validate(message)
        self._check_round_limit(msg)
        self._check_chain(msg)

        ctx = ctx or ExecContext(memory=self.memory)
        round_ = self.queue.latest_round(msg.from_node, msg.to_node) + 1

        while True:
            msg = self._record(msg.transition(FeedbackStatus.QUEUED, round=round_))
            target, sender = self._locate(msg)
            msg = self._record(msg.transition(FeedbackStatus.DELIVERED))
            logger.info(
                "Feedback %s delivered %s → %s (round %d)",
                msg.feedback_type,
                msg.from_node,
                msg.to_node,
                round_,
                extra={
                    "event": "feedback_delivered",
                    "from_node": msg.from_node,
                    "to_node": msg.to_node,
                    "round": round_,
                },
            )

            if await self._fix_and_verify(msg, target, sender, ctx):
                msg = self._record(msg.transition(FeedbackStatus.RESOLVED))
                logger.info(
                    "Feedback %s → %s resolved in round %d",
                    msg.from_node,
                    msg.to_node,
                    round_,
                    extra={"event": "feedback_resolved", "round": round_},
                )
                return msg

            if round_ >= self.max_rounds:
                error = MaxRoundsExhaustedError(
                    f"Feedback {msg.from_node} → {msg.to_node} unresolved after "
                    f"{round_} round(s)",
                    from_node=msg.from_node,
                    to_node=msg.to_node,
                    round=round_,
                )
                self._record(
                    msg.transition(FeedbackStatus.FAILED, error=error.code),
                    reason=str(error),
                )
                logger.warning(str(error), extra={"event": "feedback_failed", "round": round_})
                raise error

            round_ += 1

    # -------------------------------------------------------------------
    # Validation and loop prevention
    # -------------------------------------------------------------------

    def _validate(self, message: FeedbackMessage | Mapping[str, Any]) -> FeedbackMessage:
        if not isinstance(message, FeedbackMessage):
            try:
                message = FeedbackMessage.model_validate(message)
            except ValidationError as e:
                raise InvalidFeedbackError(f"Malformed feedback message: {e}") from e

        missing = [
            name for name in ("from_node", "to_node", "message") if not getattr(message, name)
        ]
        if missing:
            raise InvalidFeedbackError(
                f"Feedback message is missing {', '.join(missing)}",
                from_node=message.from_node,
                to_node=message.to_node,
            )
        if message.from_node == message.to_node:
            raise InvalidFeedbackError(
                f"Node '{message.from_node}' cannot send feedback to itself",
                from_node=message.from_node,
                to_node=message.to_node,
            )
        return message

    def _check_round_limit(self, msg: FeedbackMessage) -> None:
        latest = self.queue.latest_round(msg.from_node, msg.to_node)
        if latest >= self.max_rounds:
            self._refuse(
                msg,
                RoundLimitExceededError(
                    f"Feedback {msg.from_node} → {msg.to_node} already used "
                    f"{latest}/{self.max_rounds} round(s)",
                    from_node=msg.from_node,
                    to_node=msg.to_node,
                    round=latest,
                ),
                check="round_limit",
                round_=latest,
            )

    def _check_chain(self, msg: FeedbackMessage) -> None:
        chain = [msg.from_node, msg.to_node]
        visited = set(chain)
        current = msg.to_node
        depth = 1

        for _ in range(self.chain_hop_cap):
            previous = self.queue.latest_from(current)
            if previous is None:
                break
            nxt = previous.to_node
            if nxt in visited:
                chain.append(nxt)
                self._refuse(
                    msg,
                    CycleDetectedError(
                        f"Feedback chain revisits '{nxt}': {' → '.join(chain)}",
                        chain=chain,
                        from_node=msg.from_node,
                        to_node=msg.to_node,
                    ),
                    check="cycle",
                    chain=chain,
                )
            visited.add(nxt)
            chain.append(nxt)
            depth += 1
            if depth > self.max_chain_depth:
                self._refuse(
                    msg,
                    ChainTooDeepError(
                        f"Feedback chain depth {depth} exceeds {self.max_chain_depth}: "
                        f"{' → '.join(chain)}",
                        chain=chain,
                        depth=depth,
                        from_node=msg.from_node,
                        to_node=msg.to_node,
                    ),
                    check="chain_depth",
                    chain=chain,
                )
            current = nxt

    def _refuse(
        self,
        msg: FeedbackMessage,
        error: FeedbackError,
        check: str,
        round_: int | None = None,
        chain: list[str] | None = None,
    ) -> None:
        if round_ is None:
            round_ = self.queue.latest_round(msg.from_node, msg.to_node)
        self._record(
            msg.transition(FeedbackStatus.FAILED, round=round_, error=error.code, refused=True),
            reason=str(error),
            check=check,
            chain=chain,
        )
        logger.warning(
            "Refusing feedback %s → %s (%s check): %s",
            msg.from_node,
            msg.to_node,
            check,
            error,
            extra={
                "event": "feedback_refused",
                "check": check,
                "from_node": msg.from_node,
                "to_node": msg.to_node,
            },
        )
        raise error

    # -------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------

    def _locate(self, msg: FeedbackMessage) -> tuple[Node, Node]:
        sender = self.tree.get(msg.from_node)
        target = (
            self.tree.find_ancestor(msg.from_node, msg.to_node, self.ancestor_search_cap)
            if sender is not None
            else None
        )
        if sender is None or target is None:
            reason = (
                f"unknown sender '{msg.from_node}'"
                if sender is None
                else f"'{msg.to_node}' is not an ancestor of '{msg.from_node}' "
                f"within {self.ancestor_search_cap} hops"
            )
            error = TargetNotAncestorError(
                f"Cannot deliver feedback: {reason}",
                from_node=msg.from_node,
                to_node=msg.to_node,
                round=msg.round,
            )
            self._record(
                msg.transition(FeedbackStatus.FAILED, error=error.code, refused=True),
                reason=str(error),
                check="target",
            )
            logger.warning(str(error), extra={"event": "feedback_failed", "check": "target"})
            raise error
        return target, sender

    async def _fix_and_verify(
        self,
        msg: FeedbackMessage,
        target: Node,
        sender: Node,
        ctx: ExecContext,
    ) -> bool:
        self.memory.write(
            f"feedback.{msg.to_node}",
            msg.payload(),
            agent=msg.from_node,
            knowledge_type="feedback",
        )

        fix = await self.executor.execute(target, ctx.derive(feedback=msg, route_feedback=False))
        if not fix.success:
            logger.info(
                "Fix attempt on '%s' did not succeed (round %d): %s",
                target.id,
                msg.round,
                fix.detail,
                extra={"event": "feedback_fix_failed", "round": msg.round},
            )
            return False

        verify = await self.executor.execute(
            sender, ctx.derive(feedback=None, route_feedback=False)
        )
        if not verify.success:
            logger.info(
                "Re-verification of '%s' failed (round %d): %s",
                sender.id,
                msg.round,
                verify.detail,
                extra={"event": "feedback_verify_failed", "round": msg.round},
            )
        return verify.success

    def _record(
        self,
        msg: FeedbackMessage,
        reason: str = "",
        check: str = "",
        chain: list[str] | None = None,
    ) -> FeedbackMessage:
        self.queue.record(msg)
        payload: dict[str, Any] = {
            "message_id": msg.message_id,
            "from_node": msg.from_node,
            "to_node": msg.to_node,
            "feedback_type": str(msg.feedback_type),
            "round": msg.round,
            "status": str(msg.status),
        }
        if msg.error:
            payload["error"] = msg.error
        if reason:
            payload["reason"] = reason
        if check:
            payload["check"] = check
        if chain:
            payload["chain"] = chain
        self.state_log.append(msg.from_node, _STATUS_EVENTS[msg.status], payload)
        return msg
