"""FeedbackQueue: append-only record of feedback messages and their transitions.

Every status change appends a full copy of the message. The current
state of a message is the latest record with its ``message_id``; the
history of a (from_node, to_node) pair is every message sharing it.
"""

from __future__ import annotations

import logging

from reactree.schemas.feedback import FeedbackMessage, FeedbackStatus
from reactree.storage.jsonl import JsonlStore

logger = logging.getLogger(__name__)


class FeedbackQueue(JsonlStore[FeedbackMessage]):
    """Append-only feedback queue, persisted as JSONL when given a path."""

    model_cls = FeedbackMessage

    def record(self, message: FeedbackMessage) -> FeedbackMessage:
        """Append a snapshot of ``message`` in its current status."""
        self._append(message)
        logger.debug(
            "feedback %s %s->%s is %s (round %d)",
            message.message_id,
            message.from_node,
            message.to_node,
            message.status,
            message.round,
        )
        return message

    def current(self) -> list[FeedbackMessage]:
        """Latest record of every message, in order of first appearance."""
        latest: dict[str, FeedbackMessage] = {}
        for record in self._records[:]:
            latest[record.message_id] = record
        return list(latest.values())

    def get(self, message_id: str) -> FeedbackMessage | None:
        for record in reversed(self._records[:]):
            if record.message_id == message_id:
                return record
        return None

    def for_pair(self, from_node: str, to_node: str) -> list[FeedbackMessage]:
        """Current state of every message sent from ``from_node`` to ``to_node``."""
        return [m for m in self.current() if m.pair == (from_node, to_node)]

    def latest_round(self, from_node: str, to_node: str) -> int:
        """Highest round recorded for the pair, 0 if the pair has no history."""
        rounds = [
            r.round
            for r in self._records[:]
            if r.pair == (from_node, to_node) and not r.refused
        ]
        return max(rounds, default=0)

    def latest_from(self, node_id: str) -> FeedbackMessage | None:
        """Most recent routed (not refused) message sent by ``node_id``."""
        for record in reversed(self.current()):
            if record.from_node == node_id and not record.refused:
                return record
        return None

    def with_status(self, status: FeedbackStatus) -> list[FeedbackMessage]:
        return [m for m in self.current() if m.status == status]
