"""StateLog: append-only, durable record of every control-flow event.

The log is the single source of truth for resumption. Each event is
immutable once appended; "current state" queries are derived views that
scan for the latest matching event.

Across concurrently executing subtrees the log has no causal global
order: consumers filter by ``node_id`` (or feedback pair) before reasoning
about sequence.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from reactree.schemas.state_event import EventType, StateEvent
from reactree.storage.jsonl import JsonlStore

logger = logging.getLogger(__name__)


class StateLog(JsonlStore[StateEvent]):
    """Append-only event log, persisted as JSONL when given a path.

    Usage::

        log = StateLog(Path(".reactree") / "state.jsonl")
        log.append("fix_tests", EventType.LOOP_START, {"max_iterations": 3})
        latest = log.latest("fix_tests", EventType.LOOP_ITERATION)
    """

    model_cls = StateEvent

    def __init__(self, path: Path | str | None = None, run_id: str = "") -> None:
        super().__init__(path)
        self.run_id = run_id

    def append(
        self,
        node_id: str,
        event_type: EventType,
        payload: dict[str, Any] | None = None,
    ) -> StateEvent:
        """Append one event and return it. ``seq`` is assigned under the lock."""
        with self._lock:
            event = StateEvent(
                seq=len(self._records),
                run_id=self.run_id,
                node_id=node_id,
                event_type=event_type,
                payload=payload or {},
            )
            self._write_locked(event)
        logger.debug(
            "state event %s for %s", event_type, node_id, extra={"event": str(event_type)}
        )
        return event

    # -------------------------------------------------------------------
    # Derived views
    # -------------------------------------------------------------------

    def events(
        self,
        node_id: str | None = None,
        event_types: EventType | Iterable[EventType] | None = None,
        run_id: str | None = None,
    ) -> list[StateEvent]:
        """Events in log order, optionally filtered by node, type and run."""
        wanted = _as_type_set(event_types)
        return [
            e
            for e in self._records[:]
            if (node_id is None or e.node_id == node_id)
            and (wanted is None or e.event_type in wanted)
            and (run_id is None or e.run_id == run_id)
        ]

    def latest(
        self,
        node_id: str | None = None,
        event_types: EventType | Iterable[EventType] | None = None,
    ) -> StateEvent | None:
        """Most recently appended event matching the filters."""
        wanted = _as_type_set(event_types)
        for event in reversed(self._records[:]):
            if node_id is not None and event.node_id != node_id:
                continue
            if wanted is not None and event.event_type not in wanted:
                continue
            return event
        return None

    def count(
        self,
        node_id: str | None = None,
        event_types: EventType | Iterable[EventType] | None = None,
        run_id: str | None = None,
    ) -> int:
        return len(self.events(node_id, event_types, run_id))


def _as_type_set(
    event_types: EventType | Iterable[EventType] | None,
) -> set[EventType] | None:
    if event_types is None:
        return None
    if isinstance(event_types, str):
        return {EventType(event_types)}
    return {EventType(t) for t in event_types}
