"""
Working Memory - Append-style key/value store shared by a workflow.

Each write appends an entry; reads return the value of the most recently
written entry for a key ("last write wins"). There is no versioning
beyond recency, and recency means append order, never timestamps.

Persisted entries look like::

    {"timestamp": "...", "agent": "system", "knowledge_type": "initialization",
     "key": "session.start", "value": {...}, "confidence": "verified"}
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field

from reactree.schemas.state_event import utc_now_iso
from reactree.storage.jsonl import JsonlStore

logger = logging.getLogger(__name__)

_MISSING = object()


class MemoryEntry(BaseModel):
    """One write to working memory."""

    timestamp: str = Field(default_factory=utc_now_iso)
    agent: str = ""
    knowledge_type: str = ""
    key: str
    value: Any = None
    confidence: str = ""

    model_config = {"frozen": True}


class WorkingMemory(JsonlStore[MemoryEntry]):
    """
    Last-write-wins KV store over an append-only entry list.

    Example:
        memory = WorkingMemory()
        memory.write("status", "failing", agent="run_tests")
        memory.write("status", "passing", agent="run_tests")
        memory.get("status")  # "passing"
    """

    model_cls = MemoryEntry

    def write(
        self,
        key: str,
        value: Any,
        *,
        agent: str = "",
        knowledge_type: str = "",
        confidence: str = "",
    ) -> MemoryEntry:
        entry = MemoryEntry(
            agent=agent,
            knowledge_type=knowledge_type,
            key=key,
            value=value,
            confidence=confidence,
        )
        return self._append(entry)

    def write_many(self, values: Mapping[str, Any], *, agent: str = "") -> None:
        for key, value in values.items():
            self.write(key, value, agent=agent)

    def get(self, key: str, default: Any = None) -> Any:
        """Value of the most recently written entry for ``key``."""
        for entry in reversed(self._records[:]):
            if entry.key == key:
                return entry.value
        return default

    def __contains__(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def snapshot(self) -> dict[str, Any]:
        """Latest value per key; later writes overwrite earlier ones."""
        view: dict[str, Any] = {}
        for entry in self._records[:]:
            view[entry.key] = entry.value
        return view

    def history(self, key: str) -> list[MemoryEntry]:
        """Every entry written for ``key``, oldest first."""
        return [e for e in self._records[:] if e.key == key]

    def entries(self) -> list[MemoryEntry]:
        return self.records()
