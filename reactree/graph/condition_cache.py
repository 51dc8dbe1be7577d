"""
Condition Cache - TTL-bounded memoisation of condition evaluations.

Entries are keyed by ``(node_id, condition_key)`` where ``node_id`` is the
cache key naming the evaluation site and ``condition_key`` is the
descriptor's structural fingerprint. The store is logically append-only:
a refresh appends a new entry and reads take the most recently appended
match (append order is recency; timestamps are never compared across
entries). An entry is usable only while ``now < expires_at``.

Evaluations without a cache key are never cached: an unnamed site has no
stable identity to key on.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from reactree.config import DEFAULT_CONDITION_CACHE_TTL_SECONDS
from reactree.graph.condition import ConditionDescriptor, ConditionEvaluator
from reactree.storage.jsonl import JsonlStore
from reactree.storage.memory_store import WorkingMemory

logger = logging.getLogger(__name__)


class CacheEntry(BaseModel):
    """One cached evaluation. ``expires_at`` is always write time + ttl."""

    condition_key: str
    node_id: str
    result: bool
    expires_at: float  # unix seconds

    model_config = {"frozen": True}


class ConditionCache(JsonlStore[CacheEntry]):
    """
    Memoising front for ConditionEvaluator.

    Example:
        cache = ConditionCache(ConditionEvaluator(), memory, ttl_seconds=300)
        cache.evaluate(cond, cache_key="run_tests_loop")  # miss, evaluates
        cache.evaluate(cond, cache_key="run_tests_loop")  # hit within ttl
    """

    model_cls = CacheEntry

    def __init__(
        self,
        evaluator: ConditionEvaluator,
        memory: WorkingMemory | None = None,
        ttl_seconds: float = DEFAULT_CONDITION_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        path: Path | str | None = None,
    ) -> None:
        super().__init__(path)
        self.evaluator = evaluator
        self.memory = memory
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self.hits = 0
        self.misses = 0

    def evaluate(
        self,
        cond: ConditionDescriptor,
        cache_key: str | None = None,
        snapshot: Mapping[str, Any] | None = None,
    ) -> bool:
        """Return the condition's value, from cache when a live entry exists."""
        if cache_key is None:
            return self.evaluator.evaluate(cond, self._snapshot(snapshot))

        condition_key = cond.fingerprint()
        # Lookup, evaluation and refresh form one step: concurrent callers of
        # the same site evaluate once per ttl window.
        with self._lock:
            now = self._clock()
            entry = self.lookup(cache_key, condition_key)
            if entry is not None and now < entry.expires_at:
                self.hits += 1
                logger.debug("condition cache hit for %s (%s)", cache_key, cond.describe())
                return entry.result

            result = self.evaluator.evaluate(cond, self._snapshot(snapshot))
            self._write_locked(
                CacheEntry(
                    condition_key=condition_key,
                    node_id=cache_key,
                    result=result,
                    expires_at=now + self.ttl_seconds,
                )
            )
            self.misses += 1
        logger.debug("condition cache miss for %s (%s) → %s", cache_key, cond.describe(), result)
        return result

    def lookup(self, cache_key: str, condition_key: str) -> CacheEntry | None:
        """Most recently appended entry for the key pair, live or expired."""
        for entry in reversed(self._records[:]):
            if entry.node_id == cache_key and entry.condition_key == condition_key:
                return entry
        return None

    def _snapshot(self, snapshot: Mapping[str, Any] | None) -> Mapping[str, Any]:
        if snapshot is not None:
            return snapshot
        return self.memory.snapshot() if self.memory is not None else {}
