"""
Workflow Engine - Wires a tree, a NodeExecutor and the stores together.

The engine:
1. Opens the append-only stores under the storage directory
2. Seeds working memory with the run's input
3. Sets the logging trace context (run_id, workflow_id)
4. Executes the root through the Orchestrator
5. Appends an Episode summarising the run

Storage layout (``storage_dir``, default ``.reactree``)::

    state.jsonl            StateLog
    feedback.jsonl         FeedbackQueue
    memory.jsonl           WorkingMemory
    condition_cache.jsonl  ConditionCache
    episodes.jsonl         EpisodeStore
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from reactree.config import EngineConfig
from reactree.errors import ReactreeError
from reactree.graph.condition import ConditionEvaluator, SignalProviders
from reactree.graph.condition_cache import ConditionCache
from reactree.graph.feedback import FeedbackRouter
from reactree.graph.node import ExecContext, NodeExecutor, NodeResult
from reactree.graph.orchestrator import Orchestrator
from reactree.graph.tree import WorkflowTree
from reactree.observability import set_trace_context
from reactree.runtime.episodes import EpisodeStore
from reactree.runtime.replay import WorkflowState, replay_events
from reactree.schemas.episode import Episode
from reactree.schemas.feedback import FeedbackMessage
from reactree.schemas.state_event import utc_now_iso
from reactree.storage.feedback_queue import FeedbackQueue
from reactree.storage.memory_store import WorkingMemory
from reactree.storage.state_log import StateLog

logger = logging.getLogger(__name__)

STATE_FILE = "state.jsonl"
FEEDBACK_FILE = "feedback.jsonl"
MEMORY_FILE = "memory.jsonl"
CONDITION_CACHE_FILE = "condition_cache.jsonl"
EPISODES_FILE = "episodes.jsonl"


@dataclass
class RunOutcome:
    """Result of one WorkflowEngine.run()."""

    run_id: str
    result: NodeResult
    state: WorkflowState

    @property
    def success(self) -> bool:
        return self.result.success


class WorkflowEngine:
    """
    Runs one workflow tree against durable stores.

    Example:
        tree = WorkflowTree.load("workflow.json")
        engine = WorkflowEngine(tree, ScriptedExecutor(), storage_dir=".reactree")
        outcome = await engine.run({"feature": "auth"})
        outcome.result.status  # ResultStatus.SUCCESS

    Pass ``persist=False`` to keep every store in memory.
    """

    def __init__(
        self,
        tree: WorkflowTree,
        executor: NodeExecutor,
        config: EngineConfig | None = None,
        storage_dir: Path | str | None = None,
        signals: SignalProviders | None = None,
        persist: bool = True,
        clock: Callable[[], float] = time.time,
        loop_clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.tree = tree
        self.executor = executor
        self.config = config or EngineConfig()
        self.storage_dir = Path(storage_dir or self.config.storage_dir) if persist else None
        self._loop_clock = loop_clock

        self.state_log = StateLog(self._store_path(STATE_FILE))
        self.feedback_queue = FeedbackQueue(self._store_path(FEEDBACK_FILE))
        self.memory = WorkingMemory(self._store_path(MEMORY_FILE))
        self.condition_cache = ConditionCache(
            ConditionEvaluator(signals),
            self.memory,
            ttl_seconds=self.config.condition_cache_ttl_seconds,
            clock=clock,
            path=self._store_path(CONDITION_CACHE_FILE),
        )
        self.episodes = EpisodeStore(self._store_path(EPISODES_FILE))
        self.feedback_router = FeedbackRouter(
            tree,
            self.feedback_queue,
            self.state_log,
            self.memory,
            max_rounds=self.config.max_feedback_rounds,
            max_chain_depth=self.config.max_feedback_chain_depth,
            ancestor_search_cap=self.config.ancestor_search_cap,
            chain_hop_cap=self.config.chain_hop_cap,
        )
        self.orchestrator = self._build_orchestrator()

    @classmethod
    def load(
        cls,
        path: Path | str,
        executor: NodeExecutor,
        overrides: Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> WorkflowEngine:
        """Build an engine from a workflow document.

        The document's ``"engine"`` block supplies config values; ``overrides``
        win over it.
        """
        path = Path(path)
        data = json.loads(path.read_text(encoding="utf-8"))
        engine_block = data.get("engine", {}) if "root" in data else {}
        config = EngineConfig.from_dict({**engine_block, **(overrides or {})})
        return cls(WorkflowTree.load(path), executor, config=config, **kwargs)

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------

    async def run(
        self,
        input_data: Mapping[str, Any] | None = None,
        resume: bool = False,
    ) -> RunOutcome:
        """Execute the tree once.

        With ``resume=True``, nodes that completed successfully in an earlier
        run (and are not inside a LOOP) are skipped.
        """
        run_id = _new_run_id()
        self.state_log.run_id = run_id
        set_trace_context(run_id=run_id, workflow_id=self.tree.workflow_id)

        skip = self.resumable_nodes() if resume else set()
        self.orchestrator = self._build_orchestrator(skip)

        if input_data:
            self.memory.write_many(input_data, agent="input")

        started_at = utc_now_iso()
        start = time.monotonic()
        logger.info(
            "Starting workflow '%s' (run %s%s)",
            self.tree.workflow_id,
            run_id,
            f", resuming past {len(skip)} node(s)" if resume else "",
        )

        ctx = ExecContext(memory=self.memory, run_id=run_id)
        try:
            result = await self.orchestrator.execute(self.tree.root, ctx)
        except ReactreeError as e:
            self._record_episode(run_id, "error", str(e), started_at, start, resume)
            raise

        state = replay_events(self.state_log.records())
        self._record_episode(run_id, str(result.status), result.detail, started_at, start, resume)
        logger.info(
            "Workflow '%s' finished: %s",
            self.tree.workflow_id,
            result.status,
            extra={"event": "workflow_complete"},
        )
        return RunOutcome(run_id=run_id, result=result, state=state)

    async def route_feedback(
        self,
        message: FeedbackMessage | Mapping[str, Any],
    ) -> FeedbackMessage:
        """Route feedback collected outside of an ACTION result."""
        return await self.feedback_router.route(
            message, ExecContext(memory=self.memory, run_id=self.state_log.run_id)
        )

    def replay(self) -> WorkflowState:
        return replay_events(self.state_log.records())

    def resumable_nodes(self) -> set[str]:
        """Nodes a resumed run may skip: last status success, not inside a LOOP."""
        state = self.replay()
        return {
            node_id
            for node_id in state.succeeded()
            if node_id in self.tree and not self.tree.is_inside_loop(node_id)
        }

    # -------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------

    def _store_path(self, name: str) -> Path | None:
        return self.storage_dir / name if self.storage_dir is not None else None

    def _build_orchestrator(self, skip_completed: Iterable[str] = ()) -> Orchestrator:
        orchestrator = Orchestrator(
            self.executor,
            self.state_log,
            self.condition_cache,
            feedback_router=self.feedback_router,
            default_loop_timeout_seconds=self.config.default_loop_timeout_seconds,
            loop_clock=self._loop_clock,
            skip_completed=skip_completed,
        )
        self.feedback_router.executor = orchestrator
        return orchestrator

    def _record_episode(
        self,
        run_id: str,
        status: str,
        detail: str,
        started_at: str,
        start: float,
        resumed: bool,
    ) -> None:
        """Append the run summary. Failures are logged and never propagate."""
        try:
            run_state = replay_events(self.state_log.events(run_id=run_id))
            self.episodes.record(
                Episode(
                    run_id=run_id,
                    workflow_id=self.tree.workflow_id,
                    status=status,
                    detail=detail,
                    started_at=started_at,
                    duration_ms=int((time.monotonic() - start) * 1000),
                    resumed=resumed,
                    nodes_executed=self.orchestrator.nodes_executed,
                    loop_outcomes={k: v.status for k, v in run_state.loops.items()},
                    feedback_outcomes={k: v.status for k, v in run_state.feedback.items()},
                )
            )
        except Exception:
            logger.exception("Failed to save episode for run_id=%s (non-fatal)", run_id)


def _new_run_id() -> str:
    ts = datetime.now(UTC).strftime("%Y%m%dT%H%M%S")
    return f"{ts}_{uuid.uuid4().hex[:8]}"
