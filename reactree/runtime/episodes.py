"""EpisodeStore: one summary record per workflow run (episodic memory)."""

from __future__ import annotations

import logging

from reactree.schemas.episode import Episode
from reactree.storage.jsonl import JsonlStore

logger = logging.getLogger(__name__)


class EpisodeStore(JsonlStore[Episode]):
    """Append-only run summaries, persisted as JSONL when given a path."""

    model_cls = Episode

    def record(self, episode: Episode) -> Episode:
        self._append(episode)
        logger.info(
            "Episode saved: run_id=%s status=%s nodes=%d",
            episode.run_id,
            episode.status,
            episode.nodes_executed,
        )
        return episode

    def for_workflow(self, workflow_id: str) -> list[Episode]:
        return [e for e in self._records[:] if e.workflow_id == workflow_id]

    def latest(self, workflow_id: str | None = None) -> Episode | None:
        for episode in reversed(self._records[:]):
            if workflow_id is None or episode.workflow_id == workflow_id:
                return episode
        return None
