"""Episode schema: one summary record per workflow run (episodic memory)."""

from __future__ import annotations

from pydantic import BaseModel, Field


class Episode(BaseModel):
    """Run-level summary appended after every WorkflowEngine.run()."""

    run_id: str
    workflow_id: str = ""
    status: str = ""  # "success"|"failure"|"timeout"
    detail: str = ""
    started_at: str = ""  # ISO timestamp
    duration_ms: int = 0
    resumed: bool = False
    nodes_executed: int = 0
    loop_outcomes: dict[str, str] = Field(default_factory=dict)  # {loop_id: loop status}
    feedback_outcomes: dict[str, str] = Field(default_factory=dict)  # {"a->b": status}
