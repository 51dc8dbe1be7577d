"""
Run-scoped logging for the control-flow engine.

Every record emitted while a workflow runs is tagged with the run it
belongs to, without threading ids through call signatures:

    WorkflowEngine.run()      set_trace_context(run_id=..., workflow_id=...)
        ↓ ContextVar (copied into asyncio tasks, isolated per thread)
    Orchestrator / controllers  logger.info(..., extra={"event": ..., "node_id": ...})
        ↓
    StructuredFormatter       one JSON object per line (LOG_FORMAT=json / ENV=production)
    HumanReadableFormatter    "[INFO    ] [run:1a2b3c4d | wf:feature | node:fix_loop] ..."
"""

import json
import logging
import os
import re
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

trace_context: ContextVar[dict[str, Any] | None] = ContextVar("trace_context", default=None)

# Per-record attributes the engine passes through ``extra``
RECORD_FIELDS = ("event", "node_id", "iteration", "round", "from_node", "to_node", "check")

_ANSI = re.compile(r"\x1b\[[0-9;]*m")

_LEVEL_COLORS = {
    logging.DEBUG: "\x1b[36m",
    logging.INFO: "\x1b[32m",
    logging.WARNING: "\x1b[33m",
    logging.ERROR: "\x1b[31m",
    logging.CRITICAL: "\x1b[35m",
}
_RESET = "\x1b[0m"


def strip_ansi_codes(text: str) -> str:
    return _ANSI.sub("", text)


def _record_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {
        name: getattr(record, name)
        for name in RECORD_FIELDS
        if getattr(record, name, None) is not None
    }


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: timestamp, level, logger, message, trace
    context, then any engine fields found on the record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": strip_ansi_codes(record.getMessage()),
            **(trace_context.get() or {}),
            **_record_fields(record),
        }
        if record.exc_info:
            entry["exception"] = strip_ansi_codes(self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Single coloured line per record, prefixed with the run and node it concerns."""

    def format(self, record: logging.LogRecord) -> str:
        tags = []
        context = trace_context.get() or {}
        if context.get("run_id"):
            tags.append(f"run:{context['run_id'][-8:]}")
        if context.get("workflow_id"):
            tags.append(f"wf:{context['workflow_id']}")
        node_id = getattr(record, "node_id", None)
        if node_id:
            tags.append(f"node:{node_id}")

        color = _LEVEL_COLORS.get(record.levelno, "")
        line = f"{color}[{record.levelname:<8}]{_RESET} "
        if tags:
            line += f"[{' | '.join(tags)}] "
        line += record.getMessage()

        event = getattr(record, "event", None)
        if event is not None:
            line += f" [{event}]"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _resolve_format(format: str) -> str:
    if format != "auto":
        return format
    if os.getenv("LOG_FORMAT", "").lower() == "json":
        return "json"
    if os.getenv("ENV", "development").lower() == "production":
        return "json"
    return "human"


def configure_logging(level: str = "INFO", format: str = "auto") -> logging.Handler:
    """
    Install a single stderr handler on the root logger.

    Args:
        level: Level name, case-insensitive ("debug", "INFO", ...)
        format: "json", "human", or "auto" (JSON when LOG_FORMAT=json or
            ENV=production)

    Returns:
        The installed handler.
    """
    handler = logging.StreamHandler()
    if _resolve_format(format) == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(HumanReadableFormatter())

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())
    return handler


def set_trace_context(**fields: Any) -> None:
    """Merge ``fields`` into the trace context of the current task or thread."""
    trace_context.set({**(trace_context.get() or {}), **fields})


def get_trace_context() -> dict[str, Any]:
    """Copy of the current trace context; empty when nothing is set."""
    return dict(trace_context.get() or {})


def clear_trace_context() -> None:
    trace_context.set(None)
