"""Append-only JSONL storage shared by every reactree store.

One JSON object per line, appended on write. This keeps each store
crash-resilient: data is on disk as soon as it is recorded, and a record
torn by a crash can only ever be the final line. That partial line is
truncated away when the store is reopened, before anything new is
appended after it.

Stores fall back to a purely in-memory list when no path is given.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Generic, TypeVar

from pydantic import BaseModel

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


class JsonlStore(Generic[RecordT]):
    """Base class for append-only record stores.

    Thread-safe: appends are serialised by a lock; reads take a snapshot
    of the record list and never block writers.
    """

    model_cls: type[BaseModel]

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._records: list[RecordT] = []
        self._lock = threading.Lock()
        if self._path is not None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            repair_tail(self._path)
            self._records.extend(read_jsonl_as_models(self._path, self.model_cls))

    @property
    def path(self) -> Path | None:
        return self._path

    def records(self) -> list[RecordT]:
        """Snapshot of every record in append order."""
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def _append(self, record: RecordT) -> RecordT:
        with self._lock:
            self._write_locked(record)
        return record

    def _write_locked(self, record: RecordT) -> None:
        """Persist then publish one record. Caller must hold ``self._lock``."""
        if self._path is not None:
            append_jsonl(self._path, record)
        self._records.append(record)


# -------------------------------------------------------------------
# Module-level helpers
# -------------------------------------------------------------------


def append_jsonl(path: Path, record: BaseModel) -> None:
    """Append one JSONL line. Sync."""
    line = json.dumps(record.model_dump(mode="json"), ensure_ascii=False) + "\n"
    with open(path, "a", encoding="utf-8") as f:
        f.write(line)


def repair_tail(path: Path) -> bool:
    """Truncate a partially-written final record. Returns True if one was removed."""
    if not path.exists():
        return False
    data = path.read_bytes()
    if not data or data.endswith(b"\n"):
        return False
    keep = data.rfind(b"\n") + 1
    logger.warning(
        "Discarding partial record at end of %s (%d bytes)", path, len(data) - keep
    )
    with open(path, "r+b") as f:
        f.truncate(keep)
    return True


def read_jsonl_as_models(path: Path, model_cls: type[RecordT]) -> list[RecordT]:
    """Parse a JSONL file into a list of Pydantic model instances.

    Skips blank lines and corrupt lines (partial writes from crashes).
    """
    results: list[RecordT] = []
    if not path.exists():
        return results
    try:
        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    results.append(model_cls.model_validate(json.loads(line)))
                except (json.JSONDecodeError, ValueError) as e:
                    logger.warning("Skipping corrupt JSONL line in %s: %s", path, e)
                    continue
    except OSError as e:
        logger.warning("Failed to read %s: %s", path, e)
    return results
