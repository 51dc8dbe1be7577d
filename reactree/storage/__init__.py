"""Append-only JSONL stores: state log, feedback queue, working memory."""

from reactree.storage.feedback_queue import FeedbackQueue
from reactree.storage.jsonl import JsonlStore, read_jsonl_as_models, repair_tail
from reactree.storage.memory_store import MemoryEntry, WorkingMemory
from reactree.storage.state_log import StateLog

__all__ = [
    "FeedbackQueue",
    "JsonlStore",
    "MemoryEntry",
    "StateLog",
    "WorkingMemory",
    "read_jsonl_as_models",
    "repair_tail",
]
