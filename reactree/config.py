"""Shared reactree configuration utilities.

Centralises reading of ~/.reactree/configuration.json so that the CLI
and every embedding application share one implementation. The engine
never owns its limits: callers pass an EngineConfig, and the file only
supplies defaults for fields the caller leaves alone.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from reactree.errors import ConfigurationError

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

REACTREE_CONFIG_FILE = Path.home() / ".reactree" / "configuration.json"

DEFAULT_MAX_FEEDBACK_ROUNDS = 2
DEFAULT_MAX_FEEDBACK_CHAIN_DEPTH = 3
DEFAULT_CONDITION_CACHE_TTL_SECONDS = 300.0
DEFAULT_LOOP_TIMEOUT_SECONDS = 600.0
DEFAULT_ANCESTOR_SEARCH_CAP = 10
DEFAULT_CHAIN_HOP_CAP = 10
DEFAULT_STORAGE_DIR = ".reactree"


def get_reactree_config() -> dict[str, Any]:
    """Load reactree configuration from ~/.reactree/configuration.json."""
    if not REACTREE_CONFIG_FILE.exists():
        return {}
    try:
        with open(REACTREE_CONFIG_FILE, encoding="utf-8-sig") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}


def _engine_setting(name: str, default: Any) -> Any:
    engine = get_reactree_config().get("engine", {})
    if not isinstance(engine, dict):
        return default
    return engine.get(name, default)


# ---------------------------------------------------------------------------
# EngineConfig
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Limits and locations consumed by the control-flow engine."""

    max_feedback_rounds: int = field(
        default_factory=lambda: _engine_setting("max_feedback_rounds", DEFAULT_MAX_FEEDBACK_ROUNDS)
    )
    max_feedback_chain_depth: int = field(
        default_factory=lambda: _engine_setting(
            "max_feedback_chain_depth", DEFAULT_MAX_FEEDBACK_CHAIN_DEPTH
        )
    )
    condition_cache_ttl_seconds: float = field(
        default_factory=lambda: _engine_setting(
            "condition_cache_ttl_seconds", DEFAULT_CONDITION_CACHE_TTL_SECONDS
        )
    )
    default_loop_timeout_seconds: float = field(
        default_factory=lambda: _engine_setting(
            "default_loop_timeout_seconds", DEFAULT_LOOP_TIMEOUT_SECONDS
        )
    )
    ancestor_search_cap: int = DEFAULT_ANCESTOR_SEARCH_CAP
    chain_hop_cap: int = DEFAULT_CHAIN_HOP_CAP
    storage_dir: str = field(
        default_factory=lambda: _engine_setting("storage_dir", DEFAULT_STORAGE_DIR)
    )

    def __post_init__(self) -> None:
        for name in (
            "max_feedback_rounds",
            "max_feedback_chain_depth",
            "condition_cache_ttl_seconds",
            "default_loop_timeout_seconds",
            "ancestor_search_cap",
            "chain_hop_cap",
        ):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive number, got {value!r}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "EngineConfig":
        """Build a config from a plain mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})
