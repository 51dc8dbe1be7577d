"""
Tests for reactree.config.
"""

import json
from pathlib import Path

import pytest

import reactree.config
from reactree.config import (
    DEFAULT_LOOP_TIMEOUT_SECONDS,
    DEFAULT_MAX_FEEDBACK_CHAIN_DEPTH,
    DEFAULT_MAX_FEEDBACK_ROUNDS,
    EngineConfig,
    get_reactree_config,
)
from reactree.errors import ConfigurationError


@pytest.fixture
def config_file(tmp_path: Path, monkeypatch) -> Path:
    path = tmp_path / "configuration.json"
    monkeypatch.setattr(reactree.config, "REACTREE_CONFIG_FILE", path)
    return path


class TestConfigFile:
    def test_missing_file(self, config_file: Path):
        assert get_reactree_config() == {}

    def test_corrupt_file(self, config_file: Path):
        config_file.write_text("{not json")
        assert get_reactree_config() == {}

    def test_file_supplies_defaults(self, config_file: Path):
        config_file.write_text(
            json.dumps({"engine": {"max_feedback_rounds": 4, "storage_dir": "/var/reactree"}})
        )

        config = EngineConfig()

        assert config.max_feedback_rounds == 4
        assert config.storage_dir == "/var/reactree"
        assert config.max_feedback_chain_depth == DEFAULT_MAX_FEEDBACK_CHAIN_DEPTH

    def test_explicit_values_win(self, config_file: Path):
        config_file.write_text(json.dumps({"engine": {"max_feedback_rounds": 4}}))

        assert EngineConfig(max_feedback_rounds=1).max_feedback_rounds == 1

    def test_malformed_engine_block_ignored(self, config_file: Path):
        config_file.write_text(json.dumps({"engine": ["not", "a", "dict"]}))

        assert EngineConfig().max_feedback_rounds == DEFAULT_MAX_FEEDBACK_ROUNDS


class TestEngineConfig:
    def test_defaults(self, config_file: Path):
        config = EngineConfig()

        assert config.max_feedback_rounds == 2
        assert config.max_feedback_chain_depth == 3
        assert config.condition_cache_ttl_seconds == 300
        assert config.default_loop_timeout_seconds == DEFAULT_LOOP_TIMEOUT_SECONDS
        assert config.ancestor_search_cap == 10
        assert config.chain_hop_cap == 10
        assert config.storage_dir == ".reactree"

    def test_from_dict_ignores_unknown_keys(self, config_file: Path):
        config = EngineConfig.from_dict({"max_feedback_rounds": 3, "parallelism": 8})

        assert config.max_feedback_rounds == 3

    def test_from_none(self, config_file: Path):
        assert EngineConfig.from_dict(None) == EngineConfig()

    @pytest.mark.parametrize(
        "field_name, value",
        [
            ("max_feedback_rounds", 0),
            ("max_feedback_chain_depth", -1),
            ("condition_cache_ttl_seconds", 0),
            ("default_loop_timeout_seconds", "soon"),
            ("chain_hop_cap", True),
        ],
    )
    def test_non_positive_rejected(self, config_file: Path, field_name, value):
        with pytest.raises(ConfigurationError, match=field_name):
            EngineConfig(**{field_name: value})
