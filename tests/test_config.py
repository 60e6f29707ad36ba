"""Tests for sprintscore.config."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

from sprintscore.config import DEFAULT_BATCH_LIMIT, DEFAULT_DB_PATH, Config
from sprintscore.evaluation.ai import DEFAULT_MODEL


class TestConfigDefaults:
    def test_default_values(self):
        config = Config()
        assert config.github_token == ""
        assert config.anthropic_api_key == ""
        assert config.db_path == DEFAULT_DB_PATH
        assert config.model == DEFAULT_MODEL
        assert config.quality_delay == 1.0
        assert config.consistency_delay == 2.0
        assert config.batch_limit == DEFAULT_BATCH_LIMIT


class TestConfigLoad:
    def test_load_from_env(self):
        env = {
            "SPRINTSCORE_GITHUB_TOKEN": "ghp_test123",
            "ANTHROPIC_API_KEY": "sk-ant-test",
            "SPRINTSCORE_DB_PATH": "/tmp/test.db",
            "SPRINTSCORE_MODEL": "claude-test",
            "SPRINTSCORE_QUALITY_DELAY": "0.5",
            "SPRINTSCORE_CONSISTENCY_DELAY": "3",
            "SPRINTSCORE_BATCH_LIMIT": "15",
        }
        with patch.dict(os.environ, env, clear=True):
            config = Config.load()
        assert config.github_token == "ghp_test123"
        assert config.anthropic_api_key == "sk-ant-test"
        assert config.db_path == Path("/tmp/test.db")
        assert config.model == "claude-test"
        assert config.quality_delay == 0.5
        assert config.consistency_delay == 3.0
        assert config.batch_limit == 15

    def test_load_empty_env(self):
        with patch.dict(os.environ, {}, clear=True):
            config = Config.load()
        assert config.github_token == ""
        assert config.db_path == DEFAULT_DB_PATH
        assert config.model == DEFAULT_MODEL

    def test_invalid_numbers_fall_back(self):
        env = {
            "SPRINTSCORE_QUALITY_DELAY": "soon",
            "SPRINTSCORE_CONSISTENCY_DELAY": "-4",
            "SPRINTSCORE_BATCH_LIMIT": "many",
        }
        with patch.dict(os.environ, env, clear=True):
            config = Config.load()
        assert config.quality_delay == 1.0
        assert config.consistency_delay == 0.0
        assert config.batch_limit == DEFAULT_BATCH_LIMIT

    def test_batch_limit_is_clamped(self):
        with patch.dict(os.environ, {"SPRINTSCORE_BATCH_LIMIT": "50"}, clear=True):
            assert Config.load().batch_limit == 20
        with patch.dict(os.environ, {"SPRINTSCORE_BATCH_LIMIT": "0"}, clear=True):
            assert Config.load().batch_limit == 1


class TestConfigValidate:
    def test_valid_config(self):
        config = Config(github_token="ghp_test", anthropic_api_key="sk-ant-test")
        assert config.validate() == []

    def test_missing_everything(self):
        issues = Config().validate()
        assert len(issues) == 2
        assert any("SPRINTSCORE_GITHUB_TOKEN" in i for i in issues)
        assert any("ANTHROPIC_API_KEY" in i for i in issues)

    def test_anthropic_not_needed(self):
        config = Config(github_token="ghp_test")
        assert config.validate(need_anthropic=False) == []

    def test_github_not_needed(self):
        config = Config(anthropic_api_key="sk-ant-test")
        assert config.validate(need_github=False) == []
