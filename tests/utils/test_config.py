"""Tests for YAML config loading with env var resolution."""

import os
from unittest.mock import patch

import pytest

from nlquery.config import NLQueryConfig, load_config, resolve_env_vars


@pytest.fixture
def clean_env(tmp_path, monkeypatch):
    """Run from an empty directory with no NLQUERY_* overrides."""
    for key in list(os.environ):
        if key.startswith("NLQUERY_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    return tmp_path


class TestResolveEnvVars:
    def test_substitutes_known_vars(self):
        with patch.dict(os.environ, {"GEN_HOST": "gpu-box"}):
            assert resolve_env_vars("http://${GEN_HOST}:11434") == "http://gpu-box:11434"

    def test_missing_vars_become_empty(self):
        with patch.dict(os.environ, {}, clear=True):
            assert resolve_env_vars("key=${NOPE}") == "key="


class TestLoadConfig:
    def test_defaults_without_file(self, clean_env):
        config = load_config()

        assert isinstance(config, NLQueryConfig)
        assert config.generation.base_url == "http://localhost:11434"
        assert config.engines.connect_timeout_seconds == 30
        assert config.delivery.subscriber_queue_size == 256

    def test_yaml_file_in_working_directory(self, clean_env):
        (clean_env / "nlquery.yaml").write_text(
            "generation:\n"
            "  base_url: http://models.internal:11434/\n"
            "  model: qwen2.5-coder\n"
            "engines:\n"
            "  document_sample_size: 25\n"
        )

        config = load_config()

        assert config.generation.base_url == "http://models.internal:11434"
        assert config.generation.model == "qwen2.5-coder"
        assert config.engines.document_sample_size == 25

    def test_yaml_values_resolve_env_refs(self, clean_env, monkeypatch):
        monkeypatch.setenv("GEN_KEY", "k-123")
        path = clean_env / "custom.yaml"
        path.write_text("generation:\n  api_key: ${GEN_KEY}\n")

        config = load_config(str(path))

        assert config.generation.api_key == "k-123"

    def test_env_overrides_beat_yaml(self, clean_env, monkeypatch):
        path = clean_env / "custom.yaml"
        path.write_text("server:\n  port: 9000\n")
        monkeypatch.setenv("NLQUERY_SERVER_PORT", "9100")
        monkeypatch.setenv("NLQUERY_GENERATION_BASE_URL", "http://other:1234")

        config = load_config(str(path))

        assert config.server.port == 9100
        assert config.generation.base_url == "http://other:1234"

    def test_config_path_env(self, clean_env, monkeypatch):
        path = clean_env / "from-env.yaml"
        path.write_text("delivery:\n  ping_interval_seconds: 2.5\n")
        monkeypatch.setenv("NLQUERY_CONFIG_PATH", str(path))

        assert load_config().delivery.ping_interval_seconds == 2.5

    def test_explicit_missing_path_raises(self, clean_env):
        with pytest.raises(FileNotFoundError):
            load_config(str(clean_env / "absent.yaml"))
