"""Tests for configuration loading."""
import logging

import pytest
import yaml
from pydantic import ValidationError

from ensu.config import DEFAULT_CONTEXT_LIMIT, AppConfig, configure_logging, load_config

ENV_VARS = [
    "ENSU_REMOTE_BASE_URL",
    "ENSU_REMOTE_API_KEY",
    "ENSU_OLLAMA_HOST",
    "ENSU_DEFAULT_PROVIDER",
    "ENSU_DEFAULT_MODEL",
    "ENSU_LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path, data) -> str:
    path = tmp_path / "ensu.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return str(path)


class TestLoadConfig:
    """Tests for load_config layering."""

    def test_defaults(self):
        config = load_config()

        assert config == AppConfig()
        assert config.defaults.provider == "local"
        assert config.context_warning_threshold == 0.8
        assert len(config.models_for_provider("local")) == 3

    def test_yaml_merges_sections(self, tmp_path):
        path = _write(tmp_path, {"remote": {"api_key": "sk-file"}, "defaults": {"temperature": 0.1}})

        config = load_config(path)

        assert config.remote.api_key == "sk-file"
        assert config.remote.base_url == "https://api.openai.com/v1"
        assert config.defaults.temperature == 0.1
        assert config.defaults.max_tokens == 2048

    def test_yaml_models_are_appended(self, tmp_path):
        """Test that configured models extend the built-in registry."""
        path = _write(tmp_path, {"models": [{"id": "gpt-4o-mini", "provider": "remote", "context": 128000}]})

        config = load_config(path)

        assert config.get_model_info("gpt-4o-mini").context == 128000
        assert config.get_model_info("SmolLM2-360M-Instruct-q4f16_1-MLC") is not None

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        path = _write(tmp_path, {"remote": {"api_key": "sk-file"}})
        monkeypatch.setenv("ENSU_REMOTE_API_KEY", "sk-env")
        monkeypatch.setenv("ENSU_OLLAMA_HOST", "http://gpu-box:11434")
        monkeypatch.setenv("ENSU_LOG_LEVEL", "DEBUG")

        config = load_config(path)

        assert config.remote.api_key == "sk-env"
        assert config.ollama.host == "http://gpu-box:11434"
        assert config.log_level == "DEBUG"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")

    def test_invalid_values_rejected(self, tmp_path):
        path = _write(tmp_path, {"context_warning_threshold": 1.5})

        with pytest.raises(ValidationError):
            load_config(path)


class TestModelRegistry:
    """Tests for model lookups."""

    def test_context_limit_of_registered_model(self, config):
        assert config.context_limit("tiny-remote") == 100

    def test_context_limit_of_unknown_model(self, config):
        assert config.context_limit("mystery") == DEFAULT_CONTEXT_LIMIT
        assert config.context_limit(None) == DEFAULT_CONTEXT_LIMIT

    def test_models_for_provider(self, config):
        assert [m.id for m in config.models_for_provider("remote")] == ["tiny-remote"]


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_level_from_argument(self, monkeypatch):
        calls = []
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

        configure_logging("debug")

        assert calls[0]["level"] == "DEBUG"

    def test_level_from_environment(self, monkeypatch):
        calls = []
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
        monkeypatch.setenv("ENSU_LOG_LEVEL", "info")

        configure_logging()

        assert calls[0]["level"] == "INFO"
