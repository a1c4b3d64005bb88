"""Application configuration and model registry.

Configuration is layered: built-in defaults, then an optional YAML file,
then environment variables (a ``.env`` file is honored via python-dotenv).
"""

import logging
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_CONTEXT_LIMIT = 4096
DEFAULT_WARNING_THRESHOLD = 0.8
DEFAULT_SYSTEM_PROMPT = "You are a helpful, friendly assistant. Be concise in your responses."

ApiType = Literal["chat", "responses"]


class ModelInfo(BaseModel):
    """A model known to the application."""

    id: str = Field(description="Model identifier sent to the backend")
    name: str | None = Field(default=None, description="Display name")
    provider: str = Field(default="local", description="Provider tag: 'local', 'remote' or 'ollama'")
    context: int = Field(default=DEFAULT_CONTEXT_LIMIT, gt=0, description="Context window in tokens")
    vram_required_mb: int | None = Field(default=None, description="Approximate download/VRAM size in MB")
    api_type: ApiType | None = Field(
        default=None,
        description="Remote API flavor; None lets the provider decide from the model id"
    )
    description: str = ""


class DefaultSettings(BaseModel):
    """Defaults applied to new sessions."""

    provider: str = "local"
    model: str | None = "Llama-3.2-3B-Instruct-q4f16_1-MLC"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2048, gt=0)
    top_p: float | None = Field(default=0.9, ge=0.0, le=1.0)
    system_prompt: str = DEFAULT_SYSTEM_PROMPT


class RemoteSettings(BaseModel):
    """OpenAI-compatible HTTP backend."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str | None = None


class OllamaSettings(BaseModel):
    """Ollama-compatible NDJSON backend."""

    host: str = "http://localhost:11434"


class AppConfig(BaseModel):
    """Complete application configuration."""

    defaults: DefaultSettings = Field(default_factory=DefaultSettings)
    remote: RemoteSettings = Field(default_factory=RemoteSettings)
    ollama: OllamaSettings = Field(default_factory=OllamaSettings)
    models: list[ModelInfo] = Field(default_factory=lambda: list(BUILTIN_MODELS))
    context_warning_threshold: float = Field(default=DEFAULT_WARNING_THRESHOLD, gt=0.0, le=1.0)
    default_context_limit: int = Field(default=DEFAULT_CONTEXT_LIMIT, gt=0)
    log_level: str = "WARNING"

    def get_model_info(self, model_id: str | None) -> ModelInfo | None:
        """Look up a registered model by id."""
        if model_id is None:
            return None
        for model in self.models:
            if model.id == model_id:
                return model
        return None

    def context_limit(self, model_id: str | None) -> int:
        """Context window of a model, or the default limit if it is unknown."""
        info = self.get_model_info(model_id)
        return info.context if info else self.default_context_limit

    def models_for_provider(self, provider: str) -> list[ModelInfo]:
        return [m for m in self.models if m.provider == provider]


BUILTIN_MODELS = (
    ModelInfo(
        id="Llama-3.2-3B-Instruct-q4f16_1-MLC",
        name="Llama 3.2 3B",
        provider="local",
        vram_required_mb=2264,
        description="Meta Llama 3.2 3B - runs locally",
    ),
    ModelInfo(
        id="SmolLM2-360M-Instruct-q4f16_1-MLC",
        name="SmolLM2 360M",
        provider="local",
        vram_required_mb=376,
        description="HuggingFace SmolLM2 360M - tiny and fast",
    ),
    ModelInfo(
        id="Llama-3.2-1B-Instruct-q4f16_1-MLC",
        name="Llama 3.2 1B",
        provider="local",
        vram_required_mb=879,
        description="Meta Llama 3.2 1B - small, runs locally",
    ),
)

# Environment variable -> (section, key)
_ENV_OVERRIDES = {
    "ENSU_REMOTE_BASE_URL": ("remote", "base_url"),
    "ENSU_REMOTE_API_KEY": ("remote", "api_key"),
    "ENSU_OLLAMA_HOST": ("ollama", "host"),
    "ENSU_DEFAULT_PROVIDER": ("defaults", "provider"),
    "ENSU_DEFAULT_MODEL": ("defaults", "model"),
}


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: str | Path | None = None) -> AppConfig:
    """Build the application configuration.

    Args:
        path: Optional YAML file. Its ``models`` list is appended to the
            built-in registry; every other section is merged key by key.

    Returns:
        Validated AppConfig

    Raises:
        FileNotFoundError: If an explicit path does not exist
        pydantic.ValidationError: If the merged configuration is invalid
    """
    load_dotenv()

    data: dict[str, Any] = AppConfig().model_dump()

    if path is not None:
        config_path = Path(path)
        with config_path.open(encoding="utf-8") as fh:
            user_config = yaml.safe_load(fh) or {}
        extra_models = user_config.pop("models", None) or []
        data = _merge(data, user_config)
        data["models"] = data["models"] + extra_models

    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            data[section][key] = value

    if os.getenv("ENSU_LOG_LEVEL"):
        data["log_level"] = os.environ["ENSU_LOG_LEVEL"]

    return AppConfig.model_validate(data)


def configure_logging(level: str | int | None = None) -> None:
    """Configure root logging for command-line use."""
    if level is None:
        level = os.getenv("ENSU_LOG_LEVEL", "WARNING")
    if isinstance(level, str):
        level = level.upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
