from typing import Any

from .base import LLMProvider
from .providers import LocalProvider, OllamaProvider, OpenAIProvider


def create_llm_provider(provider: str, **config: Any) -> LLMProvider:
    """Create a chat provider instance.

    This factory function hides the instantiation logic for different providers.

    Args:
        provider: Provider type ('remote', 'ollama', 'local')
        **config: Provider-specific configuration
            For remote (OpenAI-compatible):
                - api_key: str (required)
                - base_url: str (default: 'https://api.openai.com/v1')
                - model: str (default: 'gpt-4o')
                - api_types: dict[str, 'chat' | 'responses'] | None
                - http_client: httpx.AsyncClient | None
            For ollama:
                - host: str (default: 'http://localhost:11434')
                - model: str (default: 'llama3.2')
                - http_client: httpx.AsyncClient | None
            For local (on-device):
                - lifecycle: ModelLifecycleManager (required)

    Returns:
        Initialized provider instance

    Raises:
        ValueError: If provider type is not supported
        TypeError: If required configuration is missing

    Examples:
        >>> provider = create_llm_provider(
        ...     "remote",
        ...     api_key="sk-...",
        ...     base_url="https://api.openai.com/v1"
        ... )

        >>> provider = create_llm_provider("local", lifecycle=manager)
    """
    provider_lower = provider.lower()

    if provider_lower in ("remote", "openai"):
        if not config.get("api_key"):
            raise TypeError("Remote provider requires 'api_key' in config")
        return OpenAIProvider(**config)

    if provider_lower == "ollama":
        return OllamaProvider(**config)

    if provider_lower == "local":
        if "lifecycle" not in config:
            raise TypeError("Local provider requires 'lifecycle' in config")
        return LocalProvider(**config)

    raise ValueError(
        f"Unsupported provider: {provider}. "
        f"Supported providers: 'remote', 'ollama', 'local'"
    )
