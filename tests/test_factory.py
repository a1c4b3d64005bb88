"""Tests for the provider factory."""
import pytest
from hypothesis import given
from hypothesis import strategies as st

from ensu.llm import LocalProvider, OllamaProvider, OpenAIProvider, create_llm_provider


class TestProviderFactory:
    """Tests for create_llm_provider."""

    @pytest.mark.parametrize("kind", ["remote", "openai", "Remote"])
    def test_create_remote_provider(self, kind):
        """Test creating the OpenAI-compatible provider via factory."""
        provider = create_llm_provider(kind, api_key="test-key", base_url="https://llm.example/v1")

        assert isinstance(provider, OpenAIProvider)
        assert provider.name == "remote"
        assert not provider.is_local

    def test_remote_requires_api_key(self):
        """Test that missing API key raises TypeError."""
        with pytest.raises(TypeError, match="requires 'api_key'"):
            create_llm_provider("remote")

    def test_create_ollama_provider(self):
        provider = create_llm_provider("ollama", host="http://gpu-box:11434")

        assert isinstance(provider, OllamaProvider)
        assert provider.name == "ollama"

    def test_create_local_provider(self, lifecycle):
        provider = create_llm_provider("local", lifecycle=lifecycle)

        assert isinstance(provider, LocalProvider)
        assert provider.is_local
        assert provider.lifecycle is lifecycle

    def test_local_requires_lifecycle(self):
        """Test that the on-device provider cannot be built without a lifecycle."""
        with pytest.raises(TypeError, match="requires 'lifecycle'"):
            create_llm_provider("local")

    def test_unknown_provider(self):
        """Test that unknown provider type raises ValueError."""
        with pytest.raises(ValueError, match="Unsupported provider"):
            create_llm_provider("anthropic", api_key="test-key")

    @given(st.text(min_size=1))
    def test_factory_with_random_provider_names(self, provider_name: str):
        """Property test: Factory should only accept known providers."""
        if provider_name.lower() in ("remote", "openai", "ollama", "local"):
            return
        with pytest.raises(ValueError):
            create_llm_provider(provider_name, api_key="fake")
