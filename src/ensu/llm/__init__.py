from .base import LLMProvider
from .factory import create_llm_provider
from .models import ChatMessage, GenerationOptions, LLMResponse, StreamChunk, StreamingResponse
from .normalize import get_normalizer
from .providers import LocalProvider, OllamaProvider, OpenAIProvider

__all__ = [
    "LLMProvider",
    "create_llm_provider",
    "ChatMessage",
    "GenerationOptions",
    "LLMResponse",
    "StreamChunk",
    "StreamingResponse",
    "get_normalizer",
    "LocalProvider",
    "OllamaProvider",
    "OpenAIProvider",
]
