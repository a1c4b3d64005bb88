from .local import LocalProvider
from .ollama import OllamaProvider
from .openai import OpenAIProvider

__all__ = ["LocalProvider", "OllamaProvider", "OpenAIProvider"]
