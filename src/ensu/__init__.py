"""ensu: streaming chat orchestration for on-device and remote language models.

Usage:
    from ensu import StreamCoordinator, SessionStore, create_llm_provider

    provider = create_llm_provider("remote", api_key="sk-...")
    store = SessionStore.create_session(provider="remote", model="gpt-4o-mini")
    run = await StreamCoordinator().run(provider, store, "Hello")
"""

from .chat import FinishReason, StreamCoordinator, StreamRun, TurnOutcome
from .config import AppConfig, load_config
from .errors import (
    BackendError,
    EnsuError,
    ModelLoadError,
    ModelNotLoadedError,
    ProviderTransportError,
    SessionValidationError,
    StreamCancelled,
)
from .llm import LLMProvider, StreamChunk, create_llm_provider
from .runtime import ModelLifecycleManager
from .session import SessionStore, create_session_repository
from .streaming import CancellationToken, ChunkDecoder

__version__ = "0.1.0"

__all__ = [
    "AppConfig",
    "load_config",
    "StreamCoordinator",
    "StreamRun",
    "TurnOutcome",
    "FinishReason",
    "LLMProvider",
    "StreamChunk",
    "create_llm_provider",
    "ModelLifecycleManager",
    "SessionStore",
    "create_session_repository",
    "CancellationToken",
    "ChunkDecoder",
    "EnsuError",
    "BackendError",
    "ProviderTransportError",
    "ModelLoadError",
    "ModelNotLoadedError",
    "StreamCancelled",
    "SessionValidationError",
]
