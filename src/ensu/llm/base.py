from abc import ABC, abstractmethod
from typing import Any

from ..streaming.cancellation import CancellationToken
from .models import ChatMessage, GenerationOptions, LLMResponse, StreamingResponse


class LLMProvider(ABC):
    """Abstract base class for chat providers.

    This module hides the design decision of which backend generates text.
    Implementations must handle provider-specific details like:
    - Transport setup and authentication
    - Request format conversion
    - Normalizing incremental payloads into StreamChunk
    - Wiring a CancellationToken into the transport's own abort mechanism

    Supports async context manager protocol for proper resource cleanup:
        async with provider:
            response = await provider.chat(model, messages)
        # Automatically cleaned up
    """

    #: Provider tag stored on sessions ("remote", "ollama", "local")
    name: str = "base"

    @property
    def is_local(self) -> bool:
        """Whether generation needs an on-device model to be loaded first."""
        return False

    @abstractmethod
    async def chat(
        self,
        model: str,
        messages: list[ChatMessage],
        options: GenerationOptions | None = None,
        **kwargs: Any
    ) -> LLMResponse:
        """Generate a complete (non-streaming) chat response.

        Args:
            model: Model identifier
            messages: Conversation history, oldest first
            options: Sampling options (provider defaults when None)
            **kwargs: Provider-specific parameters

        Returns:
            LLMResponse containing generated content and metadata

        Raises:
            BackendError: The backend answered with a non-success status
            ProviderTransportError: The backend could not be reached
        """

    @abstractmethod
    async def chat_stream(
        self,
        model: str,
        messages: list[ChatMessage],
        options: GenerationOptions | None = None,
        cancel_token: CancellationToken | None = None,
        **kwargs: Any
    ) -> StreamingResponse:
        """Start a streaming chat response.

        The request is opened before this coroutine returns, so a
        non-success status raises here rather than from the iterator.
        Once iteration has begun, failures are delivered as a terminal
        chunk carrying ``error`` instead of an exception.

        Args:
            model: Model identifier
            messages: Conversation history, oldest first
            options: Sampling options (provider defaults when None)
            cancel_token: Token whose cancellation aborts the request
            **kwargs: Provider-specific parameters

        Returns:
            StreamingResponse yielding StreamChunk in arrival order; the
            last chunk has ``done=True``. Usage is available afterwards.

        Raises:
            BackendError: The backend answered with a non-success status
            ProviderTransportError: The backend could not be reached
        """

    @abstractmethod
    async def health_check(self) -> dict[str, Any]:
        """Report whether the backend is reachable."""

    @abstractmethod
    async def list_models(self) -> list[str]:
        """List model identifiers the backend can serve."""

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections or resources."""

    async def __aenter__(self) -> "LLMProvider":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit with automatic cleanup.

        Note: Suppresses "Event loop is closed" errors during cleanup.
        This is a known harmless race condition in httpx/anyio cleanup:
        https://github.com/encode/httpx/issues/914
        """
        try:
            await self.close()
        except RuntimeError as e:
            if "Event loop is closed" not in str(e):
                raise
