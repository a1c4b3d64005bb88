from collections.abc import AsyncIterator
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class StreamChunk(BaseModel):
    """One unit of a streaming chat response.

    Exactly one of ``delta``, ``thinking`` or the terminal signal is
    meaningful per chunk. ``done=True`` is the only terminal marker; it may
    carry an ``error`` when the stream failed after it had started.
    """

    model_config = ConfigDict(frozen=True)

    delta: str | None = Field(default=None, description="Incremental content text")
    thinking: str | None = Field(default=None, description="Incremental reasoning text")
    done: bool = Field(default=False, description="Terminal marker")
    error: str | None = Field(default=None, description="Mid-stream failure message")

    @model_validator(mode="after")
    def _check_exclusive(self) -> "StreamChunk":
        if self.done and (self.delta or self.thinking):
            raise ValueError("A terminal chunk cannot carry content")
        if self.delta is not None and self.thinking is not None:
            raise ValueError("A chunk carries either content or thinking, not both")
        if self.error is not None and not self.done:
            raise ValueError("Errors are only reported on terminal chunks")
        return self

    @classmethod
    def content(cls, text: str) -> "StreamChunk":
        return cls(delta=text)

    @classmethod
    def reasoning(cls, text: str) -> "StreamChunk":
        return cls(thinking=text)

    @classmethod
    def terminal(cls, error: str | None = None) -> "StreamChunk":
        return cls(done=True, error=error)


class StreamingResponse:
    """Wrapper for streaming LLM responses that captures usage info.

    Acts as an async iterator of StreamChunk while storing token usage
    that becomes available at the end of the stream.

    Usage:
        stream = await provider.chat_stream(model, messages)
        async for chunk in stream:
            if chunk.delta:
                print(chunk.delta, end="")
        # After iteration, usage is available
        print(stream.usage)  # {"prompt_tokens": 100, "completion_tokens": 50, ...}
    """

    def __init__(self, async_iter: AsyncIterator[StreamChunk]):
        """Initialize with an async iterator of stream chunks.

        Args:
            async_iter: Async iterator yielding StreamChunk objects
        """
        self._iter = async_iter
        self._usage: dict[str, int] | None = None

    @property
    def usage(self) -> dict[str, int] | None:
        """Get token usage info (available after iteration completes)."""
        return self._usage

    def set_usage(self, usage: dict[str, int]) -> None:
        """Set token usage info (called by provider at end of stream)."""
        self._usage = usage

    def __aiter__(self) -> "StreamingResponse":
        """Return self as async iterator."""
        return self

    async def __anext__(self) -> StreamChunk:
        """Get next chunk from the underlying iterator."""
        return await self._iter.__anext__()

    async def aclose(self) -> None:
        """Close the underlying generator, releasing its transport."""
        aclose = getattr(self._iter, "aclose", None)
        if aclose is not None:
            await aclose()


class ChatMessage(BaseModel):
    """Represents a chat message in a conversation."""

    model_config = ConfigDict(frozen=True)

    role: str = Field(description="Role of the message sender: 'user', 'assistant', or 'system'")
    content: str = Field(description="Content of the message")
    images: tuple[bytes, ...] = Field(default=(), description="Raw image payloads attached to the message")


class LLMResponse(BaseModel):
    """Response from an LLM provider."""

    model_config = ConfigDict(frozen=True)

    content: str = Field(description="Generated text content")
    model: str = Field(description="Model that generated the response")
    usage: dict[str, int] | None = Field(
        default=None,
        description="Token usage information"
    )


class GenerationOptions(BaseModel):
    """Sampling options attached to a session."""

    model_config = ConfigDict(extra="allow")

    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=2048, gt=0)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    frequency_penalty: float | None = Field(default=None, ge=-2.0, le=2.0)
    presence_penalty: float | None = Field(default=None, ge=-2.0, le=2.0)

    def extra_params(self) -> dict[str, Any]:
        """Optional sampling parameters that are set, in request-body naming."""
        params: dict[str, Any] = {}
        for key in ("top_p", "frequency_penalty", "presence_penalty"):
            value = getattr(self, key)
            if value is not None:
                params[key] = value
        params.update(self.model_extra or {})
        return params
