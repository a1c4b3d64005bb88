import logging
from collections.abc import AsyncIterator
from typing import Any

from ...errors import ModelNotLoadedError, StreamCancelled
from ...runtime.lifecycle import ModelLifecycleManager
from ...runtime.models import LoadResult
from ...streaming.cancellation import CancellationToken
from ..base import LLMProvider
from ..models import ChatMessage, GenerationOptions, LLMResponse, StreamChunk, StreamingResponse
from ..normalize import normalize_chat_completion

logger = logging.getLogger(__name__)


def _engine_messages(messages: list[ChatMessage]) -> list[dict[str, str]]:
    # The on-device engine is text-only; image payloads are not forwarded
    return [{"role": msg.role, "content": msg.content} for msg in messages]


def _engine_options(options: GenerationOptions, stream: bool) -> dict[str, Any]:
    params: dict[str, Any] = {
        "temperature": options.temperature,
        "max_tokens": options.max_tokens,
        **options.extra_params(),
    }
    if stream:
        params["stream_options"] = {"include_usage": True}
    return params


class LocalProvider(LLMProvider):
    """On-device provider backed by a ModelLifecycleManager.

    Hidden design decisions:
    - Delegation to the loaded engine handle
    - One generation at a time per handle (the manager's generation lock)
    - Cancellation interrupts the engine and drains its iterator without
      forwarding, so the engine can release its own lock
    """

    name = "local"

    def __init__(self, lifecycle: ModelLifecycleManager):
        self._lifecycle = lifecycle

    @property
    def is_local(self) -> bool:
        return True

    @property
    def lifecycle(self) -> ModelLifecycleManager:
        return self._lifecycle

    def _require_handle(self, model: str):
        if not self._lifecycle.is_loaded(model):
            raise ModelNotLoadedError(f"Model {model} is not loaded")
        return self._lifecycle.handle

    async def chat(
        self,
        model: str,
        messages: list[ChatMessage],
        options: GenerationOptions | None = None,
        **kwargs: Any
    ) -> LLMResponse:
        """Generate a complete response, loading the model first if needed.

        Raises:
            StreamCancelled: The model load was cancelled
            ModelLoadError: The model failed to load
        """
        result = await self._lifecycle.ensure_loaded(model)
        if result is LoadResult.CANCELLED:
            raise StreamCancelled(f"Loading {model} was cancelled")

        handle = self._require_handle(model)
        async with self._lifecycle.generation_lock:
            response = await handle.complete_chat(
                _engine_messages(messages),
                **_engine_options(options or GenerationOptions(), stream=False),
                **kwargs,
            )

        usage = response.get("usage")
        return LLMResponse(
            content=response["choices"][0]["message"].get("content") or "",
            model=model,
            usage={k: int(v) for k, v in usage.items() if k.endswith("_tokens")} if usage else None,
        )

    async def chat_stream(
        self,
        model: str,
        messages: list[ChatMessage],
        options: GenerationOptions | None = None,
        cancel_token: CancellationToken | None = None,
        **kwargs: Any
    ) -> StreamingResponse:
        """Stream from the loaded engine handle.

        The caller is responsible for ``ensure_loaded``; the stream
        coordinator does this so that load progress can be reported.

        Raises:
            ModelNotLoadedError: ``model`` is not the loaded model
        """
        handle = self._require_handle(model)
        engine_messages = _engine_messages(messages)
        engine_options = {**_engine_options(options or GenerationOptions(), stream=True), **kwargs}
        lifecycle = self._lifecycle
        stream_response: StreamingResponse

        def is_cancelled() -> bool:
            return cancel_token is not None and cancel_token.cancelled

        async def generate() -> AsyncIterator[StreamChunk]:
            async with lifecycle.generation_lock:
                remove = (
                    cancel_token.add_callback(lifecycle.interrupt_generation)
                    if cancel_token is not None else None
                )
                try:
                    async for raw in handle.stream_chat(engine_messages, **engine_options):
                        if is_cancelled():
                            # Keep consuming so the engine finishes its interrupted run
                            continue
                        chunks, usage = normalize_chat_completion(raw)
                        if usage is not None:
                            stream_response.set_usage(usage)
                        for chunk in chunks:
                            yield chunk
                            if chunk.done:
                                return
                    if not is_cancelled():
                        yield StreamChunk.terminal()
                except Exception as e:
                    if is_cancelled():
                        logger.debug("Engine stopped after interrupt: %s", e)
                        return
                    logger.warning("On-device generation failed: %s", e)
                    yield StreamChunk.terminal(str(e))
                finally:
                    if remove is not None:
                        remove()

        stream_response = StreamingResponse(generate())
        return stream_response

    async def health_check(self) -> dict[str, Any]:
        return {
            "ok": True,
            "state": self._lifecycle.state.value,
            "loaded": self._lifecycle.current_model,
        }

    async def list_models(self) -> list[str]:
        return [m.id for m in self._lifecycle.config.models_for_provider(self.name)]

    async def close(self) -> None:
        await self._lifecycle.unload()
