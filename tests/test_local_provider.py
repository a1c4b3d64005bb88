"""Tests for the on-device provider."""
import asyncio

import pytest
from conftest import SMALL_MODEL, chat_chunk

from ensu.errors import ModelNotLoadedError
from ensu.llm import ChatMessage, GenerationOptions, LocalProvider, StreamChunk
from ensu.streaming import CancellationToken

MESSAGES = [
    ChatMessage(role="system", content="Be brief."),
    ChatMessage(role="user", content="hi", images=(b"ignored",)),
]


@pytest.fixture
def provider(lifecycle) -> LocalProvider:
    return LocalProvider(lifecycle)


class TestLocalProviderStreaming:
    """Tests for LocalProvider.chat_stream."""

    @pytest.mark.asyncio
    async def test_requires_loaded_model(self, provider):
        with pytest.raises(ModelNotLoadedError):
            await provider.chat_stream(SMALL_MODEL, MESSAGES)

    @pytest.mark.asyncio
    async def test_stream_from_loaded_handle(self, provider, lifecycle, runtime):
        """Test deltas, terminal chunk and usage from the engine."""
        await lifecycle.ensure_loaded(SMALL_MODEL)

        stream = await provider.chat_stream(SMALL_MODEL, MESSAGES, GenerationOptions(max_tokens=100))
        chunks = [chunk async for chunk in stream]

        assert chunks == [StreamChunk.content("Hel"), StreamChunk.content("lo"), StreamChunk.terminal()]
        assert stream.usage == {"prompt_tokens": 12, "completion_tokens": 2, "total_tokens": 14}

        messages, options = runtime.handles[SMALL_MODEL].requests[0]
        assert messages == [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "hi"},
        ]
        assert options["max_tokens"] == 100
        assert options["stream_options"] == {"include_usage": True}

    @pytest.mark.asyncio
    async def test_cancel_interrupts_and_drains(self, provider, lifecycle, runtime):
        """Test that cancellation interrupts the engine and forwards nothing more."""
        await lifecycle.ensure_loaded(SMALL_MODEL)
        handle = runtime.handles[SMALL_MODEL]
        handle.hold = asyncio.Event()
        token = CancellationToken()

        stream = await provider.chat_stream(SMALL_MODEL, MESSAGES, cancel_token=token)
        first = await stream.__anext__()
        token.cancel()
        rest = [chunk async for chunk in stream]

        assert first == StreamChunk.content("Hel")
        assert rest == []
        assert handle.interrupt_calls == 1
        assert handle.consumed == 1
        assert not lifecycle.generation_lock.locked()
        assert lifecycle.is_loaded(SMALL_MODEL)

    @pytest.mark.asyncio
    async def test_engine_failure_is_terminal_chunk(self, provider, lifecycle, runtime):
        await lifecycle.ensure_loaded(SMALL_MODEL)

        async def failing(messages, **options):
            yield chat_chunk("par")
            raise RuntimeError("device lost")

        runtime.handles[SMALL_MODEL].stream_chat = failing

        chunks = [chunk async for chunk in await provider.chat_stream(SMALL_MODEL, MESSAGES)]

        assert chunks == [StreamChunk.content("par"), StreamChunk.terminal("device lost")]

    @pytest.mark.asyncio
    async def test_one_generation_at_a_time(self, provider, lifecycle, runtime):
        """Test that a second stream waits for the first to release the handle."""
        await lifecycle.ensure_loaded(SMALL_MODEL)
        handle = runtime.handles[SMALL_MODEL]
        handle.hold = asyncio.Event()

        first = await provider.chat_stream(SMALL_MODEL, MESSAGES)
        await first.__anext__()
        second = await provider.chat_stream(SMALL_MODEL, MESSAGES)
        second_next = asyncio.create_task(second.__anext__())
        await asyncio.sleep(0.01)

        assert not second_next.done()
        assert len(handle.requests) == 1

        handle.hold.set()
        assert [c async for c in first][-1].done
        assert await second_next == StreamChunk.content("Hel")
        await second.aclose()


class TestLocalProviderSingleShot:
    """Tests for LocalProvider.chat and metadata."""

    @pytest.mark.asyncio
    async def test_chat_loads_model_first(self, provider, runtime):
        response = await provider.chat(SMALL_MODEL, MESSAGES)

        assert response.content == "Hello"
        assert response.usage["total_tokens"] == 14
        assert runtime.loads == [SMALL_MODEL]

    @pytest.mark.asyncio
    async def test_list_models_from_registry(self, provider):
        models = await provider.list_models()

        assert SMALL_MODEL in models
        assert "tiny-remote" not in models

    @pytest.mark.asyncio
    async def test_close_unloads(self, provider, lifecycle, runtime):
        await lifecycle.ensure_loaded(SMALL_MODEL)

        await provider.close()

        assert runtime.handles[SMALL_MODEL].unloaded
        assert not lifecycle.is_loaded()

    def test_is_local(self, provider):
        assert provider.is_local
        assert provider.name == "local"
