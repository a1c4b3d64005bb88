"""Unit tests for per-backend delta normalization and chunk models."""
import pytest
from pydantic import ValidationError

from ensu.llm import StreamChunk, get_normalizer
from ensu.llm.normalize import normalize_chat_completion, normalize_ollama, normalize_responses


class TestStreamChunk:
    """Tests for the StreamChunk model."""

    def test_terminal_chunk_cannot_carry_content(self):
        """Test that done=True excludes a delta."""
        with pytest.raises(ValidationError):
            StreamChunk(delta="x", done=True)

    def test_delta_and_thinking_are_exclusive(self):
        """Test that a chunk carries content or thinking, not both."""
        with pytest.raises(ValidationError):
            StreamChunk(delta="a", thinking="b")

    def test_error_only_on_terminal(self):
        """Test that errors are reported on terminal chunks only."""
        with pytest.raises(ValidationError):
            StreamChunk(error="boom")
        assert StreamChunk.terminal("boom").error == "boom"

    def test_chunks_are_frozen(self):
        """Test that chunks cannot be modified after creation."""
        chunk = StreamChunk.content("hi")
        with pytest.raises(ValidationError):
            chunk.delta = "other"


class TestChatCompletionNormalizer:
    """Tests for the Chat Completions shape."""

    def test_content_delta(self):
        chunks, usage = normalize_chat_completion({"choices": [{"delta": {"content": "Hi"}}]})

        assert chunks == [StreamChunk.content("Hi")]
        assert usage is None

    def test_reasoning_content_is_thinking(self):
        chunks, _ = normalize_chat_completion(
            {"choices": [{"delta": {"reasoning_content": "hmm"}}]}
        )

        assert chunks == [StreamChunk.reasoning("hmm")]

    def test_role_only_delta_is_empty(self):
        """Test that the opening role chunk produces nothing."""
        chunks, _ = normalize_chat_completion({"choices": [{"delta": {"role": "assistant"}}]})

        assert chunks == []

    def test_usage_frame(self):
        """Test the trailing usage frame of stream_options.include_usage."""
        chunks, usage = normalize_chat_completion({
            "choices": [],
            "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
        })

        assert chunks == []
        assert usage == {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15}

    def test_error_payload_is_terminal(self):
        chunks, _ = normalize_chat_completion({"error": {"message": "overloaded"}})

        assert chunks == [StreamChunk.terminal("overloaded")]


class TestResponsesNormalizer:
    """Tests for the Responses API shape."""

    def test_output_text_delta(self):
        chunks, _ = normalize_responses({"type": "response.output_text.delta", "delta": "Hi"})

        assert chunks == [StreamChunk.content("Hi")]

    def test_reasoning_summary_delta(self):
        chunks, _ = normalize_responses(
            {"type": "response.reasoning_summary_text.delta", "delta": "plan"}
        )

        assert chunks == [StreamChunk.reasoning("plan")]

    def test_completed_reports_usage(self):
        chunks, usage = normalize_responses({
            "type": "response.completed",
            "response": {"usage": {"input_tokens": 30, "output_tokens": 7, "total_tokens": 37}},
        })

        assert chunks == [StreamChunk.terminal()]
        assert usage == {"prompt_tokens": 30, "completion_tokens": 7, "total_tokens": 37}

    def test_failed_is_terminal_error(self):
        chunks, _ = normalize_responses({
            "type": "response.failed",
            "response": {"error": {"message": "server_error"}},
        })

        assert chunks == [StreamChunk.terminal("server_error")]

    def test_other_typed_events_are_ignored(self):
        chunks, usage = normalize_responses({"type": "response.created", "response": {}})

        assert chunks == []
        assert usage is None

    def test_untyped_delta_content(self):
        chunks, _ = normalize_responses({"delta": {"content": "legacy"}})

        assert chunks == [StreamChunk.content("legacy")]

    def test_untyped_nested_output_text(self):
        chunks, _ = normalize_responses({"output": [{"content": [{"text": "nested"}]}]})

        assert chunks == [StreamChunk.content("nested")]


class TestOllamaNormalizer:
    """Tests for the Ollama NDJSON shape."""

    def test_message_content(self):
        chunks, usage = normalize_ollama({"message": {"role": "assistant", "content": "Hi"}, "done": False})

        assert chunks == [StreamChunk.content("Hi")]
        assert usage is None

    def test_done_with_counts(self):
        chunks, usage = normalize_ollama({
            "message": {"role": "assistant", "content": ""},
            "done": True,
            "prompt_eval_count": 20,
            "eval_count": 4,
        })

        assert chunks == [StreamChunk.terminal()]
        assert usage == {"prompt_tokens": 20, "completion_tokens": 4, "total_tokens": 24}

    def test_thinking_field(self):
        chunks, _ = normalize_ollama({"message": {"thinking": "hmm", "content": ""}, "done": False})

        assert chunks == [StreamChunk.reasoning("hmm")]


class TestGetNormalizer:
    """Tests for flavor selection."""

    def test_known_flavors(self):
        assert get_normalizer("chat") is normalize_chat_completion
        assert get_normalizer("responses") is normalize_responses
        assert get_normalizer("ollama") is normalize_ollama

    def test_unknown_flavor_fails(self):
        with pytest.raises(ValueError, match="Unknown stream flavor"):
            get_normalizer("grpc")
