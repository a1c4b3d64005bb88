"""Per-backend extraction of deltas from decoded stream payloads.

Each supported wire flavor gets its own normalization function; the
provider selects one per request from an explicit tag instead of sniffing
the payload shape chunk by chunk.

Every function takes one decoded JSON payload and returns the chunks it
carries (in order) plus any token usage it reports.
"""

from collections.abc import Callable
from typing import Any

from .models import StreamChunk

Normalized = tuple[list[StreamChunk], dict[str, int] | None]
Normalizer = Callable[[dict[str, Any]], Normalized]


def _usage(prompt: Any, completion: Any, total: Any = None) -> dict[str, int]:
    prompt_tokens = int(prompt or 0)
    completion_tokens = int(completion or 0)
    return {
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": int(total) if total else prompt_tokens + completion_tokens,
    }


def _error_text(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error)
    return str(error)


def normalize_chat_completion(payload: dict[str, Any]) -> Normalized:
    """Chat Completions stream chunk: ``choices[0].delta.content``."""
    if payload.get("error"):
        return [StreamChunk.terminal(_error_text(payload["error"]))], None

    chunks: list[StreamChunk] = []
    choices = payload.get("choices") or []
    if choices and isinstance(choices[0], dict):
        delta = choices[0].get("delta") or {}
        # DeepSeek uses reasoning_content, several compatible servers use reasoning
        thinking = delta.get("reasoning_content") or delta.get("reasoning")
        if isinstance(thinking, str) and thinking:
            chunks.append(StreamChunk.reasoning(thinking))
        content = delta.get("content")
        if isinstance(content, str) and content:
            chunks.append(StreamChunk.content(content))

    usage = None
    raw_usage = payload.get("usage")
    if isinstance(raw_usage, dict):
        usage = _usage(
            raw_usage.get("prompt_tokens"),
            raw_usage.get("completion_tokens"),
            raw_usage.get("total_tokens"),
        )
    return chunks, usage


def normalize_responses(payload: dict[str, Any]) -> Normalized:
    """Responses API stream event.

    Typed events (``response.output_text.delta`` and friends) are handled
    first; untyped payloads fall back to ``delta.content`` and
    ``output[0].content[0].text``.
    """
    event_type = payload.get("type")

    if event_type == "response.output_text.delta":
        delta = payload.get("delta")
        return ([StreamChunk.content(delta)] if isinstance(delta, str) and delta else []), None

    if event_type in ("response.reasoning_summary_text.delta", "response.reasoning_text.delta"):
        delta = payload.get("delta")
        return ([StreamChunk.reasoning(delta)] if isinstance(delta, str) and delta else []), None

    if event_type == "response.completed":
        usage = None
        raw_usage = (payload.get("response") or {}).get("usage")
        if isinstance(raw_usage, dict):
            usage = _usage(
                raw_usage.get("input_tokens"),
                raw_usage.get("output_tokens"),
                raw_usage.get("total_tokens"),
            )
        return [StreamChunk.terminal()], usage

    if event_type in ("response.failed", "error"):
        error = payload.get("error") or (payload.get("response") or {}).get("error") or "Response failed"
        return [StreamChunk.terminal(_error_text(error))], None

    if event_type is not None:
        return [], None

    text = None
    delta = payload.get("delta")
    if isinstance(delta, dict):
        text = delta.get("content")
    if not text:
        try:
            text = payload["output"][0]["content"][0]["text"]
        except (KeyError, IndexError, TypeError):
            text = None
    return ([StreamChunk.content(text)] if isinstance(text, str) and text else []), None


def normalize_ollama(payload: dict[str, Any]) -> Normalized:
    """Ollama ``/api/chat`` NDJSON object: ``message.content`` until ``done``."""
    if payload.get("error"):
        return [StreamChunk.terminal(_error_text(payload["error"]))], None

    chunks: list[StreamChunk] = []
    message = payload.get("message") or {}
    thinking = message.get("thinking")
    if isinstance(thinking, str) and thinking:
        chunks.append(StreamChunk.reasoning(thinking))
    content = message.get("content")
    if isinstance(content, str) and content:
        chunks.append(StreamChunk.content(content))

    usage = None
    if payload.get("done") is True:
        if "prompt_eval_count" in payload or "eval_count" in payload:
            usage = _usage(payload.get("prompt_eval_count"), payload.get("eval_count"))
        chunks.append(StreamChunk.terminal())
    return chunks, usage


NORMALIZERS: dict[str, Normalizer] = {
    "chat": normalize_chat_completion,
    "responses": normalize_responses,
    "ollama": normalize_ollama,
}


def get_normalizer(flavor: str) -> Normalizer:
    """Return the normalization function for a wire flavor tag."""
    try:
        return NORMALIZERS[flavor]
    except KeyError:
        raise ValueError(
            f"Unknown stream flavor: {flavor}. "
            f"Supported flavors: {', '.join(NORMALIZERS)}"
        ) from None
