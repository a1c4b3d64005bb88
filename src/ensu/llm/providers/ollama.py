import logging
from typing import Any

import httpx

from ...errors import BackendError, ProviderTransportError
from ...streaming.cancellation import CancellationToken
from ...streaming.decoder import ChunkDecoder, Framing
from ..base import LLMProvider
from ..images import to_base64
from ..models import ChatMessage, GenerationOptions, LLMResponse, StreamingResponse
from ..normalize import normalize_ollama
from .http_stream import open_stream, stream_chunks

logger = logging.getLogger(__name__)


def _messages_to_ollama_format(messages: list[ChatMessage]) -> list[dict[str, Any]]:
    converted = []
    for msg in messages:
        item: dict[str, Any] = {"role": msg.role, "content": msg.content}
        if msg.images:
            item["images"] = [to_base64(image) for image in msg.images]
        converted.append(item)
    return converted


def _ollama_options(options: GenerationOptions) -> dict[str, Any]:
    """Map generation options onto Ollama's ``options`` object."""
    mapped: dict[str, Any] = {"temperature": options.temperature}
    if options.max_tokens is not None:
        mapped["num_predict"] = options.max_tokens
    if options.top_p is not None:
        mapped["top_p"] = options.top_p
    if options.frequency_penalty is not None:
        mapped["frequency_penalty"] = options.frequency_penalty
    if options.presence_penalty is not None:
        mapped["presence_penalty"] = options.presence_penalty
    return mapped


class OllamaProvider(LLMProvider):
    """Ollama-compatible provider streaming newline-delimited JSON.

    Hidden design decisions:
    - ``/api/chat`` request shape and option naming
    - NDJSON decoding, with ``done: true`` as the terminal signal
    - Token usage from ``prompt_eval_count`` / ``eval_count``
    """

    name = "ollama"

    def __init__(
        self,
        host: str = "http://localhost:11434",
        model: str = "llama3.2",
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        self._model = model
        self._host = host.rstrip("/")
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=10.0))

    @property
    def model(self) -> str:
        return self._model

    def _body(
        self,
        model: str,
        messages: list[ChatMessage],
        options: GenerationOptions,
        stream: bool,
        **kwargs: Any
    ) -> dict[str, Any]:
        return {
            "model": model or self._model,
            "messages": _messages_to_ollama_format(messages),
            "stream": stream,
            "options": _ollama_options(options),
            **kwargs,
        }

    async def chat(
        self,
        model: str,
        messages: list[ChatMessage],
        options: GenerationOptions | None = None,
        **kwargs: Any
    ) -> LLMResponse:
        body = self._body(model, messages, options or GenerationOptions(), stream=False, **kwargs)
        try:
            response = await self._http.post(f"{self._host}/api/chat", json=body)
        except httpx.HTTPError as e:
            raise ProviderTransportError(f"ollama request failed: {e}") from e

        data = self._json_body(response)
        usage = None
        if "prompt_eval_count" in data or "eval_count" in data:
            prompt_tokens = int(data.get("prompt_eval_count") or 0)
            completion_tokens = int(data.get("eval_count") or 0)
            usage = {
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            }

        return LLMResponse(
            content=(data.get("message") or {}).get("content") or "",
            model=data.get("model") or body["model"],
            usage=usage,
        )

    async def chat_stream(
        self,
        model: str,
        messages: list[ChatMessage],
        options: GenerationOptions | None = None,
        cancel_token: CancellationToken | None = None,
        **kwargs: Any
    ) -> StreamingResponse:
        body = self._body(model, messages, options or GenerationOptions(), stream=True, **kwargs)
        logger.debug("Opening ollama stream for %s (%d messages)", body["model"], len(messages))
        response = await open_stream(self._http, f"{self._host}/api/chat", body, provider=self.name)
        return stream_chunks(
            response,
            ChunkDecoder(Framing.NDJSON),
            normalize_ollama,
            cancel_token,
            self.name,
        )

    async def _get_json(self, path: str) -> dict[str, Any]:
        try:
            response = await self._http.get(f"{self._host}{path}")
        except httpx.HTTPError as e:
            raise ProviderTransportError(f"ollama request failed: {e}") from e
        return self._json_body(response)

    def _json_body(self, response: httpx.Response) -> dict[str, Any]:
        """Decode a single-shot reply; a non-JSON success body is a backend failure."""
        if response.is_error:
            raise BackendError(response.status_code, response.text, self.name)
        try:
            return response.json()
        except ValueError as e:
            raise BackendError(response.status_code, f"invalid JSON body: {e}", self.name) from e

    async def health_check(self) -> dict[str, Any]:
        try:
            info = await self._get_json("/api/version")
        except (BackendError, ProviderTransportError) as e:
            return {"ok": False, "error": str(e)}
        return {"ok": True, "info": info}

    async def list_models(self) -> list[str]:
        data = await self._get_json("/api/tags")
        return [m["name"] for m in data.get("models", []) if "name" in m]

    async def close(self) -> None:
        if self._owns_http:
            await self._http.aclose()
