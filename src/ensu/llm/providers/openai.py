import logging
from typing import Any, Literal

import httpx
import openai
from openai import AsyncOpenAI

from ...errors import BackendError, ProviderTransportError
from ...streaming.cancellation import CancellationToken
from ...streaming.decoder import ChunkDecoder, Framing
from ..base import LLMProvider
from ..images import to_data_url
from ..models import ChatMessage, GenerationOptions, LLMResponse, StreamingResponse
from ..normalize import get_normalizer
from .http_stream import open_stream, stream_chunks

logger = logging.getLogger(__name__)

ApiType = Literal["chat", "responses"]

# Models that require the Responses API instead of Chat Completions
RESPONSES_API_MODELS = {
    "gpt-5.1-codex",
    "gpt-5.1-codex-max",
    "gpt-5.2-codex",
}


def _is_responses_api_model(model: str) -> bool:
    """Check if a model requires the Responses API."""
    return model in RESPONSES_API_MODELS or "codex" in model.lower()


def _messages_to_chat_format(messages: list[ChatMessage]) -> list[dict[str, Any]]:
    """Convert chat messages to Chat Completions format.

    Messages with images use the multi-part content form.
    """
    converted = []
    for msg in messages:
        if not msg.images:
            converted.append({"role": msg.role, "content": msg.content})
            continue
        parts: list[dict[str, Any]] = [{"type": "text", "text": msg.content}]
        parts.extend(
            {"type": "image_url", "image_url": {"url": to_data_url(image)}}
            for image in msg.images
        )
        converted.append({"role": msg.role, "content": parts})
    return converted


def _messages_to_responses_format(messages: list[ChatMessage]) -> list[dict[str, Any]]:
    """Convert chat messages to Responses API input format.

    The Responses API takes an array of messages with roles:
    - 'developer' (same as 'system') for instructions
    - 'user' for user messages
    - 'assistant' for previous model responses
    """
    responses_messages = []

    for msg in messages:
        if msg.role == "system":
            role = "developer"
        elif msg.role in ("user", "assistant"):
            role = msg.role
        else:
            role = "user"

        if msg.images and role == "user":
            content: Any = [{"type": "input_text", "text": msg.content}]
            content.extend(
                {"type": "input_image", "image_url": to_data_url(image)}
                for image in msg.images
            )
        else:
            content = msg.content
        responses_messages.append({"role": role, "content": content})

    return responses_messages


class OpenAIProvider(LLMProvider):
    """OpenAI-compatible remote provider.

    Hidden design decisions:
    - API routing (Chat Completions vs Responses API), chosen once per request
    - Request body shape for each API flavor
    - Server-sent event decoding and delta extraction
    - Aborting the HTTP read when the cancellation token fires

    Single-shot calls go through the ``openai`` SDK; streaming calls read
    the raw event stream over the same httpx client so that frames can be
    decoded incrementally and the read can be abandoned mid-body.
    """

    name = "remote"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-4o",
        api_types: dict[str, ApiType] | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        max_retries: int = 2,
        organization: str | None = None,
    ):
        """Initialize the provider.

        Args:
            api_key: API key sent as a bearer token
            base_url: API base URL (trailing slashes are ignored)
            model: Default model for calls that do not name one
            api_types: Per-model API flavor overrides
            http_client: Shared httpx client (the provider owns one otherwise)
            timeout: Read timeout in seconds; None waits indefinitely
            max_retries: SDK retries for single-shot calls
            organization: Optional organization ID
        """
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._api_types = dict(api_types or {})
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=10.0))
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=self._base_url,
            organization=organization,
            http_client=self._http,
            max_retries=max_retries,
        )

    @property
    def model(self) -> str:
        """Get the default model name."""
        return self._model

    def api_type_for(self, model: str) -> ApiType:
        """API flavor used for ``model``."""
        if model in self._api_types:
            return self._api_types[model]
        return "responses" if _is_responses_api_model(model) else "chat"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Accept": "text/event-stream",
        }

    async def chat(
        self,
        model: str,
        messages: list[ChatMessage],
        options: GenerationOptions | None = None,
        **kwargs: Any
    ) -> LLMResponse:
        """Generate a chat completion using the OpenAI SDK.

        Routes to the Responses API for models tagged ``responses``,
        otherwise uses Chat Completions.
        """
        model_to_use = model or self._model
        options = options or GenerationOptions()

        try:
            if self.api_type_for(model_to_use) == "responses":
                return await self._responses_api_completion(messages, model_to_use, options, **kwargs)

            request_params: dict[str, Any] = {
                "model": model_to_use,
                "messages": _messages_to_chat_format(messages),
                "temperature": options.temperature,
                **options.extra_params(),
                **kwargs,
            }
            if options.max_tokens is not None:
                request_params["max_tokens"] = options.max_tokens

            completion = await self._client.chat.completions.create(**request_params)
        except openai.APIStatusError as e:
            raise BackendError(e.status_code, e.message, self.name) from e
        except openai.APIConnectionError as e:
            raise ProviderTransportError(f"remote request failed: {e}") from e

        usage = None
        if completion.usage:
            usage = {
                "prompt_tokens": completion.usage.prompt_tokens,
                "completion_tokens": completion.usage.completion_tokens,
                "total_tokens": completion.usage.total_tokens
            }

        return LLMResponse(
            content=completion.choices[0].message.content or "",
            model=completion.model,
            usage=usage
        )

    async def _responses_api_completion(
        self,
        messages: list[ChatMessage],
        model: str,
        options: GenerationOptions,
        **kwargs: Any
    ) -> LLMResponse:
        """Generate completion using the Responses API."""
        request_params: dict[str, Any] = {
            "model": model,
            "input": _messages_to_responses_format(messages),
        }
        # Note: temperature only works with reasoning.effort="none", so it is not sent
        if options.max_tokens is not None:
            request_params["max_output_tokens"] = options.max_tokens
        request_params.update(kwargs)

        response = await self._client.responses.create(**request_params)

        usage = None
        if getattr(response, "usage", None):
            usage = {
                "prompt_tokens": getattr(response.usage, "input_tokens", 0),
                "completion_tokens": getattr(response.usage, "output_tokens", 0),
                "total_tokens": getattr(response.usage, "total_tokens", 0)
            }

        return LLMResponse(
            content=response.output_text or "",
            model=model,
            usage=usage
        )

    def _stream_request(
        self,
        model: str,
        messages: list[ChatMessage],
        options: GenerationOptions,
        api_type: ApiType,
        **kwargs: Any
    ) -> tuple[str, dict[str, Any]]:
        if api_type == "responses":
            body: dict[str, Any] = {
                "model": model,
                "input": _messages_to_responses_format(messages),
                "stream": True,
            }
            if options.max_tokens is not None:
                body["max_output_tokens"] = options.max_tokens
            body.update(kwargs)
            return f"{self._base_url}/responses", body

        body = {
            "model": model,
            "messages": _messages_to_chat_format(messages),
            "temperature": options.temperature,
            "stream": True,
            "stream_options": {"include_usage": True},
            **options.extra_params(),
            **kwargs,
        }
        if options.max_tokens is not None:
            body["max_tokens"] = options.max_tokens
        return f"{self._base_url}/chat/completions", body

    async def chat_stream(
        self,
        model: str,
        messages: list[ChatMessage],
        options: GenerationOptions | None = None,
        cancel_token: CancellationToken | None = None,
        **kwargs: Any
    ) -> StreamingResponse:
        """Open a streaming completion over server-sent events."""
        model_to_use = model or self._model
        api_type = self.api_type_for(model_to_use)
        normalizer = get_normalizer(api_type)
        url, body = self._stream_request(
            model_to_use, messages, options or GenerationOptions(), api_type, **kwargs
        )

        logger.debug("Opening %s stream for %s (%d messages)", api_type, model_to_use, len(messages))
        response = await open_stream(self._http, url, body, self._headers(), self.name)

        return stream_chunks(
            response,
            ChunkDecoder(Framing.EVENT_STREAM),
            normalizer,
            cancel_token,
            self.name,
        )

    async def health_check(self) -> dict[str, Any]:
        try:
            models = await self.list_models()
        except (BackendError, ProviderTransportError) as e:
            return {"ok": False, "error": str(e)}
        return {"ok": True, "models": len(models)}

    async def list_models(self) -> list[str]:
        try:
            page = await self._client.models.list()
        except openai.APIStatusError as e:
            raise BackendError(e.status_code, e.message, self.name) from e
        except openai.APIConnectionError as e:
            raise ProviderTransportError(f"remote request failed: {e}") from e
        return [m.id for m in page.data]

    async def close(self) -> None:
        """Close the SDK client and, when owned, the underlying httpx client."""
        if self._owns_http:
            await self._client.close()
