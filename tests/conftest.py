"""Pytest configuration and shared fixtures."""
import asyncio
import json
import os
from collections.abc import AsyncIterator, Callable, Iterable
from typing import Any

import httpx
import pytest

from ensu.config import AppConfig, ModelInfo
from ensu.runtime import ModelLifecycleManager

SMALL_MODEL = "SmolLM2-360M-Instruct-q4f16_1-MLC"
LARGE_MODEL = "Llama-3.2-3B-Instruct-q4f16_1-MLC"


def chat_chunk(content: str | None = None, **delta: Any) -> dict[str, Any]:
    """A Chat Completions streaming chunk."""
    if content is not None:
        delta["content"] = content
    return {"choices": [{"index": 0, "delta": delta}]}


def sse(*payloads: dict[str, Any] | str) -> bytes:
    """Serialize payloads as a server-sent event body (strings are sent verbatim)."""
    events = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        events.append(f"data: {data}\n\n")
    return "".join(events).encode("utf-8")


def ndjson(*payloads: dict[str, Any]) -> bytes:
    return "".join(json.dumps(p) + "\n" for p in payloads).encode("utf-8")


async def byte_stream(
    pieces: Iterable[bytes],
    hold: asyncio.Event | None = None,
) -> AsyncIterator[bytes]:
    """Async body yielding ``pieces``, then waiting on ``hold`` if given."""
    for piece in pieces:
        await asyncio.sleep(0)
        yield piece
    if hold is not None:
        await hold.wait()


class RecordingTransport:
    """httpx.MockTransport wrapper that remembers every request."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: list[httpx.Request] = []

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        self.transport = httpx.MockTransport(record)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport)

    def last_json(self) -> dict[str, Any]:
        return json.loads(self.requests[-1].content)


class FakeHandle:
    """Loaded-model handle that replays scripted Chat Completions chunks."""

    def __init__(self, model_id: str, script: list[dict[str, Any]] | None = None):
        self.model_id = model_id
        self.script = script if script is not None else [
            chat_chunk("Hel"),
            chat_chunk("lo"),
            {"choices": [], "usage": {"prompt_tokens": 12, "completion_tokens": 2, "total_tokens": 14}},
        ]
        self.hold: asyncio.Event | None = None
        self.interrupted = False
        self.interrupt_calls = 0
        self.unloaded = False
        self.requests: list[tuple[list[dict[str, str]], dict[str, Any]]] = []
        self.consumed = 0
        self.unload_rounds = 0

    async def stream_chat(self, messages, **options) -> AsyncIterator[dict[str, Any]]:
        self.requests.append((messages, options))
        self.interrupted = False
        for index, raw in enumerate(self.script):
            if self.interrupted:
                return
            if self.hold is not None and index == 1:
                await self.hold.wait()
            await asyncio.sleep(0)
            self.consumed += 1
            yield raw

    async def complete_chat(self, messages, **options) -> dict[str, Any]:
        self.requests.append((messages, options))
        text = "".join(
            c["choices"][0]["delta"].get("content", "") for c in self.script if c.get("choices")
        )
        return {
            "choices": [{"message": {"role": "assistant", "content": text}}],
            "usage": {"prompt_tokens": 12, "completion_tokens": 2, "total_tokens": 14},
        }

    def interrupt(self) -> None:
        self.interrupted = True
        self.interrupt_calls += 1
        if self.hold is not None:
            self.hold.set()

    async def unload(self) -> None:
        for _ in range(self.unload_rounds):
            await asyncio.sleep(0)
        self.unloaded = True


class FakeRuntime:
    """On-device engine stand-in with scripted progress.

    A model listed in ``gates`` blocks after its progress reports until the
    gate is set (or the load task is cancelled).
    """

    def __init__(
        self,
        steps: list[tuple[float, str]] | None = None,
        fail_with: Exception | None = None,
        script: list[dict[str, Any]] | None = None,
    ):
        self.steps = steps if steps is not None else [
            (0.1, "Fetching param cache[1/10]: 40MB fetched"),
            (0.5, "Loading model from cache[5/10]"),
            (0.8, "Compiling model kernels"),
            (0.95, "Initializing GPU shader modules"),
        ]
        self.fail_with = fail_with
        self.script = script
        self.gates: dict[str, asyncio.Event] = {}
        self.loads: list[str] = []
        self.aborted: list[str] = []
        self.handles: dict[str, FakeHandle] = {}

    async def load(self, model_id, report, model_info=None) -> FakeHandle:
        self.loads.append(model_id)
        try:
            for fraction, text in self.steps:
                report(fraction, text)
                await asyncio.sleep(0)
            if self.fail_with is not None:
                raise self.fail_with
            gate = self.gates.get(model_id)
            if gate is not None:
                await gate.wait()
        except asyncio.CancelledError:
            self.aborted.append(model_id)
            raise
        handle = FakeHandle(model_id, self.script)
        self.handles[model_id] = handle
        return handle


@pytest.fixture
def config() -> AppConfig:
    """Default config plus a small remote model with a tight context window."""
    app_config = AppConfig()
    app_config.models.append(ModelInfo(id="tiny-remote", provider="remote", context=100))
    return app_config


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def lifecycle(runtime: FakeRuntime, config: AppConfig) -> ModelLifecycleManager:
    return ModelLifecycleManager(runtime, config)


@pytest.fixture(scope="session")
def api_keys():
    """Return API keys from environment."""
    return {
        "remote": os.getenv("ENSU_REMOTE_API_KEY"),
    }
