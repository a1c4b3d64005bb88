"""Seams to the on-device execution engine.

The engine itself (weights format, GPU execution, tokenization) lives
outside this package. It is reached through two protocols: a runtime that
can load a model, and the handle it returns for a loaded model.
"""

from collections.abc import AsyncIterator, Callable
from typing import Any, Protocol, runtime_checkable

from ..config import ModelInfo

#: Progress callback handed to the runtime: (fraction in [0, 1], progress text)
ProgressReport = Callable[[float, str], None]


@runtime_checkable
class ModelHandle(Protocol):
    """A model loaded into the on-device engine."""

    model_id: str

    def stream_chat(self, messages: list[dict[str, str]], **options: Any) -> AsyncIterator[dict[str, Any]]:
        """Yield Chat Completions shaped chunks (``choices[0].delta.content``)."""
        ...

    async def complete_chat(self, messages: list[dict[str, str]], **options: Any) -> dict[str, Any]:
        """Return a Chat Completions shaped response."""
        ...

    def interrupt(self) -> None:
        """Ask a running generation to stop; its iterator then ends on its own."""
        ...

    async def unload(self) -> None:
        """Release the model's memory."""
        ...


@runtime_checkable
class ModelRuntime(Protocol):
    """An engine able to fetch, compile and load models."""

    async def load(
        self,
        model_id: str,
        report: ProgressReport,
        model_info: ModelInfo | None = None,
    ) -> ModelHandle:
        """Load ``model_id``, reporting progress as the engine advances.

        Cancelling the awaiting task must abort any in-flight transfer.
        """
        ...
