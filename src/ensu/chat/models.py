"""Results of one chat turn."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ..llm.models import StreamChunk
from ..runtime.models import LoadProgress
from ..session.models import ContextWarning, Message

#: What a running turn yields to its caller: generation chunks, or load
#: progress while the on-device model is still being prepared.
StreamEvent = StreamChunk | LoadProgress


class FinishReason(str, Enum):
    """Why a turn ended. Cancellation is never reported as an error."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"
    LOAD_FAILED = "load_failed"
    LOAD_CANCELLED = "load_cancelled"

    @property
    def is_cancellation(self) -> bool:
        return self in (FinishReason.CANCELLED, FinishReason.LOAD_CANCELLED)


class TurnOutcome(BaseModel):
    """How a turn was finalized against its session."""

    model_config = ConfigDict(frozen=True)

    reason: FinishReason
    content: str = Field(default="", description="Accumulated assistant text")
    thinking: str = Field(default="", description="Accumulated reasoning text")
    message: Message | None = Field(
        default=None,
        description="Assistant message appended to the session (partial, complete or the no-response placeholder)"
    )
    rolled_back: bool = Field(default=False, description="The user message was removed again")
    error: str | None = None
    usage: dict[str, int] | None = None
    context_warning: ContextWarning | None = None

    @property
    def cancelled(self) -> bool:
        return self.reason.is_cancellation
