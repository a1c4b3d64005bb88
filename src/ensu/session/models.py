"""Data models for chat sessions.

These models define the structure of a conversation and its context
accounting, independent of the storage backend used. Persisted JSON uses
camelCase keys (``createdAt``, ``maxTokens``, ...).
"""

import base64
from datetime import datetime, timezone
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from ..config import DEFAULT_CONTEXT_LIMIT
from ..llm.models import GenerationOptions

Role = Literal["user", "assistant", "system"]

NO_RESPONSE_TEXT = "No response received"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SessionOptions(GenerationOptions):
    """Generation options as persisted with a session."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class Message(_CamelModel):
    """A single message in a conversation."""

    role: Role = Field(description="Role of the message sender")
    content: str = Field(description="Text content")
    images: list[bytes] = Field(default_factory=list, description="Raw image payloads owned by the message")
    timestamp: datetime = Field(default_factory=utcnow)
    sentinel: bool = Field(
        default=False,
        description="Placeholder recorded when a turn produced no text; never sent to providers"
    )

    @field_validator("images", mode="before")
    @classmethod
    def _decode_images(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [base64.b64decode(item) if isinstance(item, str) else item for item in value]
        return value

    @field_serializer("images", when_used="json")
    def _encode_images(self, images: list[bytes]) -> list[str]:
        return [base64.b64encode(image).decode("ascii") for image in images]


class ChatSession(_CamelModel):
    """Complete persisted state of one conversation."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str | None = Field(default=None, description="Display name, derived from the first message")
    model: str | None = Field(default=None, description="Selected model identifier")
    provider: str = Field(default="local", description="Selected provider tag")
    messages: list[Message] = Field(default_factory=list, description="Conversation order, oldest first")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    options: SessionOptions = Field(default_factory=SessionOptions)


class ContextUsage(BaseModel):
    """Token accounting against a model's context window."""

    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)
    limit: int = Field(default=DEFAULT_CONTEXT_LIMIT, gt=0)

    @property
    def fraction(self) -> float:
        """Share of the context window taken by the last prompt."""
        return self.prompt_tokens / self.limit

    @property
    def percent(self) -> int:
        return round(self.fraction * 100)


class ContextWarning(BaseModel):
    """Raised condition: the conversation is close to the context limit."""

    model_config = ConfigDict(frozen=True)

    percent: int
    usage: ContextUsage
