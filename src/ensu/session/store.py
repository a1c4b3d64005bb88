"""Ownership of one session's message history and context usage.

Only the methods here mutate the message list. A streamed turn moves
through ``begin_turn`` (the user message is appended before any network
activity) and then exactly one of ``commit_turn``, ``record_no_response``
or ``rollback_turn``.
"""

import logging
from typing import Any

from ..config import AppConfig
from ..llm.models import ChatMessage
from .models import (
    NO_RESPONSE_TEXT,
    ChatSession,
    ContextUsage,
    ContextWarning,
    Message,
    Role,
    SessionOptions,
    utcnow,
)

logger = logging.getLogger(__name__)

NAME_MAX_LENGTH = 50


class SessionStore:
    """Message history, turn bookkeeping and context usage for one session."""

    def __init__(self, session: ChatSession, config: AppConfig | None = None):
        self._session = session
        self._config = config or AppConfig()
        self._pending: Message | None = None
        self._name_before_turn: str | None = None
        self._usage = ContextUsage(limit=self._config.context_limit(session.model))
        self._warning_issued = False
        self._warning_due = False
        self._warning_acknowledged = False

    @classmethod
    def create_session(cls, config: AppConfig | None = None, **options: Any) -> "SessionStore":
        """Start a new session.

        Args:
            config: Application config providing defaults and model limits
            **options: ``id``, ``name``, ``model``, ``provider`` and any
                generation option (``temperature``, ``max_tokens``, ...)
        """
        config = config or AppConfig()
        defaults = config.defaults
        session_fields = {k: options.pop(k) for k in ("id", "name") if k in options}
        generation = {
            "temperature": defaults.temperature,
            "max_tokens": defaults.max_tokens,
            "top_p": defaults.top_p,
            **{k: v for k, v in options.items() if k not in ("model", "provider")},
        }
        session = ChatSession(
            model=options.get("model", defaults.model),
            provider=options.get("provider", defaults.provider),
            options=SessionOptions(**generation),
            **session_fields,
        )
        return cls(session, config)

    @property
    def session(self) -> ChatSession:
        return self._session

    @property
    def id(self) -> str:
        return self._session.id

    @property
    def messages(self) -> tuple[Message, ...]:
        """Read-only view of the history."""
        return tuple(self._session.messages)

    @property
    def pending(self) -> Message | None:
        """User message of the turn in progress, if any."""
        return self._pending

    @property
    def context_usage(self) -> ContextUsage:
        return self._usage

    def _touch(self) -> None:
        self._session.updated_at = utcnow()

    def add_message(
        self,
        role: Role,
        content: str,
        images: list[bytes] | None = None,
        sentinel: bool = False,
    ) -> Message:
        """Append a message to the history."""
        message = Message(role=role, content=content, images=images or [], sentinel=sentinel)
        self._session.messages.append(message)
        if self._session.name is None and role == "user" and content.strip():
            name = content.strip().splitlines()[0]
            self._session.name = name[:NAME_MAX_LENGTH]
        self._touch()
        return message

    def get_messages_for_provider(
        self,
        history_limit: int | None = None,
        system_prompt: str | None = None,
    ) -> list[ChatMessage]:
        """Role/content pairs (plus images) in conversation order.

        Args:
            history_limit: Keep only the most recent N messages
            system_prompt: Prepended as a system message when given
        """
        history = [m for m in self._session.messages if not m.sentinel]
        if history_limit is not None:
            history = history[-history_limit:] if history_limit > 0 else []

        messages = []
        if system_prompt:
            messages.append(ChatMessage(role="system", content=system_prompt))
        messages.extend(
            ChatMessage(role=m.role, content=m.content, images=tuple(m.images))
            for m in history
        )
        return messages

    def begin_turn(self, content: str, images: list[bytes] | None = None) -> Message:
        """Append the user message of a new turn.

        Raises:
            RuntimeError: A turn is already in progress
        """
        if self._pending is not None:
            raise RuntimeError(f"Session {self.id} already has a turn in progress")
        self._name_before_turn = self._session.name
        self._pending = self.add_message("user", content, images)
        return self._pending

    def _end_turn(self) -> None:
        if self._pending is None:
            raise RuntimeError(f"Session {self.id} has no turn in progress")
        self._pending = None

    def commit_turn(self, content: str, usage: dict[str, int] | None = None) -> Message:
        """Finish the turn with an assistant message (possibly partial)."""
        self._end_turn()
        message = self.add_message("assistant", content)
        self.update_usage(usage)
        return message

    def record_no_response(self, usage: dict[str, int] | None = None) -> Message:
        """Finish a failed turn that produced no text, keeping the user message."""
        self._end_turn()
        message = self.add_message("assistant", NO_RESPONSE_TEXT, sentinel=True)
        self.update_usage(usage)
        return message

    def rollback_turn(self) -> None:
        """Remove the turn's user message, leaving the history as it was."""
        pending = self._pending
        self._end_turn()
        messages = self._session.messages
        for index in range(len(messages) - 1, -1, -1):
            if messages[index] is pending:
                del messages[index]
                break
        self._session.name = self._name_before_turn
        self._touch()

    def update_usage(self, usage: dict[str, int] | None) -> None:
        """Recompute context usage from provider-reported token counts.

        Leaves the usage unchanged when ``usage`` is None. The first time
        the warning threshold is crossed, a warning becomes available
        from ``pop_context_warning``.
        """
        if not usage:
            return

        prompt_tokens = int(usage.get("prompt_tokens", 0))
        total_tokens = int(usage.get("total_tokens", prompt_tokens + int(usage.get("completion_tokens", 0))))
        self._usage = ContextUsage(
            prompt_tokens=prompt_tokens,
            total_tokens=total_tokens,
            limit=self._config.context_limit(self._session.model),
        )
        logger.debug(
            "Context usage for %s: %d/%d (%d%%)",
            self.id, prompt_tokens, self._usage.limit, self._usage.percent
        )

        if self.context_warning is not None and not self._warning_issued:
            self._warning_issued = True
            self._warning_due = True

    def pop_context_warning(self) -> ContextWarning | None:
        """The one-shot warning raised by the last usage update, if any."""
        if not self._warning_due:
            return None
        self._warning_due = False
        return self.context_warning

    @property
    def context_warning(self) -> ContextWarning | None:
        """Current warning condition, unless the user acknowledged it."""
        if self._warning_acknowledged:
            return None
        if self._usage.fraction < self._config.context_warning_threshold:
            return None
        return ContextWarning(percent=self._usage.percent, usage=self._usage)

    def acknowledge_context_warning(self) -> None:
        """Dismiss the warning until the session is reset."""
        self._warning_acknowledged = True

    def clear(self) -> None:
        """Reset the conversation, usage and warning state."""
        if self._pending is not None:
            raise RuntimeError(f"Session {self.id} has a turn in progress")
        self._session.messages.clear()
        self._session.name = None
        self._usage = ContextUsage(limit=self._config.context_limit(self._session.model))
        self._warning_issued = False
        self._warning_due = False
        self._warning_acknowledged = False
        self._touch()

    def to_json(self) -> dict[str, Any]:
        """JSON-ready dict for the session repository."""
        return self._session.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_json(cls, data: dict[str, Any], config: AppConfig | None = None) -> "SessionStore":
        """Rebuild a store from ``to_json`` output."""
        return cls(ChatSession.model_validate(data), config)
