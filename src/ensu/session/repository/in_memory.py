"""In-memory session repository.

Simple dict-based storage for session-only persistence.
Data is lost when the application exits.
"""

from ..models import ChatSession
from .base import SessionRepository, SessionSummary
from .validation import prepare_for_save, validate_session_id


class InMemorySessionRepository(SessionRepository):
    """In-memory session repository (process lifetime only).

    Stores validated JSON documents, so a saved session is isolated from
    later changes to the caller's object. Suitable for testing.
    """

    def __init__(self):
        self._documents: dict[str, str] = {}

    async def connect(self) -> None:
        """Initialize repository (no-op for in-memory)."""

    async def disconnect(self) -> None:
        """Close repository (no-op for in-memory)."""

    async def list(self) -> list[SessionSummary]:
        sessions = [ChatSession.model_validate_json(doc) for doc in self._documents.values()]
        sessions.sort(key=lambda s: s.updated_at, reverse=True)
        return [
            SessionSummary(
                id=s.id,
                name=s.name,
                model=s.model,
                provider=s.provider,
                message_count=len(s.messages),
                updated_at=s.updated_at,
            )
            for s in sessions
        ]

    async def get(self, session_id: str) -> ChatSession | None:
        validate_session_id(session_id)
        document = self._documents.get(session_id)
        return ChatSession.model_validate_json(document) if document is not None else None

    async def save(self, session: ChatSession) -> ChatSession:
        stored, document = prepare_for_save(session)
        self._documents[stored.id] = document
        return stored

    async def delete(self, session_id: str) -> bool:
        validate_session_id(session_id)
        return self._documents.pop(session_id, None) is not None

    @property
    def backend_type(self) -> str:
        return "memory"
