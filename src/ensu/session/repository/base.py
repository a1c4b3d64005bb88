"""Abstract base class for session repositories.

This module defines the interface for saved-session storage.
The abstraction hides:
- Storage format (JSON document, SQLite rows)
- Persistence mechanism (database file, in-memory)
- Connection management
"""

from abc import ABC, abstractmethod
from datetime import datetime

from pydantic import BaseModel, Field

from ..models import ChatSession


class SessionSummary(BaseModel):
    """Listing entry for a saved session."""

    id: str
    name: str | None = None
    model: str | None = None
    provider: str = "local"
    message_count: int = Field(default=0, ge=0)
    updated_at: datetime


class SessionRepository(ABC):
    """Abstract session repository.

    Every backend applies the same validation on ``save`` and refreshes
    ``updated_at`` on the stored copy.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Initialize the repository."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the repository gracefully."""

    @abstractmethod
    async def list(self) -> list[SessionSummary]:
        """Summaries of all saved sessions, most recently updated first."""

    @abstractmethod
    async def get(self, session_id: str) -> ChatSession | None:
        """Load a session, or None if it does not exist."""

    @abstractmethod
    async def save(self, session: ChatSession) -> ChatSession:
        """Validate and persist a session.

        Returns:
            The stored copy, with ``updated_at`` refreshed

        Raises:
            SessionValidationError: The session breaks a storage limit
        """

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """Delete a session. Returns False if it did not exist."""

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Get the backend type identifier."""

    async def __aenter__(self) -> "SessionRepository":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()
