"""Chat sessions: message history, context usage and persistence.

Usage:
    from ensu.session import SessionStore, create_session_repository

    store = SessionStore.create_session(model="gpt-4o", provider="remote")
    async with create_session_repository("sqlite", path="sessions.db") as repo:
        await repo.save(store.session)
"""

from .models import (
    NO_RESPONSE_TEXT,
    ChatSession,
    ContextUsage,
    ContextWarning,
    Message,
    Role,
    SessionOptions,
)
from .repository import (
    InMemorySessionRepository,
    SessionRepository,
    SessionSummary,
    SQLiteSessionRepository,
    create_session_repository,
)
from .store import SessionStore

__all__ = [
    # Models
    "ChatSession",
    "ContextUsage",
    "ContextWarning",
    "Message",
    "Role",
    "SessionOptions",
    "NO_RESPONSE_TEXT",
    # Store
    "SessionStore",
    # Repositories
    "SessionRepository",
    "SessionSummary",
    "InMemorySessionRepository",
    "SQLiteSessionRepository",
    "create_session_repository",
]
