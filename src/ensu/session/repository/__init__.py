"""Saved-session storage."""

from .base import SessionRepository, SessionSummary
from .factory import create_session_repository
from .in_memory import InMemorySessionRepository
from .sqlite import SQLiteSessionRepository
from .validation import (
    MAX_MESSAGES,
    MAX_NAME_LENGTH,
    MAX_SESSION_BYTES,
    prepare_for_save,
    validate_session_id,
)

__all__ = [
    "SessionRepository",
    "SessionSummary",
    "InMemorySessionRepository",
    "SQLiteSessionRepository",
    "create_session_repository",
    "prepare_for_save",
    "validate_session_id",
    "MAX_MESSAGES",
    "MAX_NAME_LENGTH",
    "MAX_SESSION_BYTES",
]
