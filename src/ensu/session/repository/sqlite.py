"""SQLite session repository.

Provides persistent session storage using a SQLite database file.
Uses aiosqlite for async access. Each session is one row holding its
JSON document, with the listing columns kept alongside.
"""

import logging
from datetime import datetime
from pathlib import Path

import aiosqlite

from ...errors import EnsuError
from ..models import ChatSession
from .base import SessionRepository, SessionSummary
from .validation import prepare_for_save, validate_session_id

logger = logging.getLogger(__name__)


class SQLiteSessionRepository(SessionRepository):
    """SQLite-backed session repository.

    Supports persistent storage across application runs.
    """

    def __init__(self, path: str | Path = "./ensu_sessions.db"):
        self._db_path = Path(path)
        self._connection: aiosqlite.Connection | None = None

    @property
    def _db(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise EnsuError("Session repository is not connected")
        return self._connection

    async def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._connection is not None:
            return
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self._db_path)
        await self._create_schema()
        logger.debug("Session database opened at %s", self._db_path)

    async def _create_schema(self) -> None:
        """Create database tables."""
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                session_id TEXT PRIMARY KEY,
                name TEXT,
                model TEXT,
                provider TEXT NOT NULL,
                message_count INTEGER NOT NULL DEFAULT 0,
                document TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_sessions_updated
            ON sessions(updated_at)
        """)

        await self._db.commit()

    async def disconnect(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def list(self) -> list[SessionSummary]:
        async with self._db.execute(
            """
            SELECT session_id, name, model, provider, message_count, updated_at
            FROM sessions
            ORDER BY updated_at DESC
            """
        ) as cursor:
            rows = await cursor.fetchall()

        summaries = [
            SessionSummary(
                id=session_id,
                name=name,
                model=model,
                provider=provider,
                message_count=message_count,
                updated_at=datetime.fromisoformat(updated_at),
            )
            for session_id, name, model, provider, message_count, updated_at in rows
        ]
        return summaries

    async def get(self, session_id: str) -> ChatSession | None:
        validate_session_id(session_id)
        async with self._db.execute(
            "SELECT document FROM sessions WHERE session_id = ?",
            (session_id,)
        ) as cursor:
            row = await cursor.fetchone()

        if row is None:
            return None
        return ChatSession.model_validate_json(row[0])

    async def save(self, session: ChatSession) -> ChatSession:
        stored, document = prepare_for_save(session)

        await self._db.execute("""
            INSERT INTO sessions
            (session_id, name, model, provider, message_count, document, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(session_id) DO UPDATE SET
                name = excluded.name,
                model = excluded.model,
                provider = excluded.provider,
                message_count = excluded.message_count,
                document = excluded.document,
                updated_at = excluded.updated_at
        """, (
            stored.id,
            stored.name,
            stored.model,
            stored.provider,
            len(stored.messages),
            document,
            stored.created_at.isoformat(),
            # Fixed-width UTC text so the index orders rows by time
            stored.updated_at.isoformat(timespec="microseconds"),
        ))

        await self._db.commit()
        return stored

    async def delete(self, session_id: str) -> bool:
        validate_session_id(session_id)
        cursor = await self._db.execute(
            "DELETE FROM sessions WHERE session_id = ?",
            (session_id,)
        )
        await self._db.commit()
        return cursor.rowcount > 0

    @property
    def backend_type(self) -> str:
        return "sqlite"

    @property
    def db_path(self) -> Path:
        return self._db_path
