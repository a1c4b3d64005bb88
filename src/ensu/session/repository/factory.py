"""Factory for creating session repositories."""

from typing import Any

from .base import SessionRepository


def create_session_repository(
    backend: str = "memory",
    **kwargs: Any
) -> SessionRepository:
    """Create a repository storing each session as one JSON document keyed by its id.

    Args:
        backend: Backend type ("memory" or "sqlite")
        **kwargs: Backend-specific configuration (``path`` for sqlite)

    Returns:
        SessionRepository instance

    Raises:
        ValueError: If backend type is not supported
    """
    if backend == "memory":
        from .in_memory import InMemorySessionRepository
        return InMemorySessionRepository(**kwargs)

    elif backend == "sqlite":
        from .sqlite import SQLiteSessionRepository
        return SQLiteSessionRepository(**kwargs)

    raise ValueError(
        f"Unsupported session backend: {backend}. "
        f"Supported backends: memory, sqlite"
    )
