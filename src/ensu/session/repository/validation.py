"""Storage limits applied before a session is persisted."""

import json
import re

from ...errors import SessionValidationError
from ..models import ChatSession, utcnow

SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,100}$")
MAX_SESSION_BYTES = 1024 * 1024
MAX_MESSAGES = 1000
MAX_NAME_LENGTH = 200


def validate_session_id(session_id: str) -> None:
    if not isinstance(session_id, str) or not SESSION_ID_PATTERN.match(session_id):
        raise SessionValidationError(f"Invalid session id: {session_id!r}")


def prepare_for_save(session: ChatSession) -> tuple[ChatSession, str]:
    """Validate ``session`` and return the stored copy with its JSON document.

    Raises:
        SessionValidationError: Invalid id, too many messages, name too
            long or document larger than 1 MiB
    """
    validate_session_id(session.id)

    if len(session.messages) > MAX_MESSAGES:
        raise SessionValidationError(
            f"Session {session.id} has {len(session.messages)} messages (max {MAX_MESSAGES})"
        )
    if session.name is not None and len(session.name) > MAX_NAME_LENGTH:
        raise SessionValidationError(
            f"Session name is {len(session.name)} characters (max {MAX_NAME_LENGTH})"
        )

    stored = session.model_copy(deep=True, update={"updated_at": utcnow()})
    document = json.dumps(stored.model_dump(mode="json", by_alias=True))
    size = len(document.encode("utf-8"))
    if size > MAX_SESSION_BYTES:
        raise SessionValidationError(
            f"Session {session.id} is {size} bytes (max {MAX_SESSION_BYTES})"
        )
    return stored, document
