"""Session and story document access."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from storyfriends.errors import SessionNotFoundError
from storyfriends.models import Phase, Session, SessionStatus, Story
from storyfriends.observability.logging import get_logger
from storyfriends.store.base import SERVER_TIMESTAMP

if TYPE_CHECKING:
    from storyfriends.store.base import DocumentStore

log = get_logger(__name__)

SESSIONS_COLLECTION = "story_sessions"
STORIES_COLLECTION = "stories"


async def load_session(store: DocumentStore, session_id: str) -> Session:
    """Load and validate a session.

    Raises:
        SessionNotFoundError: If the session is missing or unreadable.
    """
    if not session_id or not session_id.strip():
        raise SessionNotFoundError(session_id)
    data = await store.get(SESSIONS_COLLECTION, session_id)
    if data is None:
        raise SessionNotFoundError(session_id)
    try:
        return Session.model_validate(data)
    except ValidationError as e:
        log.error("session_invalid", session_id=session_id, error=str(e))
        raise SessionNotFoundError(session_id) from e


async def load_story(store: DocumentStore, session_id: str) -> Story | None:
    data = await store.get(STORIES_COLLECTION, session_id)
    if data is None:
        return None
    try:
        return Story.model_validate(data)
    except ValidationError as e:
        log.warning("story_invalid", session_id=session_id, error=str(e))
        return None


async def update_session(store: DocumentStore, session_id: str, updates: dict[str, Any]) -> None:
    """Write the given session fields, stamping ``updated_at``."""
    await store.update(SESSIONS_COLLECTION, session_id, {**updates, "updated_at": SERVER_TIMESTAMP})


async def create_session(
    store: DocumentStore,
    child_id: str,
    parent_uid: str,
    session_id: str | None = None,
) -> str:
    """Create a fresh session with no phase. Returns the session id."""
    sid = session_id or uuid.uuid4().hex
    await store.set(
        SESSIONS_COLLECTION,
        sid,
        {
            "child_id": child_id,
            "parent_uid": parent_uid,
            "phase": None,
            "status": SessionStatus.IN_PROGRESS.value,
            "created_at": SERVER_TIMESTAMP,
            "updated_at": SERVER_TIMESTAMP,
        },
    )
    log.info("session_created", session_id=sid, child_id=child_id)
    return sid


def is_complete(session: Session) -> bool:
    return session.status == SessionStatus.COMPLETED or session.phase == Phase.COMPLETE
