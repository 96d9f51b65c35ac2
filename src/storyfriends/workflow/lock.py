"""Per-session compile lock.

At most one compile runs per session. The lock lives on the session
document (``compile_in_progress``, ``compile_started_at``,
``compile_request_id``) and is taken with an atomic read-modify-write, so
concurrent callers on any number of processes sharing the store see a
consistent view.

A lock older than the staleness window is treated as abandoned and taken
over. The window is shorter than the advisory compile timeout, so a slow
first attempt can occasionally overlap a retry; the lock bounds how long a
crashed compile blocks the session.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

from storyfriends.errors import SessionNotFoundError
from storyfriends.models import SessionStatus, Story
from storyfriends.observability.logging import get_logger
from storyfriends.store.base import SERVER_TIMESTAMP, utc_now
from storyfriends.workflow.sessions import SESSIONS_COLLECTION, load_story

if TYPE_CHECKING:
    from storyfriends.store.base import Clock, DocumentStore

log = get_logger(__name__)

DEFAULT_LOCK_TIMEOUT_SECONDS = 120.0


@dataclass(frozen=True)
class LockAcquisition:
    """Outcome of a lock attempt.

    Attributes:
        acquired: True when the caller now holds the lock.
        reason: Why the lock was not acquired.
        story: Existing story when ``reason`` is ``already_completed``.
        held_for_seconds: Age of the lock that refused the caller.
        took_over: True when a stale lock was replaced.
    """

    acquired: bool
    reason: Literal["in_progress", "already_completed"] | None = None
    story: Story | None = None
    held_for_seconds: float | None = None
    took_over: bool = False


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
    else:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


class CompileLockManager:
    """Acquires and releases the compile lock on session documents."""

    def __init__(
        self,
        store: DocumentStore,
        lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self.lock_timeout_seconds = lock_timeout_seconds
        self._clock = clock

    async def try_acquire(self, session_id: str, request_id: str | None = None) -> LockAcquisition:
        """Try to take the compile lock for a session.

        Raises:
            SessionNotFoundError: If the session does not exist.
        """
        story = await load_story(self._store, session_id)
        now = self._clock()

        def mutate(
            session: dict[str, Any] | None,
        ) -> tuple[dict[str, Any] | None, LockAcquisition]:
            if session is None:
                raise SessionNotFoundError(session_id)

            if session.get("status") == SessionStatus.COMPLETED and story is not None:
                return None, LockAcquisition(False, "already_completed", story=story)

            took_over = False
            if session.get("compile_in_progress"):
                started_at = parse_timestamp(session.get("compile_started_at"))
                age = (now - started_at).total_seconds() if started_at else None
                if age is not None and age < self.lock_timeout_seconds:
                    return None, LockAcquisition(False, "in_progress", held_for_seconds=age)
                took_over = True

            updates = {
                "compile_in_progress": True,
                "compile_started_at": now.isoformat(),
                "compile_request_id": request_id,
                "updated_at": SERVER_TIMESTAMP,
            }
            return updates, LockAcquisition(True, took_over=took_over)

        result = await self._store.transact(SESSIONS_COLLECTION, session_id, mutate)

        if result.acquired:
            log.info(
                "compile_lock_acquired",
                session_id=session_id,
                request_id=request_id,
                took_over=result.took_over,
            )
        elif result.reason == "in_progress":
            log.info(
                "compile_lock_busy",
                session_id=session_id,
                held_for_seconds=round(result.held_for_seconds or 0.0, 1),
            )
        else:
            log.info("compile_already_completed", session_id=session_id)
        return result

    async def release(
        self, session_id: str, request_id: str | None = None, error: str | None = None
    ) -> None:
        """Clear the lock and record the last compile error (None on success).

        The flag is cleared only while ``request_id`` still holds the lock; a
        holder whose lock was taken over leaves the new holder's lock alone.

        Never raises for a vanished session; the release runs from ``finally``
        blocks where a second error would mask the first.
        """

        def mutate(session: dict[str, Any] | None) -> tuple[dict[str, Any] | None, bool | None]:
            if session is None:
                return None, None
            updates: dict[str, Any] = {"last_compile_error": error, "updated_at": SERVER_TIMESTAMP}
            holds = session.get("compile_request_id") == request_id
            if holds:
                updates["compile_in_progress"] = False
            return updates, holds

        released = await self._store.transact(SESSIONS_COLLECTION, session_id, mutate)
        if released is None:
            log.warning("compile_lock_release_missing_session", session_id=session_id)
        elif not released:
            log.warning(
                "compile_lock_superseded",
                session_id=session_id,
                request_id=request_id,
                failed=error is not None,
            )
        else:
            log.debug("compile_lock_released", session_id=session_id, failed=error is not None)
