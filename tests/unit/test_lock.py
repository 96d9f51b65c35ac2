"""Tests for the compile lock manager."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from storyfriends.errors import SessionNotFoundError
from storyfriends.workflow.lock import CompileLockManager, parse_timestamp
from storyfriends.workflow.sessions import SESSIONS_COLLECTION, STORIES_COLLECTION, load_session

if TYPE_CHECKING:
    from conftest import FakeClock

    from storyfriends.store.memory import MemoryDocumentStore


class TestTryAcquire:
    """Tests for CompileLockManager.try_acquire."""

    @pytest.mark.asyncio
    async def test_acquires_free_lock(
        self, lock: CompileLockManager, store: MemoryDocumentStore, session_id: str
    ) -> None:
        """A session with no lock is locked and stamped."""
        result = await lock.try_acquire(session_id, "req-1")

        assert result.acquired is True
        assert result.took_over is False
        session = await load_session(store, session_id)
        assert session.compile_in_progress is True
        assert session.compile_request_id == "req-1"
        assert session.compile_started_at is not None

    @pytest.mark.asyncio
    async def test_refuses_fresh_lock(
        self, lock: CompileLockManager, clock: FakeClock, session_id: str
    ) -> None:
        """A lock younger than the staleness window is respected."""
        await lock.try_acquire(session_id, "req-1")
        clock.advance(119)

        result = await lock.try_acquire(session_id, "req-2")

        assert result.acquired is False
        assert result.reason == "in_progress"
        assert result.held_for_seconds == pytest.approx(119)

    @pytest.mark.asyncio
    async def test_takes_over_stale_lock(
        self,
        lock: CompileLockManager,
        store: MemoryDocumentStore,
        clock: FakeClock,
        session_id: str,
    ) -> None:
        """A lock at least 120 seconds old is taken over."""
        await lock.try_acquire(session_id, "req-1")
        clock.advance(120)

        result = await lock.try_acquire(session_id, "req-2")

        assert result.acquired is True
        assert result.took_over is True
        session = await load_session(store, session_id)
        assert session.compile_request_id == "req-2"

    @pytest.mark.asyncio
    async def test_lock_without_timestamp_is_stale(
        self, lock: CompileLockManager, store: MemoryDocumentStore, session_id: str
    ) -> None:
        """An in-progress flag with no start time can be taken over."""
        await store.update(SESSIONS_COLLECTION, session_id, {"compile_in_progress": True})

        result = await lock.try_acquire(session_id)

        assert result.acquired is True
        assert result.took_over is True

    @pytest.mark.asyncio
    async def test_completed_session_replays(
        self, lock: CompileLockManager, store: MemoryDocumentStore, session_id: str
    ) -> None:
        """A completed session with a story is never locked again."""
        await store.update(SESSIONS_COLLECTION, session_id, {"status": "completed"})
        await store.set(
            STORIES_COLLECTION,
            session_id,
            {
                "session_id": session_id,
                "child_id": "child-1",
                "parent_uid": "parent-1",
                "title": "Done",
                "text": "Already told.",
            },
        )

        result = await lock.try_acquire(session_id)

        assert result.acquired is False
        assert result.reason == "already_completed"
        assert result.story is not None
        assert result.story.title == "Done"
        session = await load_session(store, session_id)
        assert session.compile_in_progress is False

    @pytest.mark.asyncio
    async def test_missing_session(self, lock: CompileLockManager) -> None:
        """Locking an unknown session raises SessionNotFoundError."""
        with pytest.raises(SessionNotFoundError):
            await lock.try_acquire("missing")


class TestRelease:
    """Tests for CompileLockManager.release."""

    @pytest.mark.asyncio
    async def test_release_records_error(
        self, lock: CompileLockManager, store: MemoryDocumentStore, session_id: str
    ) -> None:
        """Release clears the flag and records the last error."""
        await lock.try_acquire(session_id, "req-1")

        await lock.release(session_id, "req-1", "[friends:story] boom")

        session = await load_session(store, session_id)
        assert session.compile_in_progress is False
        assert session.last_compile_error == "[friends:story] boom"

    @pytest.mark.asyncio
    async def test_release_success_clears_error(
        self, lock: CompileLockManager, store: MemoryDocumentStore, session_id: str
    ) -> None:
        """A successful release resets last_compile_error."""
        await store.update(SESSIONS_COLLECTION, session_id, {"last_compile_error": "old"})
        await lock.try_acquire(session_id, "req-1")

        await lock.release(session_id, "req-1")

        session = await load_session(store, session_id)
        assert session.last_compile_error is None

    @pytest.mark.asyncio
    async def test_superseded_holder_keeps_new_lock(
        self,
        lock: CompileLockManager,
        store: MemoryDocumentStore,
        clock: FakeClock,
        session_id: str,
    ) -> None:
        """A holder whose lock was taken over cannot free the new holder's lock."""
        await lock.try_acquire(session_id, "req-1")
        clock.advance(121)
        takeover = await lock.try_acquire(session_id, "req-2")
        assert takeover.took_over is True

        await lock.release(session_id, "req-1", "[friends:story] slow")
        third = await lock.try_acquire(session_id, "req-3")

        assert third.acquired is False
        assert third.reason == "in_progress"
        session = await load_session(store, session_id)
        assert session.compile_in_progress is True
        assert session.compile_request_id == "req-2"
        assert session.last_compile_error == "[friends:story] slow"

    @pytest.mark.asyncio
    async def test_new_holder_release_frees_lock(
        self, lock: CompileLockManager, clock: FakeClock, session_id: str
    ) -> None:
        """After a takeover, the new holder's release frees the session."""
        await lock.try_acquire(session_id, "req-1")
        clock.advance(121)
        await lock.try_acquire(session_id, "req-2")
        await lock.release(session_id, "req-1")

        await lock.release(session_id, "req-2")

        assert (await lock.try_acquire(session_id, "req-3")).acquired is True

    @pytest.mark.asyncio
    async def test_release_missing_session_does_not_raise(self, lock: CompileLockManager) -> None:
        """Releasing a vanished session is logged, not raised."""
        await lock.release("missing", "req-1", "error")


class TestParseTimestamp:
    """Tests for parse_timestamp."""

    def test_naive_string_is_utc(self) -> None:
        parsed = parse_timestamp("2026-01-15T12:00:00")
        assert parsed is not None
        assert parsed.utcoffset() is not None
        assert parsed.utcoffset().total_seconds() == 0  # type: ignore[union-attr]

    def test_garbage_is_none(self) -> None:
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(None) is None
        assert parse_timestamp(12) is None
