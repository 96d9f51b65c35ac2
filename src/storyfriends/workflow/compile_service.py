"""Lock-guarded story compilation.

``CompileService.compile`` is the single entry to the compile step, used by
both the compile endpoint and the state machine's synopsis selection:

1. take the session's compile lock (or replay / refuse),
2. run the StoryCompiler,
3. release the lock in ``finally`` if this attempt still holds it,
   recording the last error.

The compile timeout is advisory: an overrun is logged, the model call is
never cancelled.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from storyfriends.errors import AIInvocationError, WorkflowError
from storyfriends.models import ErrorKind
from storyfriends.observability.context import generate_request_id
from storyfriends.observability.logging import get_logger
from storyfriends.workflow.sessions import load_session

if TYPE_CHECKING:
    from storyfriends.models import Story
    from storyfriends.store.base import DocumentStore
    from storyfriends.workflow.compiler import StoryCompiler
    from storyfriends.workflow.lock import CompileLockManager

log = get_logger(__name__)

DEFAULT_COMPILE_TIMEOUT_SECONDS = 180.0

INTERNAL_ERROR_MESSAGE = "Something went wrong while creating the story. Please try again."


@dataclass
class CompileOutcome:
    """Result of a compile request.

    Attributes:
        ok: True when a story exists for the session afterwards.
        story_id: Story id (same as the session id).
        story: The story, when ``ok``.
        already_completed: The session was already compiled; nothing ran.
        already_in_progress: Another compile holds a fresh lock.
        fresh: This call produced the story (enrichment should be scheduled).
        error_message: Caller-facing error message.
        error_kind: Failure class when not ``ok``.
    """

    ok: bool
    story_id: str | None = None
    story: Story | None = None
    already_completed: bool = False
    already_in_progress: bool = False
    fresh: bool = False
    error_message: str | None = None
    error_kind: ErrorKind | None = None

    def to_response(self) -> dict[str, Any]:
        """Wire shape for the compile endpoint."""
        if self.ok:
            body: dict[str, Any] = {"ok": True, "story_id": self.story_id}
            if self.already_completed:
                body["already_completed"] = True
            return body
        body = {"ok": False, "error_message": self.error_message}
        if self.already_in_progress:
            body["already_in_progress"] = True
        return body


class CompileService:
    """Runs the StoryCompiler under the session's compile lock."""

    def __init__(
        self,
        store: DocumentStore,
        lock: CompileLockManager,
        compiler: StoryCompiler,
        compile_timeout_seconds: float = DEFAULT_COMPILE_TIMEOUT_SECONDS,
    ) -> None:
        self._store = store
        self._lock = lock
        self._compiler = compiler
        self.compile_timeout_seconds = compile_timeout_seconds

    async def compile(
        self,
        session_id: str,
        output_style_id: str | None = None,
        request_id: str | None = None,
    ) -> CompileOutcome:
        """Compile the story for a session. Never raises."""
        # holder id; release clears only this attempt's lock
        request_id = request_id or generate_request_id()
        try:
            acquisition = await self._lock.try_acquire(session_id, request_id)
        except WorkflowError as e:
            return CompileOutcome(ok=False, error_message=e.message, error_kind=e.kind)
        except Exception as e:
            log.error("compile_lock_failed", session_id=session_id, error=str(e), exc_info=True)
            return CompileOutcome(
                ok=False, error_message=INTERNAL_ERROR_MESSAGE, error_kind=ErrorKind.INTERNAL
            )

        if acquisition.reason == "already_completed" and acquisition.story is not None:
            return CompileOutcome(
                ok=True,
                story_id=acquisition.story.id,
                story=acquisition.story,
                already_completed=True,
            )
        if not acquisition.acquired:
            return CompileOutcome(
                ok=False,
                already_in_progress=True,
                error_message="Story is already being created. Please try again shortly.",
                error_kind=ErrorKind.CONFLICT,
            )

        start = time.monotonic()
        error: str | None = None
        try:
            session = await load_session(self._store, session_id)
            story = await self._compiler.compile(session, output_style_id)
            return CompileOutcome(ok=True, story_id=story.id, story=story, fresh=True)
        except AIInvocationError as e:
            error = str(e)
            return CompileOutcome(
                ok=False, error_message=e.public_message, error_kind=ErrorKind.UPSTREAM
            )
        except WorkflowError as e:
            error = e.message
            return CompileOutcome(ok=False, error_message=e.message, error_kind=e.kind)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            log.error("compile_failed", session_id=session_id, error=error, exc_info=True)
            return CompileOutcome(
                ok=False, error_message=INTERNAL_ERROR_MESSAGE, error_kind=ErrorKind.INTERNAL
            )
        finally:
            elapsed = time.monotonic() - start
            if elapsed > self.compile_timeout_seconds:
                log.warning(
                    "compile_timeout_exceeded",
                    session_id=session_id,
                    elapsed_seconds=round(elapsed, 1),
                    timeout_seconds=self.compile_timeout_seconds,
                )
            try:
                await self._lock.release(session_id, request_id, error)
            except Exception as e:
                log.error("compile_lock_release_failed", session_id=session_id, error=str(e))
            log.info(
                "compile_finished",
                session_id=session_id,
                ok=error is None,
                elapsed_ms=round(elapsed * 1000),
            )
