"""Workflow error types.

Every error the workflow surfaces to a caller maps to one ``ErrorKind``.
Compile conflicts are not exceptions; the lock manager reports them as a
refused acquisition. The state machine and compile service catch these and
turn them into error outputs; nothing here escapes ``advance``.
"""

from __future__ import annotations

from storyfriends.models import ErrorKind


class WorkflowError(Exception):
    """Base class for errors surfaced as an error output."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InputError(WorkflowError):
    """Caller-correctable problem. The persisted phase is left unchanged."""

    kind = ErrorKind.INPUT


class SessionNotFoundError(InputError):
    """Raised when the session id does not name a stored session."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session '{session_id}' not found")


class ChildNotFoundError(InputError):
    """Raised when the primary child profile cannot be loaded."""

    def __init__(self, child_id: str) -> None:
        self.child_id = child_id
        super().__init__(f"Child profile '{child_id}' not found")


class MissingPrerequisiteError(InputError):
    """Raised when a phase needs state an earlier phase should have produced."""

    def __init__(self, missing: str, message: str) -> None:
        self.missing = missing
        super().__init__(message)


class UnknownOptionError(InputError):
    """Raised when a selected option id is not among the offered options."""

    def __init__(self, option_id: str, available: list[str]) -> None:
        self.option_id = option_id
        self.available = available
        super().__init__(
            f"Option '{option_id}' is not one of the offered options: {', '.join(available)}"
        )


class InvalidActionError(InputError):
    """Raised when an action is not available in the session's current phase."""

    def __init__(self, action: str, phase: str) -> None:
        self.action = action
        self.phase = phase
        super().__init__(f"Action '{action}' is not available during {phase.replace('_', ' ')}")


class AIInvocationError(WorkflowError):
    """Raised when a model call fails or returns output violating its contract.

    The message is detailed and goes to logs and the trace store; callers
    show ``public_message`` instead.
    """

    kind = ErrorKind.UPSTREAM
    public_message = "The story service is temporarily unavailable. Please try again."

    def __init__(self, flow_name: str, message: str) -> None:
        self.flow_name = flow_name
        super().__init__(f"[{flow_name}] {message}")
