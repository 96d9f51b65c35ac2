"""Request correlation for log events and compile locks.

Each inbound call (HTTP request or CLI command) gets a request id. It is
stored in a context variable and bound into structlog's contextvars so every
event logged while handling the call carries it.
"""

from __future__ import annotations

import uuid
from contextvars import ContextVar

import structlog

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)


def generate_request_id() -> str:
    """Generate a unique request id."""
    return str(uuid.uuid4())


def bind_request_context(request_id: str | None = None, **fields: str) -> str:
    """Set the request id for the current context and bind it for logging.

    Args:
        request_id: Caller-supplied id. A new one is generated when None.
        **fields: Extra context (e.g. session_id) bound alongside the id.

    Returns:
        The request id now in effect.
    """
    rid = request_id or generate_request_id()
    _request_id.set(rid)
    structlog.contextvars.bind_contextvars(request_id=rid, **fields)
    return rid


def get_request_id() -> str | None:
    """Get the request id for the current context, if any."""
    return _request_id.get()


def clear_request_context() -> None:
    """Drop the request id and all bound log context."""
    _request_id.set(None)
    structlog.contextvars.clear_contextvars()
