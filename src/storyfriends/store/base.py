"""Document storage backend protocol and shared update semantics.

The DocumentStore protocol defines key-addressed JSON documents grouped into
collections. Implementations provide raw CRUD plus an atomic
read-modify-write (``transact``); the workflow layer owns validation and
business rules.

Update semantics shared by all backends:
- Keys containing dots address nested fields (``"narration_generation.status"``),
  creating intermediate objects as needed.
- The ``SERVER_TIMESTAMP`` sentinel is replaced by the store's clock at write
  time (ISO-8601 UTC string).
"""

from __future__ import annotations

import copy
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Protocol, TypeVar, runtime_checkable

T = TypeVar("T")

Clock = Callable[[], datetime]

# Mutator for transact(): receives the current document (None if absent) and
# returns (updates to apply or None for no write, value handed back to caller).
Mutator = Callable[[dict[str, Any] | None], tuple[dict[str, Any] | None, T]]


class _ServerTimestamp:
    """Sentinel replaced by the store's clock when written."""

    _instance: _ServerTimestamp | None = None

    def __new__(cls) -> _ServerTimestamp:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP: Any = _ServerTimestamp()


class DocumentNotFoundError(KeyError):
    """Raised when updating a document that does not exist."""

    def __init__(self, collection: str, doc_id: str) -> None:
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"Document '{collection}/{doc_id}' not found")

    def __str__(self) -> str:
        return str(self.args[0])


def utc_now() -> datetime:
    """Default store clock."""
    return datetime.now(UTC)


@runtime_checkable
class DocumentStore(Protocol):
    """Storage backend protocol for workflow documents.

    Documents are JSON-compatible dicts. Returned dicts are copies; mutating
    them never affects stored state. Read results include an ``id`` key.
    """

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Get a document by id, or None if absent."""
        ...

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        """Create or overwrite a document. With ``merge``, apply as an update."""
        ...

    async def update(self, collection: str, doc_id: str, updates: dict[str, Any]) -> None:
        """Apply field updates to an existing document.

        Raises:
            DocumentNotFoundError: If the document does not exist.
        """
        ...

    async def query(self, collection: str, **equals: Any) -> list[dict[str, Any]]:
        """Return documents whose top-level fields equal all given values."""
        ...

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        """Append a document with a generated id and return the id."""
        ...

    async def transact(self, collection: str, doc_id: str, mutator: Mutator[T]) -> T:
        """Run ``mutator`` against the current document atomically.

        No other write to the document can interleave between the read and
        the write. Exceptions raised by the mutator abort without writing.
        """
        ...


def resolve_sentinels(value: Any, now: datetime) -> Any:
    """Replace SERVER_TIMESTAMP sentinels (recursively) with ``now``."""
    if value is SERVER_TIMESTAMP:
        return now.isoformat()
    if isinstance(value, dict):
        return {k: resolve_sentinels(v, now) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_sentinels(v, now) for v in value]
    return value


def apply_updates(document: dict[str, Any], updates: dict[str, Any], now: datetime) -> None:
    """Apply dotted-path updates to ``document`` in place."""
    for key, value in updates.items():
        resolved = copy.deepcopy(resolve_sentinels(value, now))
        parts = key.split(".")
        target = document
        for part in parts[:-1]:
            child = target.get(part)
            if not isinstance(child, dict):
                child = {}
                target[part] = child
            target = child
        target[parts[-1]] = resolved


def matches(document: dict[str, Any], equals: dict[str, Any]) -> bool:
    """Check top-level field equality filters."""
    return all(document.get(field) == value for field, value in equals.items())
