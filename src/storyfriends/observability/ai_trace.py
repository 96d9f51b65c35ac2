"""Append-only trace store for AI model calls.

Every model invocation, successful or not, produces one ``AITraceEntry``.
Entries go to a JSONL file (``ai_calls.jsonl``) or to a document store
collection. Prompt, response, and error text are truncated to a fixed
budget so a runaway response cannot bloat the trace store.

Trace writes never fail the call being traced: errors are logged and dropped.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal, Protocol

from storyfriends.observability.logging import get_logger

if TYPE_CHECKING:
    from pathlib import Path

    from storyfriends.store.base import DocumentStore

log = get_logger(__name__)

DEFAULT_MAX_CHARS = 10_000
TRUNCATION_MARKER = "...[truncated]"


def truncate(text: str | None, max_chars: int = DEFAULT_MAX_CHARS) -> str | None:
    """Cut text to ``max_chars``, marking the cut."""
    if text is None or len(text) <= max_chars:
        return text
    return text[: max(0, max_chars - len(TRUNCATION_MARKER))] + TRUNCATION_MARKER


@dataclass
class AITraceEntry:
    """Entry for one AI model call."""

    timestamp: str
    flow_name: str
    model: str
    temperature: float
    status: Literal["success", "error"]
    duration_ms: int

    prompt: str
    response: str | None = None
    error: str | None = None

    session_id: str | None = None
    parent_uid: str | None = None
    request_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        flow_name: str,
        model: str,
        temperature: float,
        prompt: str,
        duration_seconds: float,
        *,
        response: str | None = None,
        error: str | None = None,
        session_id: str | None = None,
        parent_uid: str | None = None,
        request_id: str | None = None,
        max_chars: int = DEFAULT_MAX_CHARS,
        **metadata: Any,
    ) -> AITraceEntry:
        """Create an entry stamped with the current time.

        Status is ``error`` whenever ``error`` is given.

        Args:
            flow_name: Logical flow that issued the call (e.g. ``friends:scenarios``).
            model: Model string used (``provider/model``).
            temperature: Sampling temperature.
            prompt: Full prompt text (truncated here).
            duration_seconds: Wall time of the call.
            response: Raw or serialized response text.
            error: Error message if the call failed.
            session_id: Session the call was made for.
            parent_uid: Owning account, for per-account trace queries.
            request_id: Correlation id of the inbound request.
            max_chars: Truncation budget for prompt, response, and error.
            **metadata: Additional metadata.

        Returns:
            AITraceEntry ready to record.
        """
        return cls(
            timestamp=datetime.now(UTC).isoformat(),
            flow_name=flow_name,
            model=model,
            temperature=temperature,
            status="error" if error is not None else "success",
            duration_ms=round(duration_seconds * 1000),
            prompt=truncate(prompt, max_chars) or "",
            response=truncate(response, max_chars),
            error=truncate(error, max_chars),
            session_id=session_id,
            parent_uid=parent_uid,
            request_id=request_id,
            metadata=dict(metadata),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class AITraceStore(Protocol):
    """Destination for AI trace entries."""

    async def record(self, entry: AITraceEntry) -> None:
        """Append an entry. Implementations must not raise."""
        ...


class JSONLTraceStore:
    """Trace store writing one JSON object per line to ``ai_calls.jsonl``.

    Attributes:
        log_path: Path to the JSONL file.
        enabled: Whether entries are written at all.
    """

    def __init__(self, log_dir: Path, enabled: bool = True) -> None:
        self.enabled = enabled
        self.log_path = log_dir / "ai_calls.jsonl"
        if enabled:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)

    async def record(self, entry: AITraceEntry) -> None:
        if not self.enabled:
            return
        try:
            await asyncio.to_thread(self._append, entry)
        except OSError as e:
            log.warning("ai_trace_write_failed", path=str(self.log_path), error=str(e))

    def _append(self, entry: AITraceEntry) -> None:
        with self.log_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), default=str) + "\n")

    def read_entries(self) -> list[AITraceEntry]:
        """Read all entries from the log file."""
        if not self.log_path.exists():
            return []

        entries = []
        with self.log_path.open(encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    entries.append(AITraceEntry(**json.loads(line)))
        return entries


class DocumentTraceStore:
    """Trace store appending entries to a document store collection."""

    def __init__(self, store: DocumentStore, collection: str = "ai_flow_logs") -> None:
        self._store = store
        self.collection = collection

    async def record(self, entry: AITraceEntry) -> None:
        try:
            await self._store.add(self.collection, entry.to_dict())
        except Exception as e:
            log.warning(
                "ai_trace_write_failed",
                collection=self.collection,
                flow=entry.flow_name,
                error=str(e),
            )


class MemoryTraceStore:
    """Trace store that keeps entries in a list."""

    def __init__(self) -> None:
        self.entries: list[AITraceEntry] = []

    async def record(self, entry: AITraceEntry) -> None:
        self.entries.append(entry)
