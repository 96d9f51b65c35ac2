"""SQLite-backed document storage.

SqliteDocumentStore implements the DocumentStore protocol using stdlib
sqlite3. Documents are stored as JSON in a single ``documents`` table keyed
by ``(collection, doc_id)``. Blocking calls run in a worker thread via
``asyncio.to_thread``; a thread lock serializes access to the connection.

``transact`` wraps the read-modify-write in ``BEGIN IMMEDIATE`` so the write
lock is held from the read onwards, which makes it safe across processes
sharing the same database file.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
import uuid
from pathlib import Path
from typing import Any

from storyfriends.store.base import (
    Clock,
    DocumentNotFoundError,
    Mutator,
    T,
    apply_updates,
    matches,
    resolve_sentinels,
    utc_now,
)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    doc_id     TEXT NOT NULL,
    data       JSON NOT NULL,
    PRIMARY KEY (collection, doc_id)
);
CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection);
"""


class SqliteDocumentStore:
    """SQLite-backed document store."""

    def __init__(
        self,
        db_path: str | Path = ":memory:",
        *,
        clock: Clock = utc_now,
    ) -> None:
        """Open or create a SQLite document database.

        Args:
            db_path: Path to ``.db`` file, or ``":memory:"`` for in-memory.
            clock: Source of ``SERVER_TIMESTAMP`` values.
        """
        self._db_path = str(db_path) if isinstance(db_path, Path) else db_path
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            self._db_path,
            isolation_level=None,  # autocommit, transactions managed explicitly
            check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.executescript(_SCHEMA)
        self._clock = clock
        self._lock = threading.Lock()

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # -- Sync helpers (run in worker thread) --------------------------------

    def _read(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        row = self._conn.execute(
            "SELECT data FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, doc_id),
        ).fetchone()
        if row is None:
            return None
        data: dict[str, Any] = json.loads(row["data"])
        return data

    def _write(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self._conn.execute(
            "INSERT INTO documents (collection, doc_id, data) VALUES (?, ?, ?) "
            "ON CONFLICT(collection, doc_id) DO UPDATE SET data = excluded.data",
            (collection, doc_id, json.dumps(data)),
        )

    def _set_sync(
        self, collection: str, doc_id: str, data: dict[str, Any], merge: bool
    ) -> None:
        payload = {k: v for k, v in data.items() if k != "id"}
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                current = self._read(collection, doc_id) if merge else None
                if current is not None:
                    apply_updates(current, payload, self._clock())
                    self._write(collection, doc_id, current)
                else:
                    self._write(collection, doc_id, resolve_sentinels(payload, self._clock()))
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    def _update_sync(self, collection: str, doc_id: str, updates: dict[str, Any]) -> None:
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                current = self._read(collection, doc_id)
                if current is None:
                    raise DocumentNotFoundError(collection, doc_id)
                apply_updates(current, updates, self._clock())
                self._write(collection, doc_id, current)
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    def _query_sync(self, collection: str, equals: dict[str, Any]) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT doc_id, data FROM documents WHERE collection = ? ORDER BY rowid",
                (collection,),
            ).fetchall()
        results = []
        for row in rows:
            document = json.loads(row["data"])
            if matches(document, equals):
                results.append({**document, "id": row["doc_id"]})
        return results

    def _transact_sync(self, collection: str, doc_id: str, mutator: Mutator[T]) -> T:
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                current = self._read(collection, doc_id)
                snapshot = None if current is None else {**current, "id": doc_id}
                updates, result = mutator(snapshot)
                if updates:
                    document = current if current is not None else {}
                    apply_updates(document, updates, self._clock())
                    self._write(collection, doc_id, document)
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")
            return result

    def _get_sync(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        with self._lock:
            document = self._read(collection, doc_id)
        return None if document is None else {**document, "id": doc_id}

    # -- DocumentStore protocol ---------------------------------------------

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._get_sync, collection, doc_id)

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        await asyncio.to_thread(self._set_sync, collection, doc_id, data, merge)

    async def update(self, collection: str, doc_id: str, updates: dict[str, Any]) -> None:
        await asyncio.to_thread(self._update_sync, collection, doc_id, updates)

    async def query(self, collection: str, **equals: Any) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._query_sync, collection, equals)

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        await self.set(collection, doc_id, data)
        return doc_id

    async def transact(self, collection: str, doc_id: str, mutator: Mutator[T]) -> T:
        return await asyncio.to_thread(self._transact_sync, collection, doc_id, mutator)
