"""In-memory document store.

Default backend for tests and single-process development. All state lives in
a nested dict ``{collection: {doc_id: document}}``; an asyncio lock makes
``transact`` atomic with respect to every other write.
"""

from __future__ import annotations

import asyncio
import copy
import uuid
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


class MemoryDocumentStore:
    """Dict-backed document store."""

    def __init__(
        self,
        data: dict[str, dict[str, dict[str, Any]]] | None = None,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._data: dict[str, dict[str, dict[str, Any]]] = copy.deepcopy(data) if data else {}
        self._clock = clock
        self._lock = asyncio.Lock()

    @classmethod
    def from_dict(cls, data: dict[str, dict[str, dict[str, Any]]]) -> MemoryDocumentStore:
        """Create a store seeded with ``{collection: {doc_id: document}}``."""
        return cls(data)

    def _collection(self, collection: str) -> dict[str, dict[str, Any]]:
        return self._data.setdefault(collection, {})

    @staticmethod
    def _with_id(doc_id: str, document: dict[str, Any]) -> dict[str, Any]:
        return {**copy.deepcopy(document), "id": doc_id}

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        document = self._collection(collection).get(doc_id)
        return None if document is None else self._with_id(doc_id, document)

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        async with self._lock:
            docs = self._collection(collection)
            payload = {k: v for k, v in data.items() if k != "id"}
            if merge and doc_id in docs:
                apply_updates(docs[doc_id], payload, self._clock())
            else:
                docs[doc_id] = copy.deepcopy(resolve_sentinels(payload, self._clock()))

    async def update(self, collection: str, doc_id: str, updates: dict[str, Any]) -> None:
        async with self._lock:
            docs = self._collection(collection)
            if doc_id not in docs:
                raise DocumentNotFoundError(collection, doc_id)
            apply_updates(docs[doc_id], updates, self._clock())

    async def query(self, collection: str, **equals: Any) -> list[dict[str, Any]]:
        return [
            self._with_id(doc_id, document)
            for doc_id, document in self._collection(collection).items()
            if matches(document, equals)
        ]

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        await self.set(collection, doc_id, data)
        return doc_id

    async def transact(self, collection: str, doc_id: str, mutator: Mutator[T]) -> T:
        async with self._lock:
            docs = self._collection(collection)
            current = docs.get(doc_id)
            updates, result = mutator(None if current is None else self._with_id(doc_id, current))
            if updates:
                if current is None:
                    current = {}
                    docs[doc_id] = current
                apply_updates(current, updates, self._clock())
            return result

    def to_dict(self) -> dict[str, dict[str, dict[str, Any]]]:
        """Serialize the entire store (deep copy)."""
        return copy.deepcopy(self._data)
