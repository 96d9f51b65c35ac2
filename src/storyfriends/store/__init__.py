"""Document storage for sessions, stories, entities, and traces."""

from storyfriends.store.base import (
    SERVER_TIMESTAMP,
    DocumentNotFoundError,
    DocumentStore,
)
from storyfriends.store.memory import MemoryDocumentStore
from storyfriends.store.sqlite import SqliteDocumentStore

__all__ = [
    "SERVER_TIMESTAMP",
    "DocumentNotFoundError",
    "DocumentStore",
    "MemoryDocumentStore",
    "SqliteDocumentStore",
]
