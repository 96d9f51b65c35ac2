"""Observability module for StoryFriends.

Provides structured logging, request correlation, and the AI call trace store.
"""

from storyfriends.observability.ai_trace import (
    AITraceEntry,
    AITraceStore,
    DocumentTraceStore,
    JSONLTraceStore,
    MemoryTraceStore,
    truncate,
)
from storyfriends.observability.context import (
    bind_request_context,
    clear_request_context,
    generate_request_id,
    get_request_id,
)
from storyfriends.observability.logging import (
    close_file_logging,
    configure_logging,
    get_logger,
    get_logs_dir,
)

__all__ = [
    "AITraceEntry",
    "AITraceStore",
    "DocumentTraceStore",
    "JSONLTraceStore",
    "MemoryTraceStore",
    "bind_request_context",
    "clear_request_context",
    "close_file_logging",
    "configure_logging",
    "generate_request_id",
    "get_logger",
    "get_logs_dir",
    "get_request_id",
    "truncate",
]
