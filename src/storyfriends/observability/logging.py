"""Structured logging configuration for StoryFriends.

Console output goes to stderr, either through a rich handler (CLI use) or
as one JSON object per line (``json_console=True``, for the HTTP server
behind a log collector). File logging appends JSONL events to
``{log_dir}/debug.jsonl``.

Request context (request id, session id) bound with
``observability.context.bind_request_context`` is merged into every event.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path  # noqa: TC003 - Used at runtime for path operations
from typing import TYPE_CHECKING, Any

import structlog
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from structlog.typing import Processor

# Module-level state
_configured = False
_file_handler: logging.FileHandler | None = None
_logs_dir: Path | None = None

# Dependencies whose DEBUG output drowns out workflow events
_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "urllib3",
    "langchain",
    "langchain_core",
    "uvicorn.access",
    "asyncio",
)


def record_to_entry(record: logging.LogRecord) -> dict[str, Any]:
    """Flatten a log record into a JSON-ready dict.

    structlog passes the event dict via ``record.msg`` when using
    ``wrap_for_formatter``; its ``event`` becomes ``message`` and every other
    key is lifted to the top level.
    """
    entry: dict[str, Any] = {
        "timestamp": datetime.now(UTC).isoformat(),
        "level": record.levelname,
        "logger": record.name,
    }
    if isinstance(record.msg, dict):
        event_dict = dict(record.msg)
        event_dict.pop("level", None)
        event_dict.pop("timestamp", None)
        entry["message"] = event_dict.pop("event", str(record.msg))
        entry.update(event_dict)
    else:
        entry["message"] = record.getMessage()
    if record.exc_info:
        entry["exception"] = logging.Formatter().formatException(record.exc_info)
    return entry


class JSONLFormatter(logging.Formatter):
    """Formats each record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(record_to_entry(record), default=str)


class JSONLFileHandler(logging.FileHandler):
    """File handler that writes JSONL format."""

    def __init__(self, filename: str, mode: str = "a") -> None:
        super().__init__(filename, mode=mode, encoding="utf-8")
        self.setFormatter(JSONLFormatter())


def _console_handler(verbosity: int, level: int, json_console: bool) -> logging.Handler:
    if json_console:
        handler: logging.Handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(JSONLFormatter())
        handler.setLevel(level)
        return handler
    return RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        tracebacks_show_locals=verbosity >= 2,
        show_time=verbosity >= 1,
        show_path=verbosity >= 2,
        markup=False,
        level=level,
    )


def configure_logging(
    verbosity: int = 0,
    log_to_file: bool = False,
    log_dir: Path | None = None,
    json_console: bool = False,
) -> None:
    """Configure logging for StoryFriends.

    Args:
        verbosity: 0=WARNING (default), 1=INFO, 2+=DEBUG
        log_to_file: If True, enable file logging to {log_dir}/debug.jsonl.
        log_dir: Directory for file logging. Required if log_to_file=True.
        json_console: Emit console events as JSON lines instead of rich output.

    Raises:
        ValueError: If log_to_file=True but log_dir is not provided.
    """
    global _configured, _file_handler, _logs_dir

    if log_to_file and log_dir is None:
        raise ValueError("log_dir is required when log_to_file=True")

    # Close existing file handler if reconfiguring
    if _file_handler is not None:
        _file_handler.close()
        _file_handler = None

    levels = {0: logging.WARNING, 1: logging.INFO}
    console_level = levels.get(verbosity, logging.DEBUG)
    handlers = [_console_handler(verbosity, console_level, json_console)]

    if log_to_file and log_dir:
        _logs_dir = log_dir
        _logs_dir.mkdir(parents=True, exist_ok=True)
        _file_handler = JSONLFileHandler(str(_logs_dir / "debug.jsonl"))
        _file_handler.setLevel(logging.DEBUG)
        handlers.append(_file_handler)

    root_level = logging.DEBUG if (verbosity > 1 or log_to_file) else console_level
    logging.basicConfig(level=root_level, format="%(message)s", handlers=handlers, force=True)

    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(root_level),
        cache_logger_on_first_use=True,
    )

    _configured = True


def get_logger(name: str | None = None) -> structlog.typing.FilteringBoundLogger:
    """Get a structured logger, configuring logging on first use."""
    if not _configured:
        configure_logging()

    logger: structlog.typing.FilteringBoundLogger = structlog.get_logger(name)
    return logger


def get_logs_dir() -> Path | None:
    """Get the configured logs directory, or None if file logging is off."""
    return _logs_dir


def close_file_logging() -> None:
    """Close file logging handler."""
    global _file_handler
    if _file_handler:
        _file_handler.close()
        _file_handler = None
