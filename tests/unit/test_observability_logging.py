"""Tests for structured logging configuration."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import pytest

from storyfriends.observability import (
    bind_request_context,
    clear_request_context,
    close_file_logging,
    configure_logging,
    get_logger,
)
from storyfriends.observability.logging import JSONLFormatter, record_to_entry

if TYPE_CHECKING:
    from pathlib import Path


def test_configure_logging_sets_level_warning() -> None:
    """Default verbosity (0) sets WARNING level."""
    configure_logging(verbosity=0)

    assert logging.getLogger().level == logging.WARNING


def test_configure_logging_verbose_sets_info() -> None:
    configure_logging(verbosity=1)

    assert logging.getLogger().level == logging.INFO


def test_configure_logging_very_verbose_sets_debug() -> None:
    configure_logging(verbosity=2)

    assert logging.getLogger().level == logging.DEBUG


def test_get_logger_auto_configures() -> None:
    """get_logger configures logging if not already done."""
    import storyfriends.observability.logging as log_module

    log_module._configured = False

    logger = get_logger("test")

    assert log_module._configured is True
    assert hasattr(logger, "info")


def test_configure_logging_suppresses_noisy_loggers() -> None:
    configure_logging(verbosity=2)

    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("uvicorn.access").level == logging.WARNING


def test_json_console_uses_jsonl_formatter() -> None:
    configure_logging(verbosity=1, json_console=True)

    handler = logging.getLogger().handlers[0]
    assert isinstance(handler.formatter, JSONLFormatter)
    configure_logging(verbosity=0)


def test_configure_logging_requires_log_dir_for_file_logging() -> None:
    with pytest.raises(ValueError, match="log_dir is required"):
        configure_logging(verbosity=0, log_to_file=True, log_dir=None)


def test_configure_logging_reconfiguration_closes_handler(tmp_path: Path) -> None:
    """Reconfiguring logging closes previous file handler."""
    import storyfriends.observability.logging as log_module

    configure_logging(verbosity=0, log_to_file=True, log_dir=tmp_path)
    first_handler = log_module._file_handler
    assert first_handler is not None

    configure_logging(verbosity=0, log_to_file=True, log_dir=tmp_path)

    # stream is None after close
    assert first_handler.stream is None or first_handler.stream.closed
    assert log_module._file_handler is not None
    close_file_logging()
    assert log_module._file_handler is None


def test_file_logging_writes_request_context(tmp_path: Path) -> None:
    """JSONL entries carry structlog context, including the bound request id."""
    configure_logging(verbosity=2, log_to_file=True, log_dir=tmp_path)

    bind_request_context("req-7", session_id="session-1")
    try:
        get_logger("test.context").info("test_event", key1="value1", key2=42)
    finally:
        clear_request_context()
    close_file_logging()

    entries = [json.loads(line) for line in (tmp_path / "debug.jsonl").read_text().splitlines()]
    entry = next(e for e in entries if e.get("message") == "test_event")
    assert entry["key1"] == "value1"
    assert entry["key2"] == 42
    assert entry["level"] == "INFO"
    assert entry["request_id"] == "req-7"
    assert entry["session_id"] == "session-1"


def test_record_to_entry_plain_message() -> None:
    record = logging.LogRecord("x", logging.WARNING, __file__, 1, "hello %s", ("there",), None)

    entry = record_to_entry(record)

    assert entry["message"] == "hello there"
    assert entry["level"] == "WARNING"
