"""Tests for structured logging configuration."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from servicegraph.observability import close_file_logging, configure_logging, get_logger
from servicegraph.observability.logging import LOG_FILE_NAME, get_log_dir

if TYPE_CHECKING:
    from pathlib import Path


def test_configure_logging_sets_level_warning() -> None:
    """Default verbosity (0) sets WARNING level."""
    configure_logging(verbosity=0)

    assert logging.getLogger().level == logging.WARNING


def test_configure_logging_verbose_sets_debug_root() -> None:
    """verbosity=1 opens the root logger; the console handler filters."""
    configure_logging(verbosity=1)

    assert logging.getLogger().level == logging.DEBUG


def test_get_logger_auto_configures() -> None:
    """get_logger configures logging if not already done."""
    import servicegraph.observability.logging as log_module

    log_module._configured = False

    logger = get_logger("test")

    assert log_module._configured is True
    assert hasattr(logger, "info")


def test_file_logging_creates_directory(tmp_path: Path) -> None:
    log_dir = tmp_path / "logs"
    configure_logging(verbosity=0, log_dir=log_dir)

    assert log_dir.is_dir()
    assert get_log_dir() == log_dir
    close_file_logging()


def test_reconfiguration_closes_handler(tmp_path: Path) -> None:
    """Reconfiguring logging closes the previous file handler."""
    import servicegraph.observability.logging as log_module

    configure_logging(log_dir=tmp_path)
    first_handler = log_module._file_handler
    assert first_handler is not None

    configure_logging(log_dir=tmp_path)

    assert first_handler.stream is None or first_handler.stream.closed
    assert log_module._file_handler is not None
    close_file_logging()
    assert log_module._file_handler is None


def test_jsonl_file_handler_writes_structlog_context(tmp_path: Path) -> None:
    """Event keys land as top-level JSON keys."""
    configure_logging(verbosity=2, log_dir=tmp_path)

    get_logger("test.context").info("test_event", key1="value1", key2=42)
    close_file_logging()

    entries = [json.loads(line) for line in (tmp_path / LOG_FILE_NAME).read_text().splitlines()]
    entry = next(e for e in entries if e.get("event") == "test_event")
    assert entry["key1"] == "value1"
    assert entry["key2"] == 42
    assert entry["level"] == "INFO"
