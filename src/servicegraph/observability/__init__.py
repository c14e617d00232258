"""Observability module for servicegraph.

Provides structured logging to the console and an optional JSONL event log.
"""

from servicegraph.observability.logging import (
    close_file_logging,
    configure_logging,
    get_log_dir,
    get_logger,
)

__all__ = [
    "close_file_logging",
    "configure_logging",
    "get_log_dir",
    "get_logger",
]
