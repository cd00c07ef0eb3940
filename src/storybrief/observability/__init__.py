"""Observability module for storybrief.

Provides structured logging for context assembly and prompt building.
"""

from storybrief.observability.logging import (
    close_file_logging,
    configure_logging,
    get_logger,
    get_logs_dir,
)

__all__ = [
    "close_file_logging",
    "configure_logging",
    "get_logger",
    "get_logs_dir",
]
