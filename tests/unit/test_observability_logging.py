"""Tests for structured logging configuration."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import pytest

from storybrief.observability import close_file_logging, configure_logging, get_logger
from storybrief.observability.logging import get_logs_dir

if TYPE_CHECKING:
    from pathlib import Path


def test_configure_logging_sets_level_warning() -> None:
    """Default verbosity (0) sets WARNING level."""
    configure_logging(verbosity=0)

    root_logger = logging.getLogger()
    assert root_logger.level == logging.WARNING


def test_configure_logging_very_verbose_sets_debug() -> None:
    """verbosity=2 sets DEBUG level."""
    configure_logging(verbosity=2)

    root_logger = logging.getLogger()
    assert root_logger.level == logging.DEBUG


def test_get_logger_auto_configures() -> None:
    """get_logger configures logging if not already done."""
    import storybrief.observability.logging as log_module

    log_module._configured = False

    logger = get_logger("test")

    assert log_module._configured is True
    assert logger is not None


def test_configure_logging_quiets_asyncio() -> None:
    configure_logging(verbosity=2)

    assert logging.getLogger("asyncio").level == logging.WARNING


def test_file_logging_requires_log_dir() -> None:
    """log_to_file=True without log_dir raises ValueError."""
    with pytest.raises(ValueError, match="log_dir is required"):
        configure_logging(verbosity=0, log_to_file=True, log_dir=None)


def test_file_logging_creates_dir(tmp_path: Path) -> None:
    logs_dir = tmp_path / "logs"
    configure_logging(verbosity=0, log_to_file=True, log_dir=logs_dir)

    assert logs_dir.exists()
    assert get_logs_dir() == logs_dir
    close_file_logging()


def test_close_file_logging_clears_handler(tmp_path: Path) -> None:
    """close_file_logging closes handler and clears reference."""
    import storybrief.observability.logging as log_module

    configure_logging(verbosity=0, log_to_file=True, log_dir=tmp_path)
    assert log_module._file_handler is not None

    close_file_logging()

    assert log_module._file_handler is None


def test_jsonl_file_handler_writes_structlog_context(tmp_path: Path) -> None:
    """JSONLFileHandler extracts structlog context into JSONL fields."""
    configure_logging(verbosity=2, log_to_file=True, log_dir=tmp_path)

    logger = get_logger("test.jsonl_context")
    logger.info("scene_prompt_built", scene_id="s1", entities=3)

    close_file_logging()

    log_file = tmp_path / "storybrief.jsonl"
    assert log_file.exists()

    entries = [json.loads(line) for line in log_file.read_text().splitlines()]
    entry = next(e for e in entries if e.get("message") == "scene_prompt_built")
    assert entry["scene_id"] == "s1"
    assert entry["entities"] == 3
    assert entry["level"] == "INFO"
