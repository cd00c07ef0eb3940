"""Context configuration loading."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any

from ruamel.yaml import YAML

from storybrief.context.formatter import FormatterConfig

# Default configuration values
DEFAULT_MAX_HOP_DISTANCE = 2
DEFAULT_RETRIEVAL_TIMEOUT = 10.0

ENV_MAX_HOP_DISTANCE = "STORYBRIEF_MAX_HOP_DISTANCE"
ENV_RETRIEVAL_TIMEOUT = "STORYBRIEF_RETRIEVAL_TIMEOUT"


@dataclass
class ContextConfig:
    """Configuration for context retrieval and formatting.

    Resolution order for traversal depth and timeout:
    1. Environment variable (STORYBRIEF_MAX_HOP_DISTANCE, STORYBRIEF_RETRIEVAL_TIMEOUT)
    2. Config value

    Attributes:
        max_hop_distance: Subgraph traversal depth.
        retrieval_timeout: Seconds allowed for all reads of one request.
        previous_scene_limit: Earlier scenes of the current chapter to excerpt.
        current_excerpt_chars: Tail length kept from current-chapter scenes.
        previous_chapter_excerpt_chars: Tail length kept from the previous
            chapter's last scene.
        event_limit: Related events kept.
        formatter: Section limits for rendering.
    """

    max_hop_distance: int = DEFAULT_MAX_HOP_DISTANCE
    retrieval_timeout: float = DEFAULT_RETRIEVAL_TIMEOUT
    previous_scene_limit: int = 2
    current_excerpt_chars: int = 500
    previous_chapter_excerpt_chars: int = 300
    event_limit: int = 5
    formatter: FormatterConfig = field(default_factory=FormatterConfig)

    def get_max_hop_distance(self) -> int:
        """Get the effective traversal depth.

        Raises:
            ValueError: If the environment override is not an integer.
        """
        value = os.getenv(ENV_MAX_HOP_DISTANCE)
        return int(value) if value else self.max_hop_distance

    def get_retrieval_timeout(self) -> float:
        """Get the effective retrieval timeout in seconds.

        Raises:
            ValueError: If the environment override is not a number.
        """
        value = os.getenv(ENV_RETRIEVAL_TIMEOUT)
        return float(value) if value else self.retrieval_timeout

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContextConfig:
        """Create config from dictionary.

        Args:
            data: Dictionary containing config fields. Retrieval settings
                live under ``retrieval``, excerpt settings under ``excerpts``
                and section limits under ``formatter``.

        Returns:
            ContextConfig instance.
        """
        retrieval = data.get("retrieval", {})
        excerpts = data.get("excerpts", {})
        formatter = FormatterConfig.from_dict(dict(data.get("formatter", {})))

        return cls(
            max_hop_distance=int(retrieval.get("max_hop_distance", DEFAULT_MAX_HOP_DISTANCE)),
            retrieval_timeout=float(retrieval.get("timeout", DEFAULT_RETRIEVAL_TIMEOUT)),
            previous_scene_limit=int(excerpts.get("previous_scene_limit", 2)),
            current_excerpt_chars=int(excerpts.get("current_chapter_chars", 500)),
            previous_chapter_excerpt_chars=int(excerpts.get("previous_chapter_chars", 300)),
            event_limit=int(data.get("event_limit", 5)),
            formatter=formatter,
        )


class ContextConfigError(Exception):
    """Raised when context configuration cannot be loaded."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load context config at {path}: {reason}")


def load_context_config(config_path: Path) -> ContextConfig:
    """Load context configuration from a YAML file.

    Args:
        config_path: Path to the config file.

    Returns:
        ContextConfig instance.

    Raises:
        ContextConfigError: If config cannot be loaded.
    """
    if not config_path.exists():
        raise ContextConfigError(config_path, "File not found")

    yaml = YAML()
    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)

        if data is None:
            raise ContextConfigError(config_path, "Empty file")

        return ContextConfig.from_dict(dict(data))
    except Exception as e:
        if isinstance(e, ContextConfigError):
            raise
        raise ContextConfigError(config_path, str(e)) from e
