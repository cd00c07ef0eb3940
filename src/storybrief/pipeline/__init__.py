"""Configuration and end-to-end scene prompt construction."""

from storybrief.pipeline.config import (
    ContextConfig,
    ContextConfigError,
    load_context_config,
)
from storybrief.pipeline.orchestrator import ScenePrompt, ScenePromptRequest, build_scene_prompt

__all__ = [
    "ContextConfig",
    "ContextConfigError",
    "ScenePrompt",
    "ScenePromptRequest",
    "build_scene_prompt",
    "load_context_config",
]
