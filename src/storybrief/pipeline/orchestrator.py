"""End-to-end scene prompt construction.

Resolves a scene's focus entities, assembles its graph context, formats the
brief and splits the system prompt into cache tiers. The result carries
everything a generation client needs; sending it is the client's job.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from storybrief.context.assembler import (
    ContextRequest,
    build_graph_context,
    resolve_focus_entities,
)
from storybrief.context.formatter import format_context_for_prompt
from storybrief.observability.logging import get_logger
from storybrief.pipeline.config import ContextConfig
from storybrief.prompts.builder import PromptBuilder

if TYPE_CHECKING:
    from storybrief.graph.provider import StoryRepository, SubgraphProvider
    from storybrief.models.context import GraphContext
    from storybrief.prompts.builder import SystemPromptParts

log = get_logger(__name__)


class ScenePromptRequest(BaseModel):
    """A request to brief the generator on one scene."""

    scene_id: str
    project_id: str
    book_id: str
    chapter_id: str
    beats: str = ""
    guidelines: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class ScenePrompt:
    """Everything needed to ask for a scene's prose."""

    context: GraphContext
    parts: SystemPromptParts
    user_message: str

    @property
    def system_prompt(self) -> str:
        """Single-string system prompt for clients without caching."""
        return self.parts.combined()


async def build_scene_prompt(
    store: StoryRepository,
    provider: SubgraphProvider,
    request: ScenePromptRequest,
    *,
    config: ContextConfig | None = None,
    builder: PromptBuilder | None = None,
) -> ScenePrompt:
    """Build the tiered system prompt and user message for a scene.

    Args:
        store: Story repository for ancillary reads.
        provider: Subgraph provider.
        request: Scene to brief and the beats to expand.
        config: Retrieval and formatting configuration. Uses defaults if None.
        builder: Prompt builder. Uses the bundled scene template if None.

    Returns:
        ScenePrompt with context, prompt tiers and user message.

    Raises:
        SceneNotFoundError: If the scene does not exist.
        RetrievalError: If retrieval fails or times out.
    """
    cfg = config or ContextConfig()
    prompt_builder = builder or PromptBuilder()

    focus_ids, pov_id = await resolve_focus_entities(store, request.scene_id)
    context = await build_graph_context(
        store,
        provider,
        ContextRequest(
            scene_id=request.scene_id,
            project_id=request.project_id,
            book_id=request.book_id,
            chapter_id=request.chapter_id,
            focus_entity_ids=focus_ids,
            pov_entity_id=pov_id,
        ),
        config=cfg,
    )

    context_text = format_context_for_prompt(context, cfg.formatter)
    parts = prompt_builder.build_tiers(context_text, context, request.guidelines)
    user_message = prompt_builder.build_user_message(request.beats)

    entity_counts = Counter(entity.type.value for entity in context.entities)
    log.info(
        "scene_prompt_built",
        scene_id=request.scene_id,
        focus=len(focus_ids),
        pov=pov_id,
        entities=dict(entity_counts),
        relationships=len(context.relationships),
        previous_scenes=len(context.previous_scenes),
        events=len(context.events),
        static_chars=len(parts.static),
        book_chars=len(parts.book),
        context_chars=len(parts.context),
        digests={tier: digest[:12] for tier, digest in parts.digests().items()},
    )
    return ScenePrompt(context=context, parts=parts, user_message=user_message)
