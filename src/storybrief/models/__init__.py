"""Pydantic models for story graph context.

``storybrief.models.context`` holds the read-only aggregate produced by the
assembler; ``storybrief.models.records`` holds the storage-facing rows the
assembler consumes.
"""

from storybrief.models.context import (
    AttributeValue,
    BookContext,
    ChapterInfo,
    ChapterSummary,
    EntityType,
    EventContext,
    GraphContext,
    GraphEntity,
    GraphRelationship,
    ProjectInfo,
    SceneExcerpt,
    SceneInfo,
    coerce_attributes,
)
from storybrief.models.records import (
    BookRecord,
    CastMember,
    ChapterRecord,
    EdgeRecord,
    EntityRecord,
    EventRecord,
    ProjectRecord,
    SceneRecord,
    SubgraphRow,
)

__all__ = [
    "AttributeValue",
    "BookContext",
    "BookRecord",
    "CastMember",
    "ChapterInfo",
    "ChapterRecord",
    "ChapterSummary",
    "EdgeRecord",
    "EntityRecord",
    "EntityType",
    "EventContext",
    "EventRecord",
    "GraphContext",
    "GraphEntity",
    "GraphRelationship",
    "ProjectInfo",
    "ProjectRecord",
    "SceneExcerpt",
    "SceneInfo",
    "SceneRecord",
    "SubgraphRow",
    "coerce_attributes",
]
