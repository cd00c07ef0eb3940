"""Pydantic models for the assembled graph context.

These models are the read-only aggregate handed from the context assembler
to the section formatter. A ``GraphContext`` is built fresh for every
generation request and discarded afterwards; nothing here is persisted.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Closed variant for free-form entity attributes. Anything else found in a
# stored attribute bag is dropped by coerce_attributes().
AttributeValue = str | bool | int | float | list[str]


class EntityType(str, Enum):
    """Story graph node types."""

    CHARACTER = "character"
    LOCATION = "location"
    ITEM = "item"
    EVENT = "event"
    FACTION = "faction"
    CONCEPT = "concept"


def _coerce_value(value: Any) -> AttributeValue | None:
    # bool is checked before int: isinstance(True, int) is True
    if isinstance(value, bool):
        return value
    if isinstance(value, (str, int, float)):
        return value
    if isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value):
        return list(value)
    return None


def coerce_attributes(raw: Any) -> dict[str, AttributeValue]:
    """Reduce a free-form attribute bag to the closed attribute variant.

    Keys must be strings. Values must be a string, number, boolean or a
    list of strings; nested mappings, nulls, mixed lists and any other
    type are dropped. Never raises.

    Args:
        raw: Attribute payload as stored (usually a JSON object).

    Returns:
        Clean attribute mapping, empty if *raw* is not a mapping.
    """
    if not isinstance(raw, Mapping):
        return {}

    clean: dict[str, AttributeValue] = {}
    for key, value in raw.items():
        if not isinstance(key, str):
            continue
        coerced = _coerce_value(value)
        if coerced is not None:
            clean[key] = coerced
    return clean


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class GraphEntity(_Frozen):
    """A story graph node with traversal metadata."""

    id: str = Field(min_length=1)
    type: EntityType
    name: str
    description: str | None = None
    attributes: dict[str, AttributeValue] = Field(default_factory=dict)
    character_role: str | None = None
    character_arc: str | None = None
    location_type: str | None = None
    event_date: str | None = None
    tags: list[str] = Field(default_factory=list)
    hop_distance: int = Field(
        default=0, ge=0, description="0 = focus entity, 1 = direct connection, ..."
    )
    is_point_of_view: bool = False


class GraphRelationship(_Frozen):
    """A typed, optionally time-bounded relationship between two entities.

    The validity window is expressed as the books in which the relationship
    starts and stops being true. Titles are carried for display; ids are
    what the window is resolved against.
    """

    id: str = Field(min_length=1)
    source_id: str
    source_name: str
    source_type: EntityType
    target_id: str
    target_name: str
    target_type: EntityType
    relationship_type: str = "related_to"
    label: str | None = None
    description: str | None = None
    weight: int = Field(default=5, ge=1, le=10)
    is_bidirectional: bool = False
    valid_from_book_id: str | None = None
    valid_from_book_title: str | None = None
    valid_until_book_id: str | None = None
    valid_until_book_title: str | None = None

    def involves(self, entity_type: EntityType) -> bool:
        """Return True if either endpoint has *entity_type*."""
        return entity_type in (self.source_type, self.target_type)


class SceneExcerpt(_Frozen):
    """Tail of a previously written scene, used for continuity."""

    id: str
    title: str | None = None
    excerpt: str
    chapter_title: str
    order_index: int = 0
    is_current_chapter: bool = True


class ChapterSummary(_Frozen):
    """Summary of an earlier chapter in the current book."""

    id: str
    title: str
    summary: str | None = None
    order_index: int = 0
    book_title: str


class BookContext(_Frozen):
    """Series metadata and writing settings for one book."""

    id: str
    title: str
    synopsis: str | None = None
    sort_order: int = Field(default=0, description="0-based series position")
    is_current: bool = False
    # Writing style
    pov_style: str | None = None
    tense: str | None = None
    prose_style: str | None = None
    pacing: str | None = None
    dialogue_style: str | None = None
    # Content guidelines
    content_rating: str | None = None
    violence_level: str | None = None
    romance_level: str | None = None
    tone: list[str] = Field(default_factory=list)


class EventContext(_Frozen):
    """A story event related to the scene's focus entities."""

    id: str
    name: str
    description: str | None = None
    event_date: str | None = None
    involved_character_names: list[str] = Field(default_factory=list)


class SceneInfo(_Frozen):
    """The scene being written."""

    id: str
    title: str | None = None
    time_in_story: str | None = None


class ChapterInfo(_Frozen):
    """The chapter that owns the scene being written."""

    id: str
    title: str
    summary: str | None = None
    order_index: int = 0


class ProjectInfo(_Frozen):
    """Project-level world metadata."""

    title: str = "Untitled Project"
    genre: str | None = None
    world_description: str | None = None
    themes: list[str] = Field(default_factory=list)
    world_setting: str | None = None
    time_period: str | None = None
    series_type: str | None = None
    target_audience: str | None = None
    narrative_conventions: list[str] = Field(default_factory=list)


class GraphContext(_Frozen):
    """Everything the formatter needs to brief the generator on one scene.

    ``entities`` is deduplicated by id and ordered point-of-view first, then
    by ascending hop distance. ``relationships`` only contains edges whose
    endpoints were both retrieved and whose validity window covers the
    current book.
    """

    scene: SceneInfo
    chapter: ChapterInfo | None = None
    project: ProjectInfo = Field(default_factory=ProjectInfo)
    entities: list[GraphEntity] = Field(default_factory=list)
    relationships: list[GraphRelationship] = Field(default_factory=list)
    previous_scenes: list[SceneExcerpt] = Field(default_factory=list)
    chapter_summaries: list[ChapterSummary] = Field(default_factory=list)
    books: list[BookContext] = Field(default_factory=list)
    events: list[EventContext] = Field(default_factory=list)
    # Traceability
    focus_entity_ids: list[str] = Field(default_factory=list)
    pov_entity_id: str | None = None
    current_book_id: str
    current_chapter_id: str

    @property
    def current_book(self) -> BookContext | None:
        """The book the scene belongs to, if it was retrieved."""
        return next((b for b in self.books if b.is_current), None)

    @property
    def characters(self) -> list[GraphEntity]:
        """Character entities in assembler order (POV first)."""
        return self.entities_of_type(EntityType.CHARACTER)

    def entities_of_type(self, entity_type: EntityType) -> list[GraphEntity]:
        """Return entities of *entity_type*, preserving assembler order."""
        return [e for e in self.entities if e.type == entity_type]
