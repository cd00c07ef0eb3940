"""Storage-facing record models.

These mirror the rows returned by the subgraph query and the ancillary
reads. They are deliberately permissive: free-form payloads such as
``node_attributes`` are carried unvalidated and only reduced to the closed
attribute variant by the assembler.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from storybrief.models.context import EntityType  # noqa: TC001 - pydantic needs it at runtime


class ProjectRecord(BaseModel):
    """A project row."""

    id: str
    title: str = "Untitled Project"
    genre: str | None = None
    world_description: str | None = None
    themes: list[str] | None = None
    world_setting: str | None = None
    time_period: str | None = None
    series_type: str | None = None
    target_audience: str | None = None
    narrative_conventions: list[str] | None = None


class BookRecord(BaseModel):
    """A book row with its writing settings."""

    id: str
    project_id: str
    title: str
    synopsis: str | None = None
    sort_order: int = 0
    pov_style: str | None = None
    tense: str | None = None
    prose_style: str | None = None
    pacing: str | None = None
    dialogue_style: str | None = None
    content_rating: str | None = None
    violence_level: str | None = None
    romance_level: str | None = None
    tone: list[str] | None = None


class ChapterRecord(BaseModel):
    """A chapter row."""

    id: str
    book_id: str
    title: str
    summary: str | None = None
    order_index: int = 0


class CastMember(BaseModel):
    """An entity placed in a scene, optionally as its point of view."""

    entity_id: str
    pov: bool = False


class SceneRecord(BaseModel):
    """A scene row."""

    id: str
    chapter_id: str
    title: str | None = None
    order_index: int = 0
    time_in_story: str | None = None
    edited_prose: str | None = None
    generated_prose: str | None = None
    location_id: str | None = None
    pov_character_id: str | None = None
    cast: list[CastMember] = Field(default_factory=list)

    @property
    def prose(self) -> str | None:
        """Edited prose if present, otherwise generated prose."""
        return self.edited_prose or self.generated_prose


class EntityRecord(BaseModel):
    """A story graph node row."""

    id: str
    project_id: str = ""
    type: EntityType
    name: str
    description: str | None = None
    attributes: Any = None
    character_role: str | None = None
    character_arc: str | None = None
    location_type: str | None = None
    event_date: str | None = None
    tags: list[str] | None = None


class EdgeRecord(BaseModel):
    """A story graph edge row."""

    id: str
    project_id: str = ""
    source_id: str
    target_id: str
    relationship_type: str = "related_to"
    label: str | None = None
    description: str | None = None
    weight: int | None = None
    is_bidirectional: bool | None = None
    valid_from_book_id: str | None = None
    valid_until_book_id: str | None = None


class EventRecord(BaseModel):
    """An event node together with the characters it involves."""

    id: str
    name: str
    description: str | None = None
    event_date: str | None = None
    involved_character_ids: list[str] = Field(default_factory=list)


class SubgraphRow(BaseModel):
    """One row of a connected-subgraph query.

    A row either describes a node reached with no edge (a focus entity,
    edge fields unset) or a traversal step: the discovered node plus the
    edge linking it to ``connected_to``. Rows arrive in no guaranteed
    order and the same node may appear in several rows.

    ``edge_source_id``/``edge_target_id`` give the stored edge direction
    when the provider knows it; otherwise the edge is read as
    ``connected_to -> node_id``.
    """

    # Node fields
    node_id: str
    node_type: EntityType
    node_name: str
    node_description: str | None = None
    node_attributes: Any = None
    node_character_role: str | None = None
    node_character_arc: str | None = None
    node_location_type: str | None = None
    node_event_date: str | None = None
    node_tags: list[str] | None = None
    # Edge fields
    edge_id: str | None = None
    edge_type: str | None = None
    edge_label: str | None = None
    edge_description: str | None = None
    edge_weight: int | None = None
    edge_is_bidirectional: bool | None = None
    edge_source_id: str | None = None
    edge_target_id: str | None = None
    edge_valid_from_book_id: str | None = None
    edge_valid_until_book_id: str | None = None
    # Traversal
    connected_to: str | None = None
    hop_distance: int = Field(default=0, ge=0)

    @property
    def has_edge(self) -> bool:
        """True when this row carries a traversal step."""
        return self.edge_id is not None and self.connected_to is not None
