"""Retrieval protocols consumed by the context assembler.

The assembler does not traverse the story graph itself. It calls a
``SubgraphProvider`` for the bounded neighbourhood of the scene's focus
entities and a ``StoryRepository`` for simple id lookups. Any storage
engine (relational, graph database, in-memory adjacency) can satisfy both.

Implementations raise whatever their storage layer raises; the assembler
wraps failures in ``RetrievalError``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from storybrief.models.records import (
        BookRecord,
        ChapterRecord,
        EntityRecord,
        EventRecord,
        ProjectRecord,
        SceneRecord,
        SubgraphRow,
    )

DEFAULT_MAX_HOP_DISTANCE = 2


class SubgraphQuery(BaseModel):
    """Input to a connected-subgraph query."""

    project_id: str
    focus_entity_ids: list[str] = Field(default_factory=list)
    current_book_id: str
    max_hop_distance: int = Field(default=DEFAULT_MAX_HOP_DISTANCE, ge=0)


@runtime_checkable
class SubgraphProvider(Protocol):
    """Bounded-depth traversal over a project's story graph."""

    async def query_connected_subgraph(self, query: SubgraphQuery) -> list[SubgraphRow]:
        """Return node and traversal-step rows around the focus entities.

        Must emit a node-only row for each focus entity (hop distance 0)
        and a node+edge row for each edge followed, up to
        ``query.max_hop_distance`` hops. Row order is unspecified.
        """
        ...


@runtime_checkable
class StoryRepository(Protocol):
    """Ancillary id lookups used while assembling context."""

    async def get_project(self, project_id: str) -> ProjectRecord | None:
        """Get a project by id, or None if not found."""
        ...

    async def get_scene(self, scene_id: str) -> SceneRecord | None:
        """Get a scene by id, or None if not found."""
        ...

    async def get_chapter(self, chapter_id: str) -> ChapterRecord | None:
        """Get a chapter by id, or None if not found."""
        ...

    async def list_chapters(self, book_id: str) -> list[ChapterRecord]:
        """Return a book's chapters ordered by ``order_index``."""
        ...

    async def list_scenes(self, chapter_id: str) -> list[SceneRecord]:
        """Return a chapter's scenes ordered by ``order_index``."""
        ...

    async def list_books(self, project_id: str) -> list[BookRecord]:
        """Return a project's books ordered by series position."""
        ...

    async def get_entities(self, entity_ids: list[str]) -> list[EntityRecord]:
        """Return the entities that exist among *entity_ids*."""
        ...

    async def list_related_events(
        self, project_id: str, focus_entity_ids: list[str]
    ) -> list[EventRecord]:
        """Return events linked to any of the focus entities."""
        ...
