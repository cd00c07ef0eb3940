"""In-memory story store implementing both retrieval protocols.

DictStoryStore keeps projects, books, chapters, scenes, entities and edges
in plain dicts. It is the reference SubgraphProvider / StoryRepository used
by tests and local tooling; production deployments put a database behind
the same protocols.

Data can be loaded from a dict (``from_dict``) or a YAML fixture file
(``load_story_fixture``) of the form::

    projects: [{id: p1, title: Aurora Falls, genre: Fantasy}]
    books:    [{id: b1, project_id: p1, title: Book 1, sort_order: 0}]
    chapters: [...]
    scenes:   [...]
    entities: [{id: mira, project_id: p1, type: character, name: Mira}]
    edges:    [{id: e1, project_id: p1, source_id: mira, target_id: joran,
                relationship_type: mentor_of, valid_from_book_id: b1}]
"""

from __future__ import annotations

from collections import defaultdict
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any

from ruamel.yaml import YAML

from storybrief.graph.provider import SubgraphQuery  # noqa: TC001 - used at runtime
from storybrief.graph.timeline import BookTimeline
from storybrief.models.context import EntityType
from storybrief.models.records import (
    BookRecord,
    ChapterRecord,
    EdgeRecord,
    EntityRecord,
    EventRecord,
    ProjectRecord,
    SceneRecord,
    SubgraphRow,
)
from storybrief.observability.logging import get_logger

log = get_logger(__name__)


def node_row(entity: EntityRecord, hop_distance: int = 0) -> SubgraphRow:
    """Build a node-only subgraph row for *entity*."""
    return SubgraphRow(
        node_id=entity.id,
        node_type=entity.type,
        node_name=entity.name,
        node_description=entity.description,
        node_attributes=entity.attributes,
        node_character_role=entity.character_role,
        node_character_arc=entity.character_arc,
        node_location_type=entity.location_type,
        node_event_date=entity.event_date,
        node_tags=entity.tags,
        hop_distance=hop_distance,
    )


def step_row(
    entity: EntityRecord,
    edge: EdgeRecord,
    connected_to: str,
    hop_distance: int,
) -> SubgraphRow:
    """Build a traversal-step row: *entity* reached over *edge* from *connected_to*."""
    row = node_row(entity, hop_distance)
    return row.model_copy(
        update={
            "edge_id": edge.id,
            "edge_type": edge.relationship_type,
            "edge_label": edge.label,
            "edge_description": edge.description,
            "edge_weight": edge.weight,
            "edge_is_bidirectional": edge.is_bidirectional,
            "edge_source_id": edge.source_id,
            "edge_target_id": edge.target_id,
            "edge_valid_from_book_id": edge.valid_from_book_id,
            "edge_valid_until_book_id": edge.valid_until_book_id,
            "connected_to": connected_to,
        }
    )


class StoryFixtureError(Exception):
    """Raised when a story fixture file cannot be loaded."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load story fixture at {path}: {reason}")


class DictStoryStore:
    """In-memory story store.

    Satisfies both ``SubgraphProvider`` and ``StoryRepository``. Records are
    validated on insert; lookups return the stored record objects.
    """

    def __init__(self) -> None:
        self._projects: dict[str, ProjectRecord] = {}
        self._books: dict[str, BookRecord] = {}
        self._chapters: dict[str, ChapterRecord] = {}
        self._scenes: dict[str, SceneRecord] = {}
        self._entities: dict[str, EntityRecord] = {}
        self._edges: dict[str, EdgeRecord] = {}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DictStoryStore:
        """Create a store from a fixture dict of record lists."""
        store = cls()
        for item in data.get("projects", []):
            store.add_project(ProjectRecord.model_validate(dict(item)))
        for item in data.get("books", []):
            store.add_book(BookRecord.model_validate(dict(item)))
        for item in data.get("chapters", []):
            store.add_chapter(ChapterRecord.model_validate(dict(item)))
        for item in data.get("scenes", []):
            store.add_scene(SceneRecord.model_validate(dict(item)))
        for item in data.get("entities", []):
            store.add_entity(EntityRecord.model_validate(dict(item)))
        for item in data.get("edges", []):
            store.add_edge(EdgeRecord.model_validate(dict(item)))
        return store

    def to_dict(self) -> dict[str, Any]:
        """Serialize the store to a fixture dict."""
        return {
            "projects": [r.model_dump() for r in self._projects.values()],
            "books": [r.model_dump() for r in self._books.values()],
            "chapters": [r.model_dump() for r in self._chapters.values()],
            "scenes": [r.model_dump() for r in self._scenes.values()],
            "entities": [r.model_dump(mode="json") for r in self._entities.values()],
            "edges": [r.model_dump() for r in self._edges.values()],
        }

    # -- Writes ----------------------------------------------------------------

    def add_project(self, project: ProjectRecord) -> None:
        self._projects[project.id] = project

    def add_book(self, book: BookRecord) -> None:
        self._books[book.id] = book

    def add_chapter(self, chapter: ChapterRecord) -> None:
        self._chapters[chapter.id] = chapter

    def add_scene(self, scene: SceneRecord) -> None:
        self._scenes[scene.id] = scene

    def add_entity(self, entity: EntityRecord) -> None:
        self._entities[entity.id] = entity

    def add_edge(self, edge: EdgeRecord) -> None:
        self._edges[edge.id] = edge

    # -- Bulk accessors (used by the SQLite provider import) -------------------

    def all_entities(self) -> list[EntityRecord]:
        return list(self._entities.values())

    def all_edges(self) -> list[EdgeRecord]:
        return list(self._edges.values())

    def all_books(self) -> list[BookRecord]:
        return list(self._books.values())

    # -- StoryRepository -------------------------------------------------------

    async def get_project(self, project_id: str) -> ProjectRecord | None:
        return self._projects.get(project_id)

    async def get_scene(self, scene_id: str) -> SceneRecord | None:
        return self._scenes.get(scene_id)

    async def get_chapter(self, chapter_id: str) -> ChapterRecord | None:
        return self._chapters.get(chapter_id)

    async def list_chapters(self, book_id: str) -> list[ChapterRecord]:
        chapters = [c for c in self._chapters.values() if c.book_id == book_id]
        return sorted(chapters, key=lambda c: c.order_index)

    async def list_scenes(self, chapter_id: str) -> list[SceneRecord]:
        scenes = [s for s in self._scenes.values() if s.chapter_id == chapter_id]
        return sorted(scenes, key=lambda s: s.order_index)

    async def list_books(self, project_id: str) -> list[BookRecord]:
        return self._project_books(project_id)

    async def get_entities(self, entity_ids: list[str]) -> list[EntityRecord]:
        return [self._entities[eid] for eid in entity_ids if eid in self._entities]

    async def list_related_events(
        self, project_id: str, focus_entity_ids: list[str]
    ) -> list[EventRecord]:
        """Return events sharing an edge with any focus entity.

        Involved characters are the character endpoints of each event's
        edges, in edge insertion order.
        """
        adjacency = self._adjacency(project_id)
        events: list[EventRecord] = []
        seen: set[str] = set()

        for focus_id in focus_entity_ids:
            for edge in adjacency.get(focus_id, []):
                other_id = _other_end(edge, focus_id)
                other = self._entities.get(other_id)
                if other is None or other.type != EntityType.EVENT or other.id in seen:
                    continue
                seen.add(other.id)

                involved: list[str] = []
                for event_edge in adjacency.get(other.id, []):
                    cid = _other_end(event_edge, other.id)
                    character = self._entities.get(cid)
                    if (
                        character is not None
                        and character.type == EntityType.CHARACTER
                        and cid not in involved
                    ):
                        involved.append(cid)

                events.append(
                    EventRecord(
                        id=other.id,
                        name=other.name,
                        description=other.description,
                        event_date=other.event_date,
                        involved_character_ids=involved,
                    )
                )

        log.debug(
            "related_events_listed",
            project_id=project_id,
            focus=len(focus_entity_ids),
            events=len(events),
        )
        return events

    # -- SubgraphProvider ------------------------------------------------------

    async def query_connected_subgraph(self, query: SubgraphQuery) -> list[SubgraphRow]:
        """Breadth-first traversal from the focus entities.

        Edges are followed in both directions. Edges whose validity window
        excludes the current book are not followed. A node revisited at a
        greater hop distance still produces a row; consumers keep the
        minimum.
        """
        timeline = BookTimeline.from_books(self._project_books(query.project_id))
        adjacency = self._adjacency(query.project_id)

        rows: list[SubgraphRow] = []
        visited: dict[str, int] = {}
        frontier: list[str] = []

        for focus_id in query.focus_entity_ids:
            entity = self._entities.get(focus_id)
            if entity is None or entity.project_id not in ("", query.project_id):
                continue
            if focus_id not in visited:
                visited[focus_id] = 0
                frontier.append(focus_id)
                rows.append(node_row(entity, 0))

        for hop in range(1, query.max_hop_distance + 1):
            next_frontier: list[str] = []
            for current_id in frontier:
                for edge in adjacency.get(current_id, []):
                    if not timeline.window_contains(
                        edge.valid_from_book_id, edge.valid_until_book_id, query.current_book_id
                    ):
                        continue
                    other_id = _other_end(edge, current_id)
                    other = self._entities.get(other_id)
                    if other is None:
                        continue
                    rows.append(step_row(other, edge, current_id, hop))
                    if other_id not in visited:
                        visited[other_id] = hop
                        next_frontier.append(other_id)
            frontier = next_frontier

        log.debug(
            "subgraph_traversed",
            project_id=query.project_id,
            focus=len(query.focus_entity_ids),
            nodes=len(visited),
            rows=len(rows),
        )
        return rows

    # -- Helpers ---------------------------------------------------------------

    def _project_books(self, project_id: str) -> list[BookRecord]:
        books = [b for b in self._books.values() if b.project_id == project_id]
        return sorted(books, key=lambda b: b.sort_order)

    def _adjacency(self, project_id: str) -> dict[str, list[EdgeRecord]]:
        adjacency: dict[str, list[EdgeRecord]] = defaultdict(list)
        for edge in self._edges.values():
            if edge.project_id not in ("", project_id):
                continue
            adjacency[edge.source_id].append(edge)
            if edge.target_id != edge.source_id:
                adjacency[edge.target_id].append(edge)
        return adjacency


def _other_end(edge: EdgeRecord, node_id: str) -> str:
    return edge.target_id if edge.source_id == node_id else edge.source_id


def load_story_fixture(path: Path) -> DictStoryStore:
    """Load a DictStoryStore from a YAML fixture file.

    Args:
        path: Path to the fixture YAML.

    Returns:
        Populated store.

    Raises:
        StoryFixtureError: If the file is missing, empty, or invalid.
    """
    if not path.exists():
        raise StoryFixtureError(path, "File not found")

    yaml = YAML(typ="safe")
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)

        if data is None:
            raise StoryFixtureError(path, "Empty file")

        return DictStoryStore.from_dict(dict(data))
    except Exception as e:
        if isinstance(e, StoryFixtureError):
            raise
        raise StoryFixtureError(path, str(e)) from e
