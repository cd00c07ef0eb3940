"""Assemble a GraphContext for one scene.

The assembler is the only place that knows how the pieces of a scene brief
are gathered: a bounded subgraph around the scene's focus entities, plus
ancillary reads for the project, series, chapter structure, earlier prose
and related events. All reads for a request run concurrently under one
timeout; any failure aborts the build with ``RetrievalError``.

Row processing is a pure function (``process_subgraph_rows``) so it can be
tested without a store:

1. Drop edges whose validity window excludes the current book.
2. Keep nodes connected to the starting rows through the remaining edges,
   at the minimum hop distance seen.
3. Emit each edge id once, in retrieval order.
4. Drop relationships with an endpoint that was not kept.
5. Order entities point-of-view first, then by hop distance.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

from pydantic import BaseModel, Field

from storybrief.context.compact import tail_excerpt
from storybrief.graph.errors import RetrievalError, RetrievalTimeoutError, SceneNotFoundError
from storybrief.graph.provider import SubgraphQuery
from storybrief.graph.timeline import BookTimeline
from storybrief.models.context import (
    BookContext,
    ChapterInfo,
    ChapterSummary,
    EventContext,
    GraphContext,
    GraphEntity,
    GraphRelationship,
    ProjectInfo,
    SceneExcerpt,
    SceneInfo,
    coerce_attributes,
)
from storybrief.observability.logging import get_logger

if TYPE_CHECKING:
    from storybrief.graph.provider import StoryRepository, SubgraphProvider
    from storybrief.models.records import (
        BookRecord,
        ChapterRecord,
        EntityRecord,
        EventRecord,
        ProjectRecord,
        SceneRecord,
        SubgraphRow,
    )
    from storybrief.pipeline.config import ContextConfig

log = get_logger(__name__)

T = TypeVar("T")

DEFAULT_WEIGHT = 5


class ContextRequest(BaseModel):
    """Identifies the scene to brief and where to start the graph walk.

    Attributes:
        max_hop_distance: Traversal depth. None uses the configured default.
    """

    scene_id: str
    project_id: str
    book_id: str
    chapter_id: str
    focus_entity_ids: list[str] = Field(default_factory=list)
    pov_entity_id: str | None = None
    max_hop_distance: int | None = Field(default=None, ge=0)


# ---------------------------------------------------------------------------
# Row processing
# ---------------------------------------------------------------------------


def _entity_from_row(row: SubgraphRow, pov_entity_id: str | None) -> GraphEntity:
    return GraphEntity(
        id=row.node_id,
        type=row.node_type,
        name=row.node_name,
        description=row.node_description,
        attributes=coerce_attributes(row.node_attributes),
        character_role=row.node_character_role,
        character_arc=row.node_character_arc,
        location_type=row.node_location_type,
        event_date=row.node_event_date,
        tags=list(row.node_tags or []),
        hop_distance=row.hop_distance,
        is_point_of_view=row.node_id == pov_entity_id,
    )


def _clamp_weight(weight: int | None) -> int:
    if weight is None:
        return DEFAULT_WEIGHT
    return min(max(weight, 1), 10)


def _edge_endpoints(row: SubgraphRow) -> tuple[str, str]:
    if row.edge_source_id and row.edge_target_id:
        return row.edge_source_id, row.edge_target_id
    # Without stored direction the edge reads as connected_to -> node
    return row.connected_to or "", row.node_id


def _reachable_nodes(anchors: list[str], edges: list[tuple[str, str]]) -> set[str]:
    adjacency: dict[str, set[str]] = {}
    for source_id, target_id in edges:
        adjacency.setdefault(source_id, set()).add(target_id)
        adjacency.setdefault(target_id, set()).add(source_id)

    reached = set(anchors)
    queue = deque(anchors)
    while queue:
        node_id = queue.popleft()
        for neighbour in adjacency.get(node_id, ()):
            if neighbour not in reached:
                reached.add(neighbour)
                queue.append(neighbour)
    return reached


def process_subgraph_rows(
    rows: Iterable[SubgraphRow],
    *,
    pov_entity_id: str | None,
    timeline: BookTimeline,
    current_book_id: str,
) -> tuple[list[GraphEntity], list[GraphRelationship]]:
    """Turn raw subgraph rows into deduplicated entities and relationships.

    Rows without an edge are the walk's starting points. Any other node is
    kept only if it connects to a starting point through edges whose
    validity window covers the current book, and its hop distance is the
    minimum over the rows that reach it that way.

    Args:
        rows: Subgraph rows in any order, possibly with repeated nodes/edges.
        pov_entity_id: Entity to flag as the point of view, if any.
        timeline: Series timeline used to resolve validity windows.
        current_book_id: Book being written.

    Returns:
        Tuple of (entities ordered POV first then by hop distance,
        relationships in retrieval order).
    """
    rows = list(rows)

    # First row per edge id, in retrieval order, split by validity window
    edge_rows: dict[str, SubgraphRow] = {}
    expired: set[str] = set()
    for row in rows:
        if not row.has_edge:
            continue
        edge_id = row.edge_id or ""
        if edge_id in edge_rows or edge_id in expired:
            continue
        if timeline.window_contains(
            row.edge_valid_from_book_id, row.edge_valid_until_book_id, current_book_id
        ):
            edge_rows[edge_id] = row
        else:
            expired.add(edge_id)
            log.debug("relationship_dropped", edge_id=edge_id, reason="outside_window")

    admitted = [row for row in rows if not row.has_edge or (row.edge_id or "") in edge_rows]
    anchors = [row.node_id for row in admitted if not row.has_edge]
    links: list[tuple[str, str]] = []
    for row in admitted:
        if row.has_edge:
            links.append(_edge_endpoints(row))
            if row.connected_to:
                links.append((row.connected_to, row.node_id))
    reachable = _reachable_nodes(anchors, links)

    entities: dict[str, GraphEntity] = {}
    for row in admitted:
        if row.node_id not in reachable:
            continue
        existing = entities.get(row.node_id)
        if existing is None:
            entities[row.node_id] = _entity_from_row(row, pov_entity_id)
        elif row.hop_distance < existing.hop_distance:
            entities[row.node_id] = existing.model_copy(
                update={"hop_distance": row.hop_distance}
            )

    dropped_nodes = {row.node_id for row in rows} - entities.keys()
    if dropped_nodes:
        log.debug("entities_dropped", entity_ids=sorted(dropped_nodes), reason="unreachable")

    relationships: list[GraphRelationship] = []
    for edge_id, row in edge_rows.items():
        source_id, target_id = _edge_endpoints(row)
        source = entities.get(source_id)
        target = entities.get(target_id)
        if source is None or target is None:
            log.debug(
                "relationship_dropped",
                edge_id=edge_id,
                reason="endpoint_missing",
                source_id=source_id,
                target_id=target_id,
            )
            continue

        relationships.append(
            GraphRelationship(
                id=edge_id,
                source_id=source.id,
                source_name=source.name,
                source_type=source.type,
                target_id=target.id,
                target_name=target.name,
                target_type=target.type,
                relationship_type=row.edge_type or "related_to",
                label=row.edge_label,
                description=row.edge_description,
                weight=_clamp_weight(row.edge_weight),
                is_bidirectional=bool(row.edge_is_bidirectional),
                valid_from_book_id=row.edge_valid_from_book_id,
                valid_from_book_title=timeline.title_of(row.edge_valid_from_book_id),
                valid_until_book_id=row.edge_valid_until_book_id,
                valid_until_book_title=timeline.title_of(row.edge_valid_until_book_id),
            )
        )

    # sorted() is stable, so ties keep first-seen order
    ordered = sorted(entities.values(), key=lambda e: (not e.is_point_of_view, e.hop_distance))
    return ordered, relationships


# ---------------------------------------------------------------------------
# Ancillary selections
# ---------------------------------------------------------------------------


def select_previous_scenes(
    scene_id: str,
    chapter_scenes: list[SceneRecord],
    chapter_title: str,
    previous_chapter: ChapterRecord | None,
    previous_chapter_scenes: list[SceneRecord],
    *,
    limit: int = 2,
    excerpt_chars: int = 500,
    previous_chapter_excerpt_chars: int = 300,
) -> list[SceneExcerpt]:
    """Pick prose excerpts leading into the current scene.

    Takes the ``limit`` scenes immediately before the current one in its
    chapter (most recent first) and the last scene of the previous chapter.
    Scenes without prose are skipped, not replaced.
    """
    current = next((s for s in chapter_scenes if s.id == scene_id), None)
    current_index = current.order_index if current is not None else 0

    earlier = [s for s in chapter_scenes if s.id != scene_id and s.order_index < current_index]
    earlier.sort(key=lambda s: s.order_index, reverse=True)

    excerpts: list[SceneExcerpt] = []
    for scene in earlier[:limit]:
        prose = scene.prose
        if not prose:
            continue
        excerpts.append(
            SceneExcerpt(
                id=scene.id,
                title=scene.title,
                excerpt=tail_excerpt(prose, excerpt_chars),
                chapter_title=chapter_title,
                order_index=scene.order_index,
                is_current_chapter=True,
            )
        )

    if previous_chapter is not None and previous_chapter_scenes:
        last = max(previous_chapter_scenes, key=lambda s: s.order_index)
        prose = last.prose
        if prose:
            excerpts.append(
                SceneExcerpt(
                    id=last.id,
                    title=last.title,
                    excerpt=tail_excerpt(prose, previous_chapter_excerpt_chars),
                    chapter_title=previous_chapter.title,
                    order_index=last.order_index,
                    is_current_chapter=False,
                )
            )

    return excerpts


def find_previous_chapter(
    chapters: list[ChapterRecord], chapter_id: str
) -> ChapterRecord | None:
    """Return the chapter immediately before *chapter_id* in its book."""
    current = next((c for c in chapters if c.id == chapter_id), None)
    if current is None:
        return None
    earlier = [c for c in chapters if c.order_index < current.order_index]
    return max(earlier, key=lambda c: c.order_index, default=None)


def select_chapter_summaries(
    chapters: list[ChapterRecord],
    chapter_id: str,
    book_title: str,
) -> list[ChapterSummary]:
    """Summaries of chapters strictly before the current one, chronological."""
    current = next((c for c in chapters if c.id == chapter_id), None)

    summaries: list[ChapterSummary] = []
    for chapter in sorted(chapters, key=lambda c: c.order_index):
        if chapter.id == chapter_id or not chapter.summary:
            continue
        if current is not None and chapter.order_index >= current.order_index:
            continue
        summaries.append(
            ChapterSummary(
                id=chapter.id,
                title=chapter.title,
                summary=chapter.summary,
                order_index=chapter.order_index,
                book_title=book_title,
            )
        )
    return summaries


def _book_context(book: BookRecord, current_book_id: str) -> BookContext:
    return BookContext(
        id=book.id,
        title=book.title,
        synopsis=book.synopsis,
        sort_order=book.sort_order,
        is_current=book.id == current_book_id,
        pov_style=book.pov_style or None,
        tense=book.tense or None,
        prose_style=book.prose_style or None,
        pacing=book.pacing or None,
        dialogue_style=book.dialogue_style or None,
        content_rating=book.content_rating or None,
        violence_level=book.violence_level or None,
        romance_level=book.romance_level or None,
        tone=list(book.tone or []),
    )


def _project_info(project: ProjectRecord | None) -> ProjectInfo:
    if project is None:
        return ProjectInfo()
    return ProjectInfo(
        title=project.title or "Untitled Project",
        genre=project.genre,
        world_description=project.world_description,
        themes=list(project.themes or []),
        world_setting=project.world_setting,
        time_period=project.time_period,
        series_type=project.series_type,
        target_audience=project.target_audience,
        narrative_conventions=list(project.narrative_conventions or []),
    )


def _event_contexts(
    events: list[EventRecord],
    names: dict[str, str],
) -> list[EventContext]:
    return [
        EventContext(
            id=event.id,
            name=event.name,
            description=event.description,
            event_date=event.event_date,
            involved_character_names=[
                names[cid] for cid in event.involved_character_ids if cid in names
            ],
        )
        for event in events
    ]


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


@dataclass
class _Retrieved:
    scene: SceneRecord | None
    project: ProjectRecord | None
    rows: list[SubgraphRow]
    books: list[BookRecord]
    chapters: list[ChapterRecord]
    chapter_scenes: list[SceneRecord]
    previous_chapter_scenes: list[SceneRecord] = field(default_factory=list)
    events: list[EventRecord] = field(default_factory=list)
    extra_entities: list[EntityRecord] = field(default_factory=list)


async def _guard(operation: str, awaitable: Awaitable[T]) -> T:
    try:
        return await awaitable
    except RetrievalError:
        raise
    except Exception as e:
        raise RetrievalError(operation=operation, reason=str(e) or type(e).__name__) from e


async def _no_rows() -> list[SubgraphRow]:
    return []


async def _no_events() -> list[EventRecord]:
    return []


async def _retrieve(
    store: StoryRepository,
    provider: SubgraphProvider,
    request: ContextRequest,
    query: SubgraphQuery,
    event_limit: int,
) -> _Retrieved:
    has_focus = bool(query.focus_entity_ids)
    (
        scene,
        project,
        rows,
        books,
        chapters,
        chapter_scenes,
        events,
    ) = await asyncio.gather(
        _guard("get_scene", store.get_scene(request.scene_id)),
        _guard("get_project", store.get_project(request.project_id)),
        _guard(
            "query_connected_subgraph",
            provider.query_connected_subgraph(query) if has_focus else _no_rows(),
        ),
        _guard("list_books", store.list_books(request.project_id)),
        _guard("list_chapters", store.list_chapters(request.book_id)),
        _guard("list_scenes", store.list_scenes(request.chapter_id)),
        _guard(
            "list_related_events",
            store.list_related_events(request.project_id, query.focus_entity_ids)
            if has_focus
            else _no_events(),
        ),
    )
    retrieved = _Retrieved(
        scene=scene,
        project=project,
        rows=rows,
        books=books,
        chapters=chapters,
        chapter_scenes=chapter_scenes,
        events=events[:event_limit],
    )

    # Second round depends on the first: the previous chapter's scenes and
    # involved characters the subgraph did not reach.
    previous_chapter = find_previous_chapter(chapters, request.chapter_id)
    known = {row.node_id for row in rows}
    missing = list(
        dict.fromkeys(
            cid
            for event in retrieved.events
            for cid in event.involved_character_ids
            if cid not in known
        )
    )

    follow_ups: list[Awaitable[object]] = []
    if previous_chapter is not None:
        follow_ups.append(_guard("list_scenes", store.list_scenes(previous_chapter.id)))
    if missing:
        follow_ups.append(_guard("get_entities", store.get_entities(missing)))

    results = await asyncio.gather(*follow_ups)
    if previous_chapter is not None:
        retrieved.previous_chapter_scenes = results[0]  # type: ignore[assignment]
    if missing:
        retrieved.extra_entities = results[-1]  # type: ignore[assignment]
    return retrieved


def _resolve_config(config: ContextConfig | None) -> ContextConfig:
    if config is not None:
        return config
    from storybrief.pipeline.config import ContextConfig

    return ContextConfig()


async def build_graph_context(
    store: StoryRepository,
    provider: SubgraphProvider,
    request: ContextRequest,
    *,
    config: ContextConfig | None = None,
) -> GraphContext:
    """Build the context aggregate for one scene.

    Args:
        store: Ancillary reads (project, books, chapters, scenes, events).
        provider: Subgraph traversal.
        request: Scene and focus entities to brief.
        config: Retrieval depth, timeout and excerpt limits. Uses defaults if None.

    Returns:
        Assembled GraphContext.

    Raises:
        RetrievalTimeoutError: If retrieval exceeds the configured timeout.
        RetrievalError: If the provider or store raises.
    """
    cfg = _resolve_config(config)
    depth = (
        request.max_hop_distance
        if request.max_hop_distance is not None
        else cfg.get_max_hop_distance()
    )
    query = SubgraphQuery(
        project_id=request.project_id,
        focus_entity_ids=request.focus_entity_ids,
        current_book_id=request.book_id,
        max_hop_distance=depth,
    )
    timeout = cfg.get_retrieval_timeout()

    try:
        retrieved = await asyncio.wait_for(
            _retrieve(store, provider, request, query, cfg.event_limit),
            timeout=timeout,
        )
    except TimeoutError as e:
        log.warning(
            "context_retrieval_timeout",
            scene_id=request.scene_id,
            timeout=timeout,
        )
        raise RetrievalTimeoutError(operation="build_graph_context", timeout=timeout) from e

    timeline = BookTimeline.from_books(retrieved.books)
    entities, relationships = process_subgraph_rows(
        retrieved.rows,
        pov_entity_id=request.pov_entity_id,
        timeline=timeline,
        current_book_id=request.book_id,
    )

    chapter = next((c for c in retrieved.chapters if c.id == request.chapter_id), None)
    chapter_title = chapter.title if chapter is not None else "Unknown"
    book_title = timeline.title_of(request.book_id) or "Unknown"

    previous_scenes = select_previous_scenes(
        request.scene_id,
        retrieved.chapter_scenes,
        chapter_title,
        find_previous_chapter(retrieved.chapters, request.chapter_id),
        retrieved.previous_chapter_scenes,
        limit=cfg.previous_scene_limit,
        excerpt_chars=cfg.current_excerpt_chars,
        previous_chapter_excerpt_chars=cfg.previous_chapter_excerpt_chars,
    )

    names = {e.id: e.name for e in retrieved.extra_entities}
    names.update({e.id: e.name for e in entities})

    scene = retrieved.scene
    context = GraphContext(
        scene=SceneInfo(
            id=request.scene_id,
            title=scene.title if scene is not None else None,
            time_in_story=scene.time_in_story if scene is not None else None,
        ),
        chapter=(
            ChapterInfo(
                id=chapter.id,
                title=chapter.title,
                summary=chapter.summary,
                order_index=chapter.order_index,
            )
            if chapter is not None
            else None
        ),
        project=_project_info(retrieved.project),
        entities=entities,
        relationships=relationships,
        previous_scenes=previous_scenes,
        chapter_summaries=select_chapter_summaries(
            retrieved.chapters, request.chapter_id, book_title
        ),
        books=[_book_context(b, request.book_id) for b in retrieved.books],
        events=_event_contexts(retrieved.events, names),
        focus_entity_ids=list(request.focus_entity_ids),
        pov_entity_id=request.pov_entity_id,
        current_book_id=request.book_id,
        current_chapter_id=request.chapter_id,
    )

    log.debug(
        "graph_context_built",
        scene_id=request.scene_id,
        rows=len(retrieved.rows),
        entities=len(context.entities),
        relationships=len(context.relationships),
        previous_scenes=len(context.previous_scenes),
        events=len(context.events),
    )
    return context


async def resolve_focus_entities(
    store: StoryRepository, scene_id: str
) -> tuple[list[str], str | None]:
    """Derive the focus entities and POV for a scene.

    Cast members come first, in cast order; the scene's location is added
    if it is not already present. The POV is the cast member flagged as
    such, falling back to the scene's ``pov_character_id``.

    Args:
        store: Story repository.
        scene_id: Scene to inspect.

    Returns:
        Tuple of (focus entity ids, POV entity id or None).

    Raises:
        SceneNotFoundError: If the scene does not exist.
        RetrievalError: If the store raises.
    """
    scene = await _guard("get_scene", store.get_scene(scene_id))
    if scene is None:
        raise SceneNotFoundError(scene_id=scene_id, context="resolving focus entities")

    focus_ids: list[str] = []
    pov_id: str | None = None
    for member in scene.cast:
        if member.entity_id not in focus_ids:
            focus_ids.append(member.entity_id)
        if member.pov:
            pov_id = member.entity_id

    if scene.location_id and scene.location_id not in focus_ids:
        focus_ids.append(scene.location_id)

    if pov_id is None and scene.pov_character_id:
        pov_id = scene.pov_character_id

    return focus_ids, pov_id
