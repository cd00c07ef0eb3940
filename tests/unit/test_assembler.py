"""Tests for context assembly: row processing, selections and retrieval."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from storybrief.context.assembler import (
    ContextRequest,
    build_graph_context,
    process_subgraph_rows,
    resolve_focus_entities,
    select_chapter_summaries,
    select_previous_scenes,
)
from storybrief.graph.errors import RetrievalError, RetrievalTimeoutError, SceneNotFoundError
from storybrief.graph.store import DictStoryStore
from storybrief.graph.timeline import BookTimeline
from storybrief.models import (
    BookRecord,
    ChapterRecord,
    EntityType,
    EventRecord,
    SceneRecord,
    SubgraphRow,
)
from storybrief.pipeline.config import ContextConfig

BOOKS = [
    BookRecord(id=f"b{i + 1}", project_id="p1", title=f"Book {i + 1}", sort_order=i)
    for i in range(4)
]
TIMELINE = BookTimeline.from_books(BOOKS)


def _row(
    node_id: str,
    hop: int = 0,
    *,
    node_type: EntityType = EntityType.CHARACTER,
    name: str | None = None,
    **fields: Any,
) -> SubgraphRow:
    return SubgraphRow(
        node_id=node_id,
        node_type=node_type,
        node_name=name or node_id.title(),
        hop_distance=hop,
        **fields,
    )


def _process(rows: list[SubgraphRow], pov: str | None = None, book: str = "b2") -> Any:
    return process_subgraph_rows(rows, pov_entity_id=pov, timeline=TIMELINE, current_book_id=book)


class TestProcessSubgraphRows:
    """Pure row processing."""

    def test_dedup_keeps_minimum_hop(self) -> None:
        rows = [_row("mira", 2), _row("mira", 1), _row("mira", 3)]
        entities, _ = _process(rows)

        assert len(entities) == 1
        assert entities[0].hop_distance == 1

    def test_dedup_keeps_first_seen_fields(self) -> None:
        rows = [
            _row("mira", 2, node_description="first"),
            _row("mira", 1, node_description="second"),
        ]
        entities, _ = _process(rows)
        assert entities[0].description == "first"

    def test_pov_first_then_hop_order(self) -> None:
        rows = [_row("joran", 0), _row("falls", 1, node_type=EntityType.LOCATION), _row("mira", 2)]
        entities, _ = _process(rows, pov="mira")

        assert [e.id for e in entities] == ["mira", "joran", "falls"]
        assert entities[0].is_point_of_view
        assert not entities[1].is_point_of_view

    def test_hop_ties_keep_first_seen_order(self) -> None:
        rows = [_row("b", 1), _row("a", 1), _row("c", 0)]
        entities, _ = _process(rows)
        assert [e.id for e in entities] == ["c", "b", "a"]

    def test_each_edge_emitted_once(self) -> None:
        rows = [
            _row("mira"),
            _row("joran", 1, edge_id="e1", connected_to="mira", edge_type="mentor_of"),
            _row("joran", 2, edge_id="e1", connected_to="mira", edge_type="mentor_of"),
        ]
        _, relationships = _process(rows)

        assert [r.id for r in relationships] == ["e1"]
        assert relationships[0].source_name == "Mira"
        assert relationships[0].target_name == "Joran"

    def test_stored_direction_wins_over_traversal_direction(self) -> None:
        rows = [
            _row("joran"),
            _row(
                "mira",
                1,
                edge_id="e1",
                connected_to="joran",
                edge_source_id="mira",
                edge_target_id="joran",
            ),
        ]
        _, relationships = _process(rows)
        assert (relationships[0].source_id, relationships[0].target_id) == ("mira", "joran")

    def test_missing_endpoint_dropped(self) -> None:
        rows = [_row("mira"), _row("mira", 1, edge_id="e1", connected_to="ghost")]
        entities, relationships = _process(rows)

        assert [e.id for e in entities] == ["mira"]
        assert relationships == []

    @pytest.mark.parametrize(
        ("book", "included"), [("b1", False), ("b2", True), ("b3", True), ("b4", False)]
    )
    def test_validity_window(self, book: str, included: bool) -> None:
        rows = [
            _row("mira"),
            _row(
                "joran",
                1,
                edge_id="e1",
                connected_to="mira",
                edge_valid_from_book_id="b2",
                edge_valid_until_book_id="b3",
            ),
        ]
        _, relationships = _process(rows, book=book)
        assert bool(relationships) is included

    def test_node_only_reached_outside_window_dropped(self) -> None:
        """A later-book character does not leak in through an expired edge."""
        rows = [
            _row("mira"),
            _row(
                "villain",
                1,
                name="Future Villain",
                edge_id="e1",
                connected_to="mira",
                edge_valid_from_book_id="b3",
            ),
        ]
        entities, relationships = _process(rows, book="b1")

        assert [e.id for e in entities] == ["mira"]
        assert relationships == []

    def test_nodes_beyond_dropped_node_dropped(self) -> None:
        rows = [
            _row("mira"),
            _row("villain", 1, edge_id="e1", connected_to="mira", edge_valid_from_book_id="b3"),
            _row("lair", 2, node_type=EntityType.LOCATION, edge_id="e2", connected_to="villain"),
        ]
        entities, relationships = _process(rows, book="b1")

        assert [e.id for e in entities] == ["mira"]
        assert relationships == []

    def test_hop_recomputed_from_kept_edges(self) -> None:
        """The short path runs over an expired edge, so the long path sets the hop."""
        rows = [
            _row("mira"),
            _row("joran", 1, edge_id="e1", connected_to="mira"),
            _row("kestrel", 1, edge_id="e2", connected_to="mira", edge_valid_from_book_id="b3"),
            _row("kestrel", 2, edge_id="e3", connected_to="joran"),
        ]
        entities, relationships = _process(rows, book="b1")

        kestrel = next(e for e in entities if e.id == "kestrel")
        assert kestrel.hop_distance == 2
        assert [r.id for r in relationships] == ["e1", "e3"]

    def test_window_titles_resolved(self) -> None:
        rows = [
            _row("mira"),
            _row("joran", 1, edge_id="e1", connected_to="mira", edge_valid_from_book_id="b1"),
        ]
        _, relationships = _process(rows)

        assert relationships[0].valid_from_book_title == "Book 1"
        assert relationships[0].valid_until_book_title is None

    @pytest.mark.parametrize(("weight", "expected"), [(None, 5), (0, 1), (7, 7), (42, 10)])
    def test_weight_clamped(self, weight: int | None, expected: int) -> None:
        rows = [
            _row("mira"),
            _row("joran", 1, edge_id="e1", connected_to="mira", edge_weight=weight),
        ]
        _, relationships = _process(rows)
        assert relationships[0].weight == expected

    def test_overlapping_relationships_all_listed(self) -> None:
        """Two edges between the same pair are both kept, in retrieval order."""
        rows = [
            _row("mira"),
            _row("joran", 1, edge_id="e_friend", connected_to="mira", edge_type="friend_of"),
            _row("joran", 1, edge_id="e_rival", connected_to="mira", edge_type="rival_of"),
        ]
        _, relationships = _process(rows)
        assert [r.relationship_type for r in relationships] == ["friend_of", "rival_of"]

    def test_malformed_attributes_coerced(self) -> None:
        rows = [_row("mira", node_attributes={"age": 19, "nested": {"x": 1}, "list": [1, 2]})]
        entities, _ = _process(rows)
        assert entities[0].attributes == {"age": 19}

    def test_zero_rows(self) -> None:
        assert _process([]) == ([], [])


class TestSelectPreviousScenes:
    def _scenes(self) -> list[SceneRecord]:
        return [
            SceneRecord(id="s0", chapter_id="c2", order_index=0, edited_prose="a" * 600),
            SceneRecord(id="s1", chapter_id="c2", order_index=1),
            SceneRecord(id="s2", chapter_id="c2", order_index=2, generated_prose="short"),
            SceneRecord(id="s3", chapter_id="c2", order_index=3),
        ]

    def test_limit_applies_before_skipping_unwritten(self) -> None:
        excerpts = select_previous_scenes("s3", self._scenes(), "The Climb", None, [])
        # s2 and s1 are the two nearest; s1 has no prose
        assert [e.id for e in excerpts] == ["s2"]

    def test_long_prose_keeps_tail(self) -> None:
        excerpts = select_previous_scenes("s1", self._scenes(), "The Climb", None, [])

        assert excerpts[0].excerpt == "..." + "a" * 500
        assert excerpts[0].is_current_chapter

    def test_previous_chapter_last_scene(self) -> None:
        previous = ChapterRecord(id="c1", book_id="b2", title="Arrival", order_index=0)
        previous_scenes = [
            SceneRecord(id="p0", chapter_id="c1", order_index=0, edited_prose="early"),
            SceneRecord(id="p1", chapter_id="c1", order_index=1, edited_prose="b" * 400),
        ]
        excerpts = select_previous_scenes(
            "s0", self._scenes(), "The Climb", previous, previous_scenes
        )

        assert [e.id for e in excerpts] == ["p1"]
        assert excerpts[0].excerpt == "..." + "b" * 300
        assert excerpts[0].chapter_title == "Arrival"
        assert not excerpts[0].is_current_chapter


class TestSelectChapterSummaries:
    def test_strictly_before_current(self) -> None:
        chapters = [
            ChapterRecord(
                id=f"c{i}", book_id="b2", title=f"Ch {i}", order_index=i, summary=f"S{i}"
            )
            for i in range(5)
        ]
        chapters[1] = chapters[1].model_copy(update={"summary": None})

        summaries = select_chapter_summaries(chapters, "c3", "Book 2")

        assert [s.id for s in summaries] == ["c0", "c2"]
        assert summaries[0].book_title == "Book 2"


class _RowsProvider:
    def __init__(self, rows: list[SubgraphRow]) -> None:
        self.rows = rows
        self.calls = 0

    async def query_connected_subgraph(self, query: Any) -> list[SubgraphRow]:
        self.calls += 1
        return self.rows


class _FailingProvider:
    async def query_connected_subgraph(self, query: Any) -> list[SubgraphRow]:
        raise ConnectionError("database unreachable")


class _SlowProvider:
    async def query_connected_subgraph(self, query: Any) -> list[SubgraphRow]:
        await asyncio.sleep(5)
        return []


class _BrokenProjectStore(DictStoryStore):
    async def get_project(self, project_id: str) -> Any:
        raise OSError("disk gone")


def _request(**overrides: Any) -> ContextRequest:
    values: dict[str, Any] = {
        "scene_id": "s2c",
        "project_id": "p1",
        "book_id": "b2",
        "chapter_id": "c2",
        "focus_entity_ids": ["mira", "joran", "falls"],
        "pov_entity_id": "mira",
    }
    values.update(overrides)
    return ContextRequest(**values)


class TestBuildGraphContext:
    """End-to-end assembly against the Aurora Falls store."""

    @pytest.mark.asyncio
    async def test_aurora_falls_scenario(self, aurora_store: DictStoryStore) -> None:
        context = await build_graph_context(aurora_store, aurora_store, _request())

        assert context.project.title == "Aurora Falls"
        assert context.project.genre == "Fantasy"
        assert context.characters[0].name == "Mira"
        assert context.characters[0].is_point_of_view
        mentor = next(r for r in context.relationships if r.id == "e_mentor")
        assert mentor.relationship_type == "mentor_of"
        assert mentor.valid_from_book_title == "Book 1"
        assert "kestrel" not in {e.id for e in context.entities}
        assert context.current_book is not None
        assert context.current_book.title == "Book 2"
        assert context.chapter is not None
        assert context.chapter.title == "The Climb"

    @pytest.mark.asyncio
    async def test_previous_scenes_and_summaries(self, aurora_store: DictStoryStore) -> None:
        context = await build_graph_context(aurora_store, aurora_store, _request())

        assert [s.id for s in context.previous_scenes] == ["s2b", "s2a", "s1a"]
        assert context.previous_scenes[1].excerpt.startswith("...")
        assert len(context.previous_scenes[1].excerpt) == 503
        assert context.previous_scenes[2].chapter_title == "Arrival"
        assert [c.id for c in context.chapter_summaries] == ["c1"]

    @pytest.mark.asyncio
    async def test_events_resolved(self, aurora_store: DictStoryStore) -> None:
        context = await build_graph_context(aurora_store, aurora_store, _request())

        assert [e.name for e in context.events] == ["The First Storm"]
        assert context.events[0].involved_character_names == ["Mira", "Joran"]

    @pytest.mark.asyncio
    async def test_event_names_fall_back_to_lookup(self, aurora_store: DictStoryStore) -> None:
        """Involved characters outside the subgraph are looked up by id."""
        provider = _RowsProvider([_row("mira", name="Mira")])
        context = await build_graph_context(aurora_store, provider, _request())

        assert context.events[0].involved_character_names == ["Mira", "Joran"]

    @pytest.mark.asyncio
    async def test_event_limit(self, aurora_store: DictStoryStore) -> None:
        config = ContextConfig(event_limit=0)
        context = await build_graph_context(aurora_store, aurora_store, _request(), config=config)
        assert context.events == []

    @pytest.mark.asyncio
    async def test_no_focus_skips_subgraph_query(self, aurora_store: DictStoryStore) -> None:
        provider = _RowsProvider([_row("mira")])
        context = await build_graph_context(
            aurora_store, provider, _request(focus_entity_ids=[], pov_entity_id=None)
        )

        assert provider.calls == 0
        assert context.entities == []
        assert context.relationships == []
        assert context.events == []

    @pytest.mark.asyncio
    async def test_zero_rows_still_builds(self, aurora_store: DictStoryStore) -> None:
        context = await build_graph_context(aurora_store, _RowsProvider([]), _request())

        assert context.entities == []
        assert context.project.title == "Aurora Falls"

    @pytest.mark.asyncio
    async def test_missing_scene_and_project_use_defaults(
        self, aurora_store: DictStoryStore
    ) -> None:
        context = await build_graph_context(
            aurora_store, aurora_store, _request(scene_id="ghost", project_id="nope")
        )

        assert context.scene.id == "ghost"
        assert context.scene.title is None
        assert context.project.title == "Untitled Project"

    @pytest.mark.asyncio
    async def test_provider_failure_raises_retrieval_error(
        self, aurora_store: DictStoryStore
    ) -> None:
        with pytest.raises(RetrievalError) as exc_info:
            await build_graph_context(aurora_store, _FailingProvider(), _request())

        assert exc_info.value.operation == "query_connected_subgraph"
        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert "database unreachable" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_store_failure_raises_retrieval_error(
        self, aurora_data: dict[str, Any]
    ) -> None:
        store = _BrokenProjectStore.from_dict(aurora_data)
        with pytest.raises(RetrievalError) as exc_info:
            await build_graph_context(store, store, _request())

        assert exc_info.value.operation == "get_project"

    @pytest.mark.asyncio
    async def test_timeout(self, aurora_store: DictStoryStore) -> None:
        config = ContextConfig(retrieval_timeout=0.05)
        with pytest.raises(RetrievalTimeoutError) as exc_info:
            await build_graph_context(aurora_store, _SlowProvider(), _request(), config=config)

        assert exc_info.value.timeout == 0.05
        assert isinstance(exc_info.value, RetrievalError)


class TestResolveFocusEntities:
    @pytest.mark.asyncio
    async def test_cast_then_location(self, aurora_store: DictStoryStore) -> None:
        focus, pov = await resolve_focus_entities(aurora_store, "s2c")

        assert focus == ["mira", "joran", "falls"]
        assert pov == "mira"

    @pytest.mark.asyncio
    async def test_pov_falls_back_to_scene(self, aurora_store: DictStoryStore) -> None:
        aurora_store.add_scene(
            SceneRecord(
                id="s9",
                chapter_id="c3",
                location_id="falls",
                pov_character_id="joran",
                cast=[{"entity_id": "falls"}],  # type: ignore[list-item]
            )
        )
        focus, pov = await resolve_focus_entities(aurora_store, "s9")

        assert focus == ["falls"]
        assert pov == "joran"

    @pytest.mark.asyncio
    async def test_missing_scene(self, aurora_store: DictStoryStore) -> None:
        with pytest.raises(SceneNotFoundError, match="ghost"):
            await resolve_focus_entities(aurora_store, "ghost")


class TestRelatedEventsProtocolUse:
    @pytest.mark.asyncio
    async def test_unresolvable_involved_ids_dropped(self, aurora_data: dict[str, Any]) -> None:
        class _Store(DictStoryStore):
            async def list_related_events(
                self, project_id: str, focus_entity_ids: list[str]
            ) -> list[EventRecord]:
                return [EventRecord(id="ev", name="Ev", involved_character_ids=["ghost", "joran"])]

        store = _Store.from_dict(aurora_data)
        context = await build_graph_context(store, store, _request())
        assert context.events[0].involved_character_names == ["Joran"]
