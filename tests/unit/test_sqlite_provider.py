"""Tests for the SQLite-backed subgraph provider."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from storybrief.graph.provider import SubgraphProvider, SubgraphQuery
from storybrief.graph.sqlite_store import SqliteSubgraphProvider

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from storybrief.graph.store import DictStoryStore
    from storybrief.models import SubgraphRow


def _query(focus: list[str], book: str = "b2", depth: int = 2) -> SubgraphQuery:
    return SubgraphQuery(
        project_id="p1", focus_entity_ids=focus, current_book_id=book, max_hop_distance=depth
    )


def _steps(rows: list[SubgraphRow]) -> set[tuple[str, str | None, str | None, int]]:
    return {(r.node_id, r.edge_id, r.connected_to, r.hop_distance) for r in rows}


@pytest.fixture
def provider(aurora_store: DictStoryStore) -> Iterator[SqliteSubgraphProvider]:
    sqlite = SqliteSubgraphProvider.from_store(aurora_store)
    yield sqlite
    sqlite.close()


class TestSqliteSubgraphProvider:
    def test_satisfies_protocol(self, provider: SqliteSubgraphProvider) -> None:
        assert isinstance(provider, SubgraphProvider)

    @pytest.mark.asyncio
    async def test_matches_in_memory_traversal(
        self, provider: SqliteSubgraphProvider, aurora_store: DictStoryStore
    ) -> None:
        """Single-focus traversal yields the same steps as the in-memory store."""
        expected = await aurora_store.query_connected_subgraph(_query(["mira"]))
        actual = await provider.query_connected_subgraph(_query(["mira"]))

        assert _steps(actual) == _steps(expected)

    @pytest.mark.asyncio
    async def test_validity_window_filters_edges(self, provider: SqliteSubgraphProvider) -> None:
        rows_b2 = await provider.query_connected_subgraph(_query(["mira"], book="b2", depth=1))
        rows_b3 = await provider.query_connected_subgraph(_query(["mira"], book="b3", depth=1))

        assert "kestrel" not in {r.node_id for r in rows_b2}
        assert {r.edge_id for r in rows_b3 if r.node_id == "kestrel"} == {"e_rival"}

    @pytest.mark.asyncio
    async def test_unknown_current_book_keeps_windowless_edges(
        self, provider: SqliteSubgraphProvider
    ) -> None:
        rows = await provider.query_connected_subgraph(_query(["mira"], book="nope", depth=1))
        edges = {r.edge_id for r in rows if r.has_edge}

        assert "e_at" in edges
        assert "e_mentor" not in edges

    @pytest.mark.asyncio
    async def test_rows_carry_payloads(self, provider: SqliteSubgraphProvider) -> None:
        rows = await provider.query_connected_subgraph(_query(["joran"], depth=1))
        mira = next(r for r in rows if r.node_id == "mira" and r.edge_id == "e_mentor")

        assert mira.node_attributes["eyes"] == "grey"
        assert mira.node_tags == ["climber"]
        assert mira.edge_type == "mentor_of"
        assert mira.edge_source_id == "mira"
        assert mira.edge_target_id == "joran"
        assert mira.edge_valid_from_book_id == "b1"
        assert mira.connected_to == "joran"
        assert mira.hop_distance == 1

    @pytest.mark.asyncio
    async def test_focus_row_has_no_edge(self, provider: SqliteSubgraphProvider) -> None:
        rows = await provider.query_connected_subgraph(_query(["falls"], depth=0))

        assert len(rows) == 1
        assert rows[0].node_id == "falls"
        assert not rows[0].has_edge

    @pytest.mark.asyncio
    async def test_other_project_returns_nothing(self, provider: SqliteSubgraphProvider) -> None:
        query = SubgraphQuery(project_id="p2", focus_entity_ids=["mira"], current_book_id="b2")
        assert await provider.query_connected_subgraph(query) == []

    @pytest.mark.asyncio
    async def test_file_backed_database(
        self, aurora_store: DictStoryStore, tmp_path: Path
    ) -> None:
        db_path = tmp_path / "story.db"
        sqlite = SqliteSubgraphProvider.from_store(aurora_store, db_path)
        sqlite.close()

        reopened = SqliteSubgraphProvider(db_path)
        try:
            rows = await reopened.query_connected_subgraph(_query(["mira"], depth=1))
        finally:
            reopened.close()
        assert {r.node_id for r in rows} == {"mira", "joran", "falls", "ev_storm"}
