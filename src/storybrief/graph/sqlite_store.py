"""SQLite-backed subgraph provider.

SqliteSubgraphProvider answers connected-subgraph queries with a single
recursive CTE, keeping traversal inside the database the way a relational
deployment does. Validity windows are resolved in SQL against the books
table, so edges that do not hold in the current book are never followed.

The provider uses stdlib sqlite3; queries run in a worker thread so the
event loop is not blocked.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any

from storybrief.models.records import SubgraphRow
from storybrief.observability.logging import get_logger

if TYPE_CHECKING:
    from storybrief.graph.provider import SubgraphQuery
    from storybrief.graph.store import DictStoryStore

log = get_logger(__name__)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS books (
    book_id    TEXT PRIMARY KEY,
    project_id TEXT NOT NULL,
    title      TEXT NOT NULL,
    sort_order INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_books_project ON books(project_id);

CREATE TABLE IF NOT EXISTS nodes (
    node_id    TEXT PRIMARY KEY,
    project_id TEXT NOT NULL,
    type       TEXT NOT NULL,
    name       TEXT NOT NULL,
    data       JSON NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_nodes_project ON nodes(project_id);

CREATE TABLE IF NOT EXISTS edges (
    edge_id             TEXT PRIMARY KEY,
    project_id          TEXT NOT NULL,
    source_id           TEXT NOT NULL,
    target_id           TEXT NOT NULL,
    valid_from_book_id  TEXT,
    valid_until_book_id TEXT,
    data                JSON NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_edges_source ON edges(source_id);
CREATE INDEX IF NOT EXISTS idx_edges_target ON edges(target_id);
"""

# Walks both edge directions from the focus nodes. UNION collapses identical
# (node, edge, connected_to, hop) steps so the recursion terminates at :depth.
_SUBGRAPH_QUERY = """\
WITH RECURSIVE
    current_book(pos) AS (
        SELECT sort_order FROM books WHERE book_id = :book_id
    ),
    valid_edges AS (
        SELECT e.*
        FROM edges e
        LEFT JOIN books bf ON bf.book_id = e.valid_from_book_id
        LEFT JOIN books bu ON bu.book_id = e.valid_until_book_id
        WHERE e.project_id IN ('', :project_id)
          AND (
            (bf.book_id IS NULL AND bu.book_id IS NULL)
            OR (
                (SELECT pos FROM current_book) IS NOT NULL
                AND (bf.sort_order IS NULL OR bf.sort_order <= (SELECT pos FROM current_book))
                AND (bu.sort_order IS NULL OR bu.sort_order >= (SELECT pos FROM current_book))
            )
          )
    ),
    walk(node_id, edge_id, connected_to, hop) AS (
        SELECT n.node_id, NULL, NULL, 0
        FROM nodes n
        WHERE n.project_id IN ('', :project_id)
          AND n.node_id IN (SELECT value FROM json_each(:focus_ids))
        UNION
        SELECT
            CASE WHEN ve.source_id = w.node_id THEN ve.target_id ELSE ve.source_id END,
            ve.edge_id,
            w.node_id,
            w.hop + 1
        FROM walk w
        JOIN valid_edges ve ON w.node_id IN (ve.source_id, ve.target_id)
        WHERE w.hop < :depth
    )
SELECT
    w.node_id, w.edge_id, w.connected_to, w.hop,
    n.type AS node_type, n.name AS node_name, n.data AS node_data,
    ve.source_id, ve.target_id, ve.valid_from_book_id, ve.valid_until_book_id,
    ve.data AS edge_data
FROM walk w
JOIN nodes n ON n.node_id = w.node_id
LEFT JOIN valid_edges ve ON ve.edge_id = w.edge_id
"""


class SqliteSubgraphProvider:
    """SubgraphProvider backed by a SQLite database."""

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        """Open or create a subgraph database.

        Args:
            db_path: Path to ``.db`` file, or ``":memory:"`` for in-memory.
        """
        self._db_path = str(db_path) if isinstance(db_path, Path) else db_path
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)
        self._lock = threading.Lock()

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    @classmethod
    def from_store(
        cls,
        store: DictStoryStore,
        db_path: str | Path = ":memory:",
    ) -> SqliteSubgraphProvider:
        """Bulk-import books, entities and edges from an in-memory store.

        Args:
            store: Populated in-memory store.
            db_path: Where to create the database.

        Returns:
            New provider populated with the store's graph.
        """
        provider = cls(db_path)
        conn = provider._conn

        with conn:
            conn.executemany(
                "INSERT OR REPLACE INTO books (book_id, project_id, title, sort_order) "
                "VALUES (?, ?, ?, ?)",
                [(b.id, b.project_id, b.title, b.sort_order) for b in store.all_books()],
            )
            conn.executemany(
                "INSERT OR REPLACE INTO nodes (node_id, project_id, type, name, data) "
                "VALUES (?, ?, ?, ?, ?)",
                [
                    (
                        e.id,
                        e.project_id,
                        e.type.value,
                        e.name,
                        json.dumps(e.model_dump(mode="json"), default=str),
                    )
                    for e in store.all_entities()
                ],
            )
            conn.executemany(
                "INSERT OR REPLACE INTO edges "
                "(edge_id, project_id, source_id, target_id, "
                "valid_from_book_id, valid_until_book_id, data) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        e.id,
                        e.project_id,
                        e.source_id,
                        e.target_id,
                        e.valid_from_book_id,
                        e.valid_until_book_id,
                        json.dumps(e.model_dump(mode="json")),
                    )
                    for e in store.all_edges()
                ],
            )

        return provider

    async def query_connected_subgraph(self, query: SubgraphQuery) -> list[SubgraphRow]:
        """Run the recursive traversal in a worker thread."""
        return await asyncio.to_thread(self._query_sync, query)

    def _query_sync(self, query: SubgraphQuery) -> list[SubgraphRow]:
        params = {
            "project_id": query.project_id,
            "book_id": query.current_book_id,
            "focus_ids": json.dumps(query.focus_entity_ids),
            "depth": query.max_hop_distance,
        }
        with self._lock:
            records = self._conn.execute(_SUBGRAPH_QUERY, params).fetchall()

        rows = [_to_row(record) for record in records]
        log.debug(
            "subgraph_queried",
            project_id=query.project_id,
            focus=len(query.focus_entity_ids),
            rows=len(rows),
        )
        return rows


def _to_row(record: sqlite3.Row) -> SubgraphRow:
    node: dict[str, Any] = json.loads(record["node_data"])
    values: dict[str, Any] = {
        "node_id": record["node_id"],
        "node_type": record["node_type"],
        "node_name": record["node_name"],
        "node_description": node.get("description"),
        "node_attributes": node.get("attributes"),
        "node_character_role": node.get("character_role"),
        "node_character_arc": node.get("character_arc"),
        "node_location_type": node.get("location_type"),
        "node_event_date": node.get("event_date"),
        "node_tags": node.get("tags"),
        "connected_to": record["connected_to"],
        "hop_distance": record["hop"],
    }

    if record["edge_id"] is not None and record["edge_data"] is not None:
        edge: dict[str, Any] = json.loads(record["edge_data"])
        values.update(
            edge_id=record["edge_id"],
            edge_type=edge.get("relationship_type"),
            edge_label=edge.get("label"),
            edge_description=edge.get("description"),
            edge_weight=edge.get("weight"),
            edge_is_bidirectional=edge.get("is_bidirectional"),
            edge_source_id=record["source_id"],
            edge_target_id=record["target_id"],
            edge_valid_from_book_id=record["valid_from_book_id"],
            edge_valid_until_book_id=record["valid_until_book_id"],
        )

    return SubgraphRow.model_validate(values)
