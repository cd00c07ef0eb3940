"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from typing import Any

import pytest

from storybrief.graph.store import DictStoryStore

LONG_PROSE = " ".join(f"word{i}" for i in range(150))


def aurora_falls_data() -> dict[str, Any]:
    """A four-book series with Book 2 / "The Climb" as the scene being written."""
    return {
        "projects": [
            {
                "id": "p1",
                "title": "Aurora Falls",
                "genre": "Fantasy",
                "world_setting": "A river valley under a permanent aurora",
                "themes": ["trust", "inheritance"],
            }
        ],
        "books": [
            {
                "id": "b1",
                "project_id": "p1",
                "title": "Book 1",
                "sort_order": 0,
                "synopsis": "Mira leaves home and meets Joran at the edge of the gorge.",
            },
            {
                "id": "b2",
                "project_id": "p1",
                "title": "Book 2",
                "sort_order": 1,
                "synopsis": "Mira trains under Joran while the guild tightens its grip.",
                "pov_style": "third_limited",
                "tense": "past",
                "prose_style": "literary",
                "pacing": "moderate",
                "content_rating": "teen",
                "tone": ["hopeful", "tense"],
            },
            {"id": "b3", "project_id": "p1", "title": "Book 3", "sort_order": 2},
            {"id": "b4", "project_id": "p1", "title": "Book 4", "sort_order": 3},
        ],
        "chapters": [
            {"id": "c1", "book_id": "b2", "title": "Arrival", "order_index": 0,
             "summary": "Mira reaches the falls."},
            {"id": "c2", "book_id": "b2", "title": "The Climb", "order_index": 1,
             "summary": "Joran tests Mira on the cliffs."},
            {"id": "c3", "book_id": "b2", "title": "Storm", "order_index": 2,
             "summary": "A storm breaks over the valley."},
        ],
        "scenes": [
            {"id": "s1a", "chapter_id": "c1", "title": "Mist", "order_index": 0,
             "edited_prose": "Mist rolled off the falls."},
            {"id": "s2a", "chapter_id": "c2", "title": "First Hold", "order_index": 0,
             "edited_prose": LONG_PROSE},
            {"id": "s2b", "chapter_id": "c2", "title": "Rope Work", "order_index": 1,
             "generated_prose": "Joran tied the rope twice."},
            {
                "id": "s2c",
                "chapter_id": "c2",
                "title": "The Ledge",
                "order_index": 2,
                "time_in_story": "Dawn, day three",
                "location_id": "falls",
                "cast": [
                    {"entity_id": "mira", "pov": True},
                    {"entity_id": "joran"},
                ],
            },
        ],
        "entities": [
            {
                "id": "mira",
                "project_id": "p1",
                "type": "character",
                "name": "Mira",
                "description": "A stubborn apprentice climber.",
                "character_role": "protagonist",
                "attributes": {
                    "age": 19,
                    "is_mage": True,
                    "eyes": "grey",
                    "aliases": ["Mi", "Little Hawk"],
                    "nested": {"x": 1},
                    "blank": "  ",
                },
                "tags": ["climber"],
            },
            {
                "id": "joran",
                "project_id": "p1",
                "type": "character",
                "name": "Joran",
                "description": "A retired guide.",
                "character_role": "mentor",
            },
            {
                "id": "kestrel",
                "project_id": "p1",
                "type": "character",
                "name": "Kestrel",
            },
            {
                "id": "falls",
                "project_id": "p1",
                "type": "location",
                "name": "Aurora Falls Gorge",
                "location_type": "landmark",
                "description": "A thundering cataract.",
            },
            {"id": "valley", "project_id": "p1", "type": "location", "name": "Silver Valley"},
            {
                "id": "guild",
                "project_id": "p1",
                "type": "faction",
                "name": "Climbers' Guild",
                "description": "Controls every route up the gorge.",
            },
            {
                "id": "ev_storm",
                "project_id": "p1",
                "type": "event",
                "name": "The First Storm",
                "description": "Lightning splits the old bridge.",
                "event_date": "Year 3",
            },
        ],
        "edges": [
            {"id": "e_mentor", "project_id": "p1", "source_id": "mira", "target_id": "joran",
             "relationship_type": "mentor_of", "valid_from_book_id": "b1"},
            {"id": "e_at", "project_id": "p1", "source_id": "mira", "target_id": "falls",
             "relationship_type": "located_at"},
            {"id": "e_ally", "project_id": "p1", "source_id": "mira", "target_id": "kestrel",
             "relationship_type": "ally_of", "valid_until_book_id": "b1"},
            {"id": "e_rival", "project_id": "p1", "source_id": "kestrel", "target_id": "mira",
             "relationship_type": "rival_of", "valid_from_book_id": "b3",
             "valid_until_book_id": "b4"},
            {"id": "e_storm_mira", "project_id": "p1", "source_id": "ev_storm",
             "target_id": "mira", "relationship_type": "involves"},
            {"id": "e_storm_joran", "project_id": "p1", "source_id": "ev_storm",
             "target_id": "joran", "relationship_type": "involves"},
            {"id": "e_member", "project_id": "p1", "source_id": "joran", "target_id": "guild",
             "relationship_type": "member_of", "description": "Left on bad terms."},
            {"id": "e_part", "project_id": "p1", "source_id": "falls", "target_id": "valley",
             "relationship_type": "part_of"},
            {"id": "e_controls", "project_id": "p1", "source_id": "guild", "target_id": "falls",
             "relationship_type": "controls"},
        ],
    }


@pytest.fixture
def aurora_store() -> DictStoryStore:
    """In-memory store populated with the Aurora Falls series."""
    return DictStoryStore.from_dict(aurora_falls_data())


@pytest.fixture
def aurora_data() -> dict[str, Any]:
    """Raw fixture dict for the Aurora Falls series."""
    return aurora_falls_data()
