"""Story graph retrieval: protocols, stores and the series timeline."""

from storybrief.graph.errors import (
    ContextError,
    RetrievalError,
    RetrievalTimeoutError,
    SceneNotFoundError,
)
from storybrief.graph.provider import (
    DEFAULT_MAX_HOP_DISTANCE,
    StoryRepository,
    SubgraphProvider,
    SubgraphQuery,
)
from storybrief.graph.sqlite_store import SqliteSubgraphProvider
from storybrief.graph.store import DictStoryStore, StoryFixtureError, load_story_fixture
from storybrief.graph.timeline import BookTimeline

__all__ = [
    "DEFAULT_MAX_HOP_DISTANCE",
    "BookTimeline",
    "ContextError",
    "DictStoryStore",
    "RetrievalError",
    "RetrievalTimeoutError",
    "SceneNotFoundError",
    "SqliteSubgraphProvider",
    "StoryFixtureError",
    "StoryRepository",
    "SubgraphProvider",
    "SubgraphQuery",
    "load_story_fixture",
]
