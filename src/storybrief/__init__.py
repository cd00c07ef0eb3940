"""storybrief - story-graph context assembly for scene generation.

Selects a bounded, timeline-aware slice of a project's story graph around
the scene being written and compiles it into a sectioned, cache-partitioned
brief for a downstream text generator.
"""

__version__ = "0.1.0"
