"""Scene context assembly and formatting."""

from storybrief.context.assembler import (
    ContextRequest,
    build_graph_context,
    process_subgraph_rows,
    resolve_focus_entities,
    select_chapter_summaries,
    select_previous_scenes,
)
from storybrief.context.compact import estimate_tokens, truncate_summary, truncate_text
from storybrief.context.formatter import (
    FormatterConfig,
    PromptSection,
    SectionPolicy,
    format_context_for_prompt,
    format_sections,
)

__all__ = [
    "ContextRequest",
    "FormatterConfig",
    "PromptSection",
    "SectionPolicy",
    "build_graph_context",
    "estimate_tokens",
    "format_context_for_prompt",
    "format_sections",
    "process_subgraph_rows",
    "resolve_focus_entities",
    "select_chapter_summaries",
    "select_previous_scenes",
    "truncate_summary",
    "truncate_text",
]
