"""Scene prompt templates and the cache-partitioned prompt builder."""

from storybrief.prompts.builder import PromptBuilder, SystemPromptParts
from storybrief.prompts.loader import (
    InstructionSet,
    PromptLoader,
    PromptTemplate,
    TemplateNotFoundError,
    TemplateParseError,
)

__all__ = [
    "InstructionSet",
    "PromptBuilder",
    "PromptLoader",
    "PromptTemplate",
    "SystemPromptParts",
    "TemplateNotFoundError",
    "TemplateParseError",
]
