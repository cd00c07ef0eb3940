"""Cache-partitioned system prompt builder.

The system prompt is built as three tiers ordered by volatility:

- static: writing instructions shared by every request
- book: instructions derived from the current book's settings, stable for
  every scene of that book
- context: the formatted scene brief, unique per scene

A caching-capable client sends static+book as a cached prefix and the
context uncached. Clients without caching send ``combined()``, which is the
single-string prompt. There is only one code path computing the book tier;
the monolithic prompt is always derived from the tiers.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, overload

from storybrief.prompts.loader import PromptLoader, PromptTemplate

if TYPE_CHECKING:
    from storybrief.models.context import BookContext, GraphContext

DEFAULT_TEMPLATE = "scene"

TIERS: tuple[str, ...] = ("static", "book", "context")

_VAR_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


@dataclass(frozen=True)
class SystemPromptParts:
    """The three system prompt tiers.

    Attributes:
        static: Request-independent instructions.
        book: Book-level style guidelines (may be empty).
        context: Scene-specific context brief.
    """

    static: str
    book: str
    context: str

    def combined(self) -> str:
        """Join the non-empty tiers with a blank line, static first."""
        return "\n\n".join(part for part in (self.static, self.book, self.context) if part)

    def cache_prefix(self) -> str:
        """The cacheable part of the prompt (static and book tiers)."""
        return "\n\n".join(part for part in (self.static, self.book) if part)

    def digest(self, tier: str) -> str:
        """SHA-256 hex digest of one tier.

        Raises:
            ValueError: If *tier* is not a tier name.
        """
        if tier not in TIERS:
            raise ValueError(f"Unknown prompt tier '{tier}', expected one of {', '.join(TIERS)}")
        text: str = getattr(self, tier)
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    def digests(self) -> dict[str, str]:
        """Digests of all tiers, keyed by tier name."""
        return {tier: self.digest(tier) for tier in TIERS}

    def as_system_blocks(self) -> list[dict[str, Any]]:
        """System blocks for a caching-capable messages API.

        The stable prefix is marked for ephemeral caching; the scene
        context follows uncached. Joining the block texts with a blank line
        gives ``combined()``.
        """
        blocks: list[dict[str, Any]] = []
        prefix = self.cache_prefix()
        if prefix:
            blocks.append(
                {"type": "text", "text": prefix, "cache_control": {"type": "ephemeral"}}
            )
        if self.context:
            blocks.append({"type": "text", "text": self.context})
        return blocks


class PromptBuilder:
    """Build scene prompts from a YAML template.

    Attributes:
        template_name: Template loaded from the prompt loader.
    """

    def __init__(
        self,
        loader: PromptLoader | None = None,
        template_name: str = DEFAULT_TEMPLATE,
    ) -> None:
        self._loader = loader or PromptLoader()
        self.template_name = template_name

    @property
    def template(self) -> PromptTemplate:
        """The loaded template (cached by the loader)."""
        return self._loader.load(self.template_name)

    def book_guidelines(
        self,
        book: BookContext | None,
        extra: Sequence[str] = (),
    ) -> list[str]:
        """Guideline lines for the book tier.

        Setting instructions come first, in template order, then the
        template's continuity guidelines, then *extra*.

        Args:
            book: Current book, or None if unknown.
            extra: Caller-supplied guidelines appended at the end.

        Returns:
            Guideline lines without bullet markers.
        """
        template = self.template
        lines: list[str] = []
        for setting, instructions in template.instructions.items():
            code = getattr(book, setting, None) if book is not None else None
            instruction = instructions.resolve(code)
            if instruction:
                lines.append(instruction)
        lines.extend(template.continuity)
        lines.extend(g for g in extra if g.strip())
        return lines

    def build_tiers(
        self,
        context_text: str,
        context: GraphContext | None = None,
        guidelines: Sequence[str] = (),
    ) -> SystemPromptParts:
        """Build the three system prompt tiers.

        Args:
            context_text: Formatted scene brief.
            context: Scene context, used for the current book's settings.
            guidelines: Extra book-tier guidelines.

        Returns:
            SystemPromptParts with static, book and context tiers.
        """
        template = self.template
        book = context.current_book if context is not None else None
        lines = self.book_guidelines(book, guidelines)
        book_tier = ""
        if lines:
            book_tier = "\n".join([template.book_heading, *(f"- {line}" for line in lines)])
        return SystemPromptParts(
            static=template.system,
            book=book_tier,
            context=context_text.strip(),
        )

    @overload
    def build_system_prompt(
        self,
        context_text: str,
        context: GraphContext | None = ...,
        guidelines: Sequence[str] = ...,
        *,
        split: Literal[False] = ...,
    ) -> str: ...

    @overload
    def build_system_prompt(
        self,
        context_text: str,
        context: GraphContext | None = ...,
        guidelines: Sequence[str] = ...,
        *,
        split: Literal[True],
    ) -> SystemPromptParts: ...

    def build_system_prompt(
        self,
        context_text: str,
        context: GraphContext | None = None,
        guidelines: Sequence[str] = (),
        *,
        split: bool = False,
    ) -> str | SystemPromptParts:
        """Build the system prompt, monolithic or split into tiers.

        Args:
            context_text: Formatted scene brief.
            context: Scene context, used for the current book's settings.
            guidelines: Extra book-tier guidelines.
            split: Return the tiers instead of a single string.

        Returns:
            The combined prompt string, or SystemPromptParts if *split*.
        """
        parts = self.build_tiers(context_text, context, guidelines)
        return parts if split else parts.combined()

    def build_user_message(self, beats: str) -> str:
        """Wrap beat instructions in the template's user message."""
        values = {"beats": beats.strip()}

        def replace_match(match: re.Match[str]) -> str:
            # Leave unknown placeholders as-is
            return values.get(match.group(1), match.group(0))

        return _VAR_PATTERN.sub(replace_match, self.template.user)
