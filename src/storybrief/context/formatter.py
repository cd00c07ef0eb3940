"""Render a GraphContext into ordered prompt sections.

Sections follow a fixed order, nearest-to-the-scene material first:

1. Story world (always present)
2. Current book and series recap
3. Writing style and content guidelines
4. Current chapter / scene heading
5. Characters (POV first)
6. Character relationships
7. Location
8. Faction dynamics
9. Recent events
10. Previous scene excerpts
11. Previous chapter summaries

Each section can be capped by a ``SectionPolicy`` (max items, max chars) and
is omitted entirely when it would be empty. An optional total character
budget drops trailing sections first, so deep series history is the first
thing sacrificed when the brief runs long.

Formatting never raises on free-form content: unexpected attribute values
are skipped.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from storybrief.context.compact import chars_for_tokens, truncate_summary, truncate_text
from storybrief.models.context import EntityType
from storybrief.observability.logging import get_logger

if TYPE_CHECKING:
    from storybrief.models.context import (
        AttributeValue,
        GraphContext,
        GraphEntity,
        GraphRelationship,
    )

log = get_logger(__name__)

SECTION_WORLD = "world"
SECTION_BOOK = "book"
SECTION_STYLE = "style"
SECTION_CHAPTER = "chapter"
SECTION_CHARACTERS = "characters"
SECTION_RELATIONSHIPS = "relationships"
SECTION_LOCATION = "location"
SECTION_FACTIONS = "factions"
SECTION_EVENTS = "events"
SECTION_PREVIOUS_SCENES = "previous_scenes"
SECTION_CHAPTER_SUMMARIES = "chapter_summaries"

SECTION_ORDER: tuple[str, ...] = (
    SECTION_WORLD,
    SECTION_BOOK,
    SECTION_STYLE,
    SECTION_CHAPTER,
    SECTION_CHARACTERS,
    SECTION_RELATIONSHIPS,
    SECTION_LOCATION,
    SECTION_FACTIONS,
    SECTION_EVENTS,
    SECTION_PREVIOUS_SCENES,
    SECTION_CHAPTER_SUMMARIES,
)

POV_LABELS: dict[str, str] = {
    "first_person": "First Person (I/me)",
    "third_limited": "Third Person Limited",
    "third_omniscient": "Third Person Omniscient",
    "second_person": "Second Person (you)",
    "multiple_pov": "Multiple POV",
}

TENSE_LABELS: dict[str, str] = {
    "past": "Past Tense",
    "present": "Present Tense",
}

PROSE_LABELS: dict[str, str] = {
    "literary": "Literary (rich, layered prose)",
    "commercial": "Commercial (accessible, engaging)",
    "sparse": "Sparse/Minimalist (Hemingway-style)",
    "ornate": "Ornate (detailed, descriptive)",
    "conversational": "Conversational (informal, natural)",
}

PACING_LABELS: dict[str, str] = {
    "fast": "Fast-paced (action-driven)",
    "moderate": "Moderate (balanced)",
    "slow": "Slow/deliberate (character-focused)",
    "variable": "Variable (scene-dependent)",
}

RATING_LABELS: dict[str, str] = {
    "all_ages": "All Ages (G)",
    "teen": "Teen (PG-13)",
    "mature": "Mature (R)",
    "adult": "Adult (18+)",
}

VIOLENCE_LABELS: dict[str, str] = {
    "none": "None",
    "mild": "Mild (implied, off-screen)",
    "moderate": "Moderate (some action/combat)",
    "graphic": "Graphic (detailed violence)",
}

ROMANCE_LABELS: dict[str, str] = {
    "none": "None",
    "sweet": "Sweet/Clean (fade to black)",
    "sensual": "Sensual (suggestive)",
    "steamy": "Steamy (explicit)",
}

# Below this many characters a budget-truncated section is not worth keeping.
_MIN_TRUNCATED_SECTION = 40


@dataclass(frozen=True)
class SectionPolicy:
    """Truncation limits for one section.

    Attributes:
        max_items: Maximum entries rendered (characters, lines, events, ...).
        max_chars: Maximum characters of rendered section text. A section
            cut to nothing is omitted.

    Raises:
        ValueError: If either limit is negative.
    """

    max_items: int | None = None
    max_chars: int | None = None

    def __post_init__(self) -> None:
        for name in ("max_items", "max_chars"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} must be >= 0, got {value}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SectionPolicy:
        return cls(max_items=data.get("max_items"), max_chars=data.get("max_chars"))


def _default_policies() -> dict[str, SectionPolicy]:
    return {
        SECTION_EVENTS: SectionPolicy(max_items=5),
        SECTION_CHAPTER_SUMMARIES: SectionPolicy(max_items=3),
    }


@dataclass
class FormatterConfig:
    """Section limits and truncation constants for the formatter.

    Attributes:
        policies: Per-section limits keyed by section name.
        previous_book_synopsis_chars: Synopsis length kept in the series recap.
        event_description_chars: Event description length kept.
        max_chars: Optional budget for the whole rendered context.
    """

    policies: dict[str, SectionPolicy] = field(default_factory=_default_policies)
    previous_book_synopsis_chars: int = 150
    event_description_chars: int = 100
    max_chars: int | None = None

    def policy(self, section: str) -> SectionPolicy:
        """Return the policy for *section* (unlimited if not configured)."""
        return self.policies.get(section, SectionPolicy())

    @classmethod
    def from_token_budget(cls, tokens: int) -> FormatterConfig:
        """Default limits with a total budget derived from a token count."""
        return cls(max_chars=chars_for_tokens(tokens))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FormatterConfig:
        """Create config from dictionary.

        Args:
            data: Dictionary with optional ``sections`` (name -> policy dict),
                ``previous_book_synopsis_chars``, ``event_description_chars``,
                ``max_chars`` and ``max_tokens``. ``max_chars`` wins over
                ``max_tokens`` when both are given.

        Returns:
            FormatterConfig instance.

        Raises:
            ValueError: If a section name is not recognised.
        """
        policies = _default_policies()
        for name, policy_data in dict(data.get("sections", {})).items():
            if name not in SECTION_ORDER:
                raise ValueError(f"Unknown prompt section '{name}'")
            policies[name] = SectionPolicy.from_dict(dict(policy_data))

        max_chars = data.get("max_chars")
        if max_chars is None and data.get("max_tokens") is not None:
            max_chars = chars_for_tokens(int(data["max_tokens"]))

        return cls(
            policies=policies,
            previous_book_synopsis_chars=data.get("previous_book_synopsis_chars", 150),
            event_description_chars=data.get("event_description_chars", 100),
            max_chars=max_chars,
        )


@dataclass(frozen=True)
class PromptSection:
    """One rendered section of the context brief."""

    name: str
    text: str

    @property
    def heading(self) -> str:
        """The section's first line (its markdown heading)."""
        return self.text.split("\n", 1)[0]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _capitalize(value: str) -> str:
    return value[:1].upper() + value[1:]


def _label(labels: dict[str, str], code: str) -> str:
    return labels.get(code, code)


def _limit(items: list[Any], max_items: int | None) -> list[Any]:
    return items if max_items is None else items[:max_items]


def format_relationship_type(relationship_type: str) -> str:
    """Human-readable relationship type (``mentor_of`` -> ``mentor of``)."""
    return relationship_type.replace("_", " ")


def format_attribute_value(value: AttributeValue | Any) -> str | None:
    """Render one attribute value, or None if it should be skipped."""
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return f"{value:g}"
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, list):
        parts = [item.strip() for item in value if isinstance(item, str) and item.strip()]
        return "/".join(parts) or None
    return None


def format_attributes(attributes: dict[str, AttributeValue] | Any) -> str | None:
    """Render attributes as ``key: value`` pairs, comma joined.

    Blank and unrenderable values are skipped. Returns None when nothing
    is left to show.
    """
    if not isinstance(attributes, dict):
        return None

    pairs: list[str] = []
    for key, value in attributes.items():
        rendered = format_attribute_value(value)
        if rendered is not None:
            pairs.append(f"{key}: {rendered}")
    return ", ".join(pairs) or None


def _relationship_line(rel: GraphRelationship) -> str:
    line = f"- {rel.source_name} **{format_relationship_type(rel.relationship_type)}** "
    line += rel.target_name
    if rel.valid_from_book_title:
        line += f" (since {rel.valid_from_book_title})"
    if rel.valid_until_book_title:
        line += f" (until {rel.valid_until_book_title})"
    return line


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


def format_world_section(context: GraphContext, config: FormatterConfig) -> str:
    """Project and world metadata. Always rendered."""
    project = context.project
    lines = ["## Story World", f"Project: {project.title}"]

    if project.genre:
        lines.append(f"Genre: {project.genre}")
    if project.world_setting:
        lines.append(f"Setting: {project.world_setting}")
    if project.time_period:
        lines.append(f"Time Period: {project.time_period}")
    if project.world_description:
        lines.append(f"World Description: {project.world_description}")
    if project.themes:
        lines.append(f"Themes: {', '.join(project.themes)}")
    if project.target_audience:
        lines.append(f"Target Audience: {project.target_audience}")
    if project.narrative_conventions:
        lines.append(f"Narrative Conventions: {', '.join(project.narrative_conventions)}")

    return "\n".join(lines)


def format_book_section(context: GraphContext, config: FormatterConfig) -> str | None:
    """Current book, with a recap of earlier books in the series."""
    book = context.current_book
    if book is None:
        return None

    heading = f"## Current Book: {book.title}"
    if len(context.books) > 1:
        series = sorted(context.books, key=lambda b: b.sort_order)
        position = next(i for i, b in enumerate(series, start=1) if b.id == book.id)
        heading += f" (Book {position} of {len(series)})"
    lines = [heading]

    if book.synopsis:
        lines.append(f"Synopsis: {book.synopsis}")

    previous = [b for b in context.books if b.sort_order < book.sort_order and b.synopsis]
    previous.sort(key=lambda b: b.sort_order)
    max_items = config.policy(SECTION_BOOK).max_items
    if max_items is not None:
        # Keep the books closest to the current one
        previous = previous[-max_items:] if max_items > 0 else []

    if previous:
        lines.append("")
        lines.append("Previous Books:")
        for prior in previous:
            synopsis = truncate_text(prior.synopsis or "", config.previous_book_synopsis_chars)
            lines.append(f"- {prior.title}: {synopsis}")

    return "\n".join(lines)


def format_style_section(context: GraphContext, config: FormatterConfig) -> str | None:
    """Writing style and content guidelines set on the current book."""
    book = context.current_book
    if book is None:
        return None

    style: list[str] = []
    if book.pov_style:
        style.append(f"- Point of View: {_label(POV_LABELS, book.pov_style)}")
    if book.tense:
        style.append(f"- Tense: {_label(TENSE_LABELS, book.tense)}")
    if book.prose_style:
        style.append(f"- Prose Style: {_label(PROSE_LABELS, book.prose_style)}")
    if book.pacing:
        style.append(f"- Pacing: {_label(PACING_LABELS, book.pacing)}")
    if book.dialogue_style:
        style.append(f"- Dialogue Style: {book.dialogue_style}")
    if book.tone:
        style.append(f"- Tone: {', '.join(book.tone)}")

    guidelines: list[str] = []
    if book.content_rating:
        guidelines.append(f"- Content Rating: {_label(RATING_LABELS, book.content_rating)}")
    if book.violence_level:
        guidelines.append(f"- Violence: {_label(VIOLENCE_LABELS, book.violence_level)}")
    if book.romance_level:
        guidelines.append(f"- Romance: {_label(ROMANCE_LABELS, book.romance_level)}")

    if not style and not guidelines:
        return None

    lines = ["## Writing Style", *style]
    if guidelines:
        if style:
            lines.append("")
        lines.append("### Content Guidelines")
        lines.extend(guidelines)
    return "\n".join(lines)


def format_chapter_section(context: GraphContext, config: FormatterConfig) -> str | None:
    """Current chapter and scene heading."""
    chapter = context.chapter
    scene = context.scene
    if chapter is None and not scene.title and not scene.time_in_story:
        return None

    lines = ["## Current Chapter"]
    if chapter is not None:
        lines.append(f"Title: {chapter.title}")
        if chapter.summary:
            lines.append(f"Summary: {chapter.summary}")
    if scene.title:
        lines.append(f"Scene: {scene.title}")
    if scene.time_in_story:
        lines.append(f"Time in Story: {scene.time_in_story}")
    return "\n".join(lines)


def _format_character(character: GraphEntity) -> list[str]:
    pov_label = " (POV Character)" if character.is_point_of_view else ""
    lines = [f"### {character.name}{pov_label}"]

    if character.character_role:
        lines.append(f"- Role: {_capitalize(character.character_role)}")
    if character.description:
        lines.append(f"- Description: {character.description}")
    if character.character_arc:
        lines.append(f"- Arc: {character.character_arc}")

    attributes = format_attributes(character.attributes)
    if attributes:
        lines.append(f"- Attributes: {attributes}")

    if character.tags:
        lines.append(f"- Tags: {', '.join(character.tags)}")
    return lines


def format_characters_section(context: GraphContext, config: FormatterConfig) -> str | None:
    """One subsection per character, in assembler order (POV first)."""
    characters = _limit(context.characters, config.policy(SECTION_CHARACTERS).max_items)
    if not characters:
        return None

    lines = ["## Characters in This Scene"]
    for character in characters:
        lines.append("")
        lines.extend(_format_character(character))
    return "\n".join(lines)


def select_character_relationships(
    context: GraphContext, config: FormatterConfig
) -> list[GraphRelationship]:
    """Relationships shown in the relationships section, grouped by source name.

    Only relationships with at least one character endpoint qualify.
    Groups appear in order of first appearance.
    """
    grouped: dict[str, list[GraphRelationship]] = {}
    for rel in context.relationships:
        if not rel.involves(EntityType.CHARACTER):
            continue
        grouped.setdefault(rel.source_name, []).append(rel)

    ordered = [rel for rels in grouped.values() for rel in rels]
    return _limit(ordered, config.policy(SECTION_RELATIONSHIPS).max_items)


def format_relationships_section(context: GraphContext, config: FormatterConfig) -> str | None:
    """Character relationships, with timeline annotations."""
    relationships = select_character_relationships(context, config)
    if not relationships:
        return None

    lines = ["## Character Relationships"]
    for rel in relationships:
        lines.append(_relationship_line(rel))
        if rel.description:
            lines.append(f"  {rel.description}")
    return "\n".join(lines)


def format_location_section(context: GraphContext, config: FormatterConfig) -> str | None:
    """The scene location (hop distance 0) and the locations around it."""
    locations = context.entities_of_type(EntityType.LOCATION)
    primary = next((loc for loc in locations if loc.hop_distance == 0), None)
    if primary is None:
        return None

    lines = [f"## Location: {primary.name}"]
    if primary.location_type:
        lines.append(f"- Type: {_capitalize(primary.location_type)}")
    if primary.description:
        lines.append(f"- Description: {primary.description}")

    connected = [loc for loc in locations if loc.hop_distance > 0]
    connected = _limit(connected, config.policy(SECTION_LOCATION).max_items)
    if connected:
        hierarchy = " → ".join([primary.name, *(loc.name for loc in connected)])
        lines.append(f"- Part of: {hierarchy}")
    return "\n".join(lines)


def format_factions_section(context: GraphContext, config: FormatterConfig) -> str | None:
    """Factions and the faction relationships not already listed."""
    factions = _limit(
        context.entities_of_type(EntityType.FACTION),
        config.policy(SECTION_FACTIONS).max_items,
    )
    if not factions:
        return None

    shown = {rel.id for rel in select_character_relationships(context, config)}

    lines = ["## Faction Dynamics"]
    for faction in factions:
        if faction.description:
            lines.append(f"- {faction.name}: {faction.description}")
        else:
            lines.append(f"- {faction.name}")

    for rel in context.relationships:
        if rel.involves(EntityType.FACTION) and rel.id not in shown:
            lines.append(_relationship_line(rel))
    return "\n".join(lines)


def format_events_section(context: GraphContext, config: FormatterConfig) -> str | None:
    """Recent events with dates and involved characters."""
    events = _limit(context.events, config.policy(SECTION_EVENTS).max_items)
    if not events:
        return None

    lines = ["## Recent Events"]
    for event in events:
        line = f"- {event.name}"
        if event.event_date:
            line += f" ({event.event_date})"
        lines.append(line)

        if event.description:
            lines.append(f"  {truncate_text(event.description, config.event_description_chars)}")
        if event.involved_character_names:
            lines.append(f"  Involved: {', '.join(event.involved_character_names)}")
    return "\n".join(lines)


def format_previous_scenes_section(context: GraphContext, config: FormatterConfig) -> str | None:
    """Excerpts of the scenes leading up to this one."""
    scenes = _limit(context.previous_scenes, config.policy(SECTION_PREVIOUS_SCENES).max_items)
    if not scenes:
        return None

    lines = ["## Previous Scene Context"]
    for scene in scenes:
        chapter_note = "" if scene.is_current_chapter else f" ({scene.chapter_title})"
        lines.append(f"### {scene.title or 'Previous Scene'}{chapter_note}")
        lines.append(scene.excerpt)
        lines.append("")
    return "\n".join(lines).strip()


def format_chapter_summaries_section(
    context: GraphContext, config: FormatterConfig
) -> str | None:
    """Summaries of the most recent chapters before the current one."""
    summaries = [ch for ch in context.chapter_summaries if ch.summary]
    if context.chapter is not None:
        current_index = context.chapter.order_index
        summaries = [ch for ch in summaries if ch.order_index < current_index]
    summaries = [ch for ch in summaries if ch.id != context.current_chapter_id]
    summaries.sort(key=lambda ch: ch.order_index)

    max_items = config.policy(SECTION_CHAPTER_SUMMARIES).max_items
    if max_items is not None:
        summaries = summaries[-max_items:] if max_items > 0 else []
    if not summaries:
        return None

    lines = ["## Previous Chapter Summaries"]
    for chapter in summaries:
        lines.append(f"### {chapter.title}")
        lines.append(chapter.summary or "")
        lines.append("")
    return "\n".join(lines).strip()


_SectionRenderer = Callable[["GraphContext", FormatterConfig], "str | None"]

_RENDERERS: dict[str, _SectionRenderer] = {
    SECTION_WORLD: format_world_section,
    SECTION_BOOK: format_book_section,
    SECTION_STYLE: format_style_section,
    SECTION_CHAPTER: format_chapter_section,
    SECTION_CHARACTERS: format_characters_section,
    SECTION_RELATIONSHIPS: format_relationships_section,
    SECTION_LOCATION: format_location_section,
    SECTION_FACTIONS: format_factions_section,
    SECTION_EVENTS: format_events_section,
    SECTION_PREVIOUS_SCENES: format_previous_scenes_section,
    SECTION_CHAPTER_SUMMARIES: format_chapter_summaries_section,
}


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


def apply_budget(sections: list[PromptSection], max_chars: int) -> list[PromptSection]:
    """Keep sections in order until *max_chars* is spent.

    The first section is always kept. The section that overflows the budget
    is truncated if enough room remains to be useful; everything after it
    is dropped.

    Args:
        sections: Rendered sections in priority order.
        max_chars: Budget for the joined text (including separators).

    Returns:
        The sections that fit.
    """
    kept: list[PromptSection] = []
    used = 0

    for index, section in enumerate(sections):
        separator = 2 if kept else 0
        if index == 0 or used + separator + len(section.text) <= max_chars:
            kept.append(section)
            used += separator + len(section.text)
            continue

        remaining = max_chars - used - separator
        if remaining >= _MIN_TRUNCATED_SECTION:
            kept.append(PromptSection(section.name, truncate_summary(section.text, remaining)))
        dropped = [s.name for s in sections[len(kept) :]]
        log.info(
            "context_sections_dropped",
            budget=max_chars,
            truncated=section.name if remaining >= _MIN_TRUNCATED_SECTION else None,
            dropped=dropped,
        )
        break

    return kept


def format_sections(
    context: GraphContext,
    config: FormatterConfig | None = None,
) -> list[PromptSection]:
    """Render every non-empty section in the fixed section order.

    Args:
        context: Assembled scene context.
        config: Section limits. Uses defaults if None.

    Returns:
        Rendered sections, empty ones omitted.
    """
    cfg = config or FormatterConfig()
    sections: list[PromptSection] = []

    for name in SECTION_ORDER:
        text = _RENDERERS[name](context, cfg)
        if not text:
            continue
        max_chars = cfg.policy(name).max_chars
        if max_chars is not None:
            text = truncate_summary(text, max_chars)
            if not text:
                continue
        sections.append(PromptSection(name, text))

    if cfg.max_chars is not None:
        sections = apply_budget(sections, cfg.max_chars)
    return sections


def format_context_for_prompt(
    context: GraphContext,
    config: FormatterConfig | None = None,
) -> str:
    """Render the context brief as a single string of blank-line separated sections."""
    return "\n\n".join(section.text for section in format_sections(context, config))
