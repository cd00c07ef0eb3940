"""Text budgeting primitives for prompt sections.

Character limits are the unit of truncation here; token figures are
estimated from characters so budgets can be expressed either way without a
tokenizer dependency.
"""

from __future__ import annotations

# Approximate chars per token for English prose.
CHARS_PER_TOKEN = 3.5


def estimate_tokens(text: str) -> int:
    """Estimate the token count of *text*."""
    return int(len(text) / CHARS_PER_TOKEN)


def chars_for_tokens(tokens: int) -> int:
    """Convert a token budget into a character budget."""
    return int(tokens * CHARS_PER_TOKEN)


def truncate_text(text: str, max_chars: int, suffix: str = "...") -> str:
    """Cut *text* to its first *max_chars* characters and append *suffix*.

    The suffix is not counted against *max_chars*, so a 150-character
    synopsis limit yields at most 150 characters of synopsis.

    Args:
        text: Text to truncate.
        max_chars: Number of characters to keep.
        suffix: Appended when truncation occurs.

    Returns:
        Truncated text, or original if already within limit.
    """
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + suffix


def tail_excerpt(text: str, max_chars: int, prefix: str = "...") -> str:
    """Keep the last *max_chars* characters of *text*, marking the cut.

    Used for previous-scene prose, where the ending is what the next scene
    has to continue from.
    """
    if len(text) <= max_chars:
        return text
    return prefix + text[-max_chars:]


def truncate_summary(text: str, max_chars: int = 80, suffix: str = "...") -> str:
    """Truncate text to max_chars, preserving word boundaries.

    Unlike :func:`truncate_text`, the suffix counts against the limit.

    Args:
        text: Text to truncate.
        max_chars: Maximum character count (including suffix).
        suffix: Appended when truncation occurs.

    Returns:
        Truncated text, or original if already within limit.
    """
    if len(text) <= max_chars:
        return text
    limit = max_chars - len(suffix)
    if limit <= 0:
        return suffix[:max_chars]
    truncated = text[:limit]
    last_space = truncated.rfind(" ")
    if last_space > limit // 2:
        truncated = truncated[:last_space]
    return truncated.rstrip() + suffix
