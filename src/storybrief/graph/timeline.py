"""Series timeline for resolving relationship validity windows.

A relationship may be bounded to a span of books: it starts being true in
one book and stops being true after another. Bounds are book ids; the
timeline maps them to series positions so a window can be checked against
the book currently being written.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol


class _BookLike(Protocol):
    id: str
    title: str
    sort_order: int


@dataclass(frozen=True)
class BookTimeline:
    """Book id to (title, series position) lookup for one project.

    Attributes:
        positions: Book id -> 0-based series position.
        titles: Book id -> display title.
    """

    positions: dict[str, int] = field(default_factory=dict)
    titles: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_books(cls, books: Iterable[_BookLike]) -> BookTimeline:
        """Build a timeline from book records or book contexts."""
        positions: dict[str, int] = {}
        titles: dict[str, str] = {}
        for book in books:
            positions[book.id] = book.sort_order
            titles[book.id] = book.title
        return cls(positions=positions, titles=titles)

    def position_of(self, book_id: str | None) -> int | None:
        """Series position of *book_id*, or None if unset or unknown."""
        if book_id is None:
            return None
        return self.positions.get(book_id)

    def title_of(self, book_id: str | None) -> str | None:
        """Display title of *book_id*, or None if unset or unknown."""
        if book_id is None:
            return None
        return self.titles.get(book_id)

    def window_contains(
        self,
        valid_from_book_id: str | None,
        valid_until_book_id: str | None,
        current_book_id: str,
    ) -> bool:
        """Check whether the current book falls inside a validity window.

        Both bounds are inclusive. An unset bound, or a bound naming a book
        that is not part of this series, leaves that side of the window open.
        When the current book itself is unknown only windowless
        relationships are considered valid.

        Args:
            valid_from_book_id: Book in which the relationship begins.
            valid_until_book_id: Last book in which the relationship holds.
            current_book_id: Book being written.

        Returns:
            True if the relationship holds in the current book.
        """
        start = self.position_of(valid_from_book_id)
        end = self.position_of(valid_until_book_id)
        if start is None and end is None:
            return True

        current = self.position_of(current_book_id)
        if current is None:
            return False
        if start is not None and current < start:
            return False
        return not (end is not None and current > end)
