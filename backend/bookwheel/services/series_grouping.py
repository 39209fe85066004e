"""
Series collapse for the carousel.

A series with several books is shown on the wheel as one representative entry;
the full membership stays reachable for the drill-down tooltip.
"""
from typing import List, Dict, Optional
from dataclasses import dataclass, field
import logging

from bookwheel.schemas.book import Book

logger = logging.getLogger(__name__)

SERIES_MODE_FIRST = "first"
SERIES_MODE_LATEST = "latest"


@dataclass
class SeriesGroupResult:
    """Books to display (one per series + standalones) and the full series lookup."""
    visible_books: List[Book] = field(default_factory=list)
    # Normalized series name -> all books in the series, sorted by position
    series_index: Dict[str, List[Book]] = field(default_factory=dict)


def normalize_series_name(series: str) -> str:
    """Normalize series name for grouping (case-insensitive comparison)."""
    return series.strip().lower()


def _series_key(book: Book) -> Optional[str]:
    if not book.series or not book.series.strip():
        return None
    return normalize_series_name(book.series)


def _sort_series(series_books: List[Book]) -> List[Book]:
    """
    Sort by series_position ascending (missing positions last), then by added_at.

    A repeated non-null position is a catalog data problem: it is logged and the
    added_at tiebreak decides.
    """
    ordered = sorted(
        series_books,
        key=lambda b: (
            b.series_position is None,
            b.series_position if b.series_position is not None else 0,
            b.added_at or 0,
        ),
    )

    for prev, curr in zip(ordered, ordered[1:]):
        if prev.series_position is not None and prev.series_position == curr.series_position:
            logger.warning(
                'Duplicate series position %s in series "%s": "%s" vs "%s"',
                curr.series_position,
                curr.series,
                prev.title,
                curr.title,
            )
    return ordered


def _pick_representative(series_books: List[Book], mode: str) -> Book:
    if mode == SERIES_MODE_FIRST:
        return series_books[0]
    # Highest known position; books without a position sort last and are skipped
    positioned = [b for b in series_books if b.series_position is not None]
    return positioned[-1] if positioned else series_books[-1]


def group_books_by_series(books: List[Book], mode: str = SERIES_MODE_FIRST) -> SeriesGroupResult:
    """
    Group books by series and return the visible books for the carousel.

    - Books with no series (standalone) are always visible, in input order
    - For each series exactly one book is visible: the lowest-numbered one
      (mode="first") or the highest-numbered one (mode="latest")
    - series_index holds every book of every series for drill-down

    Pure function: the same input always yields the same output.
    """
    if mode not in (SERIES_MODE_FIRST, SERIES_MODE_LATEST):
        raise ValueError(f"Unknown series mode: {mode!r}")

    standalone_books: List[Book] = []
    grouped: Dict[str, List[Book]] = {}

    for book in books:
        key = _series_key(book)
        if key is None:
            standalone_books.append(book)
            continue
        grouped.setdefault(key, []).append(book)

    series_index = {key: _sort_series(members) for key, members in grouped.items()}

    visible_books = list(standalone_books)
    for members in series_index.values():
        if members:
            visible_books.append(_pick_representative(members, mode))

    return SeriesGroupResult(visible_books=visible_books, series_index=series_index)


def get_series_books(series_index: Dict[str, List[Book]], book: Book) -> List[Book]:
    """All books in the given book's series, or [] for standalones and unknown series."""
    key = _series_key(book)
    if key is None:
        return []
    return series_index.get(key, [])


def series_has_multiple_books(series_index: Dict[str, List[Book]], book: Book) -> bool:
    """Check if a series has multiple books (drill-down should be offered)."""
    return len(get_series_books(series_index, book)) > 1
