"""
Tri-state catalog filters applied before series grouping.

Each category maps values to "include" or "exclude". Within a category,
includes are OR-ed (a book must match at least one) and any matching exclude
rejects the book. Categories are AND-ed.
"""
from typing import Dict, List, Literal
import logging
import re

from pydantic import BaseModel, Field

from bookwheel.schemas.book import Book
from bookwheel.services.weighted_selection import popularity_score

logger = logging.getLogger(__name__)

# Books with no genre at all match this value
UNCATEGORIZED = "__uncategorized__"
POPULAR_THRESHOLD = 10

FilterState = Literal["include", "exclude"]


class BookFilters(BaseModel):
    genre: Dict[str, FilterState] = Field(default_factory=dict)
    author: Dict[str, FilterState] = Field(default_factory=dict)
    narrator: Dict[str, FilterState] = Field(default_factory=dict)
    length: Dict[str, FilterState] = Field(default_factory=dict)
    popularity: Dict[str, FilterState] = Field(default_factory=dict)
    source: Dict[str, FilterState] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not any(getattr(self, name) for name in type(self).model_fields)


EMPTY_FILTERS = BookFilters()

_HOURS_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)")


def length_category(length: str) -> str:
    """Bucket an audio length like "12 hrs and 30 mins" by its leading hour count."""
    match = _HOURS_RE.match(length)
    hours = float(match.group(1)) if match else 0.0
    if hours < 10:
        return "Short"
    if hours < 20:
        return "Medium"
    if hours < 40:
        return "Long"
    return "Epic"


def book_values(book: Book, category: str) -> List[str]:
    """The book's value(s) for a filter category."""
    if category == "genre":
        return list(book.genres) if book.genres else [UNCATEGORIZED]
    if category == "author":
        return [book.author] if book.author else []
    if category == "narrator":
        return [book.narrator] if book.narrator else []
    if category == "length":
        return [length_category(book.length)] if book.length else []
    if category == "popularity":
        return ["popular"] if popularity_score(book) > POPULAR_THRESHOLD else ["niche"]
    if category == "source":
        return [book.source.value] if book.source else []
    return []


def _filter_values(category_filters: Dict[str, str], state: str) -> List[str]:
    return [value for value, s in category_filters.items() if s == state]


def matches_filters(book: Book, filters: BookFilters) -> bool:
    for category in type(filters).model_fields:
        category_filters = getattr(filters, category)
        includes = _filter_values(category_filters, "include")
        excludes = _filter_values(category_filters, "exclude")
        if not includes and not excludes:
            continue

        values = book_values(book, category)
        if includes and not any(v in includes for v in values):
            return False
        if excludes and any(v in excludes for v in values):
            return False
    return True


def apply_filters(books: List[Book], filters: BookFilters) -> List[Book]:
    if filters.is_empty:
        return list(books)
    filtered = [b for b in books if matches_filters(b, filters)]
    logger.debug("Filters kept %d of %d books", len(filtered), len(books))
    return filtered
