"""
Weighted-random selection of carousel books.

Factors (additive on a base of 100, floored at 1):
- Lower impressions = higher weight (fresher books get shown more)
- Higher wishlist/clicks = higher weight (engagement signals quality)
- Recently added = bonus weight
- Higher rating = bonus weight
- Already wishlisted by the user = 0 weight (excluded)

The optional popularity bias multiplies the additive weight by a rank decay,
see select_weighted_books.
"""
from typing import List, Optional, Iterable, AbstractSet, Sequence
import logging
import random

from bookwheel.schemas.book import Book
from bookwheel.utils.timing import days_since

logger = logging.getLogger(__name__)

BASE_WEIGHT = 100.0
MIN_WEIGHT = 1.0
IMPRESSION_PENALTY_MAX = 50.0
ENGAGEMENT_MULTIPLIER = 5
ENGAGEMENT_BONUS_CAP = 30.0
RECENCY_WINDOW_DAYS = 30
RECENCY_BONUS_MAX = 20.0
RATING_BONUS_HIGH = 15.0  # rating >= 4.5
RATING_BONUS_GOOD = 10.0  # rating >= 4.0

# Decay base per rank step at full bias: (1 - |bias| * 0.5) ** rank
BIAS_DECAY_FACTOR = 0.5


def popularity_score(book: Book) -> int:
    return book.wishlist_count + book.click_through_count


def max_impressions_in(books: Iterable[Book]) -> int:
    """Normalization denominator for the impression penalty (never below 1)."""
    return max((b.impression_count for b in books), default=0) or 1


def calculate_book_weight(
    book: Book,
    exclusion_set: AbstractSet[str],
    max_impressions: int,
    now_ms: Optional[float] = None,
) -> float:
    """Sampling weight for one book; 0 only when the book is excluded."""
    if book.id in exclusion_set:
        return 0.0

    weight = BASE_WEIGHT

    # Impression penalty, normalized by the candidate set's max impressions
    impression_ratio = book.impression_count / max_impressions if max_impressions > 0 else 0.0
    weight -= impression_ratio * IMPRESSION_PENALTY_MAX

    # Engagement bonus
    engagement = book.wishlist_count * 2 + book.click_through_count
    weight += min(engagement * ENGAGEMENT_MULTIPLIER, ENGAGEMENT_BONUS_CAP)

    # Recency bonus (added in the last 30 days, decays linearly)
    age_days = days_since(book.added_at, now_ms)
    if age_days < RECENCY_WINDOW_DAYS:
        weight += RECENCY_BONUS_MAX * (1 - age_days / RECENCY_WINDOW_DAYS)

    # Rating bonus
    if book.rating >= 4.5:
        weight += RATING_BONUS_HIGH
    elif book.rating >= 4.0:
        weight += RATING_BONUS_GOOD

    return max(weight, MIN_WEIGHT)


def _draw_index(weights: Sequence[float], rng: random.Random) -> int:
    """Index of the first cumulative weight that meets or exceeds U(0, total)."""
    total = sum(weights)
    draw = rng.uniform(0, total)
    cumulative = 0.0
    for idx, w in enumerate(weights):
        cumulative += w
        if w > 0 and cumulative >= draw:
            return idx
    # Floating-point shortfall: last positive weight
    return max(i for i, w in enumerate(weights) if w > 0)


def select_weighted_random(
    books: List[Book],
    exclusion_set: AbstractSet[str] = frozenset(),
    rng: Optional[random.Random] = None,
    now_ms: Optional[float] = None,
) -> Optional[Book]:
    """
    Select one book using weighted probability.

    Returns None only for an empty list. If every book is excluded, falls back to
    a uniform pick over the whole list so the wheel always has a landing spot.
    """
    if not books:
        return None
    rng = rng or random.Random()

    max_impressions = max_impressions_in(books)
    weights = [calculate_book_weight(b, exclusion_set, max_impressions, now_ms) for b in books]

    if not any(w > 0 for w in weights):
        logger.debug("All %d candidates excluded, falling back to uniform pick", len(books))
        return rng.choice(books)

    return books[_draw_index(weights, rng)]


def _bias_decay(bias: float) -> float:
    return 1 - abs(bias) * BIAS_DECAY_FACTOR


def select_weighted_books(
    books: List[Book],
    count: int,
    exclusion_set: AbstractSet[str] = frozenset(),
    bias: float = 0.0,
    rng: Optional[random.Random] = None,
    now_ms: Optional[float] = None,
) -> List[Book]:
    """
    Draw up to `count` distinct books, weighted, without replacement.

    bias in [-1, 1] ranks candidates by popularity (descending for bias > 0,
    ascending for bias < 0) and multiplies the additive weight of the book at
    rank r among the remaining candidates by (1 - |bias| / 2) ** r. A bias of 0
    leaves the additive weights untouched. Excluded books are never drawn.
    """
    rng = rng or random.Random()
    bias = max(-1.0, min(1.0, bias))

    max_impressions = max_impressions_in(books)
    pairs = [
        (book, calculate_book_weight(book, exclusion_set, max_impressions, now_ms))
        for book in books
    ]
    remaining = [(book, w) for book, w in pairs if w > 0]

    if count <= 0 or not remaining:
        return []

    if bias != 0:
        remaining.sort(key=lambda p: popularity_score(p[0]), reverse=bias > 0)
    decay = _bias_decay(bias)

    selected: List[Book] = []
    while len(selected) < count and remaining:
        weights = [w * (decay ** rank) for rank, (_, w) in enumerate(remaining)]
        idx = _draw_index(weights, rng)
        selected.append(remaining.pop(idx)[0])

    return selected


def find_book_index(books: List[Book], book_id: str) -> int:
    """Position of a book in a list by id, -1 when absent."""
    for idx, book in enumerate(books):
        if book.id == book_id:
            return idx
    return -1
