"""
Recommendation carousel engine.

Wires the pieces together for one carousel:
catalog -> filters -> series collapse -> minus not-interested -> pool
-> weighted target -> spin -> landed event -> history (seen) -> pool again.

Everything is recomputed synchronously when an input changes. Each engine owns
its own pool and spin controller; nothing is shared between carousels.
"""
from typing import Callable, Dict, List, Optional, Any, Union
from dataclasses import dataclass, field
import logging
import random

from bookwheel.schemas.book import Book
from bookwheel.services.catalog_filters import BookFilters, EMPTY_FILTERS, apply_filters
from bookwheel.services.catalog_sync import merge_books
from bookwheel.services.carousel_pool import CarouselPool, CAROUSEL_MAX_SIZE
from bookwheel.services.carousel_spin import (
    SpinController,
    SpinPlan,
    SpinState,
    DEFAULT_SPIN_DURATION_MS,
    SELECTION_ANGLE,
)
from bookwheel.services.series_grouping import (
    SeriesGroupResult,
    SERIES_MODE_FIRST,
    group_books_by_series,
    get_series_books,
    series_has_multiple_books,
)
from bookwheel.services.tick_scheduler import TickScheduler, SteppedTickScheduler
from bookwheel.services.user_state import (
    StateRepository,
    InMemoryStateRepository,
    IdSetStore,
    HistoryStore,
    WISHLIST_KEY,
    NOT_INTERESTED_KEY,
    HISTORY_KEY,
    MAX_HISTORY_SIZE,
)
from bookwheel.services.weighted_selection import select_weighted_random, find_book_index

logger = logging.getLogger(__name__)

EVENT_SPIN_STARTED = "carousel_spin_started"
EVENT_BOOK_LANDED = "carousel_book_landed"
EVENT_BOOK_DISMISSED = "carousel_book_dismissed"
EVENT_SPIN_VOIDED = "carousel_spin_voided"


class BookNotInPoolError(LookupError):
    """Raised when asked to spin to a book that is not on the wheel."""
    pass


@dataclass
class CarouselEvent:
    name: str
    book: Optional[Book] = None
    properties: Dict[str, Any] = field(default_factory=dict)


CarouselListener = Callable[[CarouselEvent], None]


class CarouselEngine:
    def __init__(
        self,
        books: Optional[List[Book]] = None,
        state: Optional[StateRepository] = None,
        scheduler: Optional[TickScheduler] = None,
        capacity: int = CAROUSEL_MAX_SIZE,
        series_mode: str = SERIES_MODE_FIRST,
        popularity_bias: float = 0.0,
        filters: Optional[BookFilters] = None,
        spin_duration_ms: float = DEFAULT_SPIN_DURATION_MS,
        selection_angle: float = SELECTION_ANGLE,
        history_max_size: int = MAX_HISTORY_SIZE,
        rng: Optional[random.Random] = None,
    ):
        self.state = state if state is not None else InMemoryStateRepository()
        self.wishlist = IdSetStore(self.state, WISHLIST_KEY)
        self.not_interested = IdSetStore(self.state, NOT_INTERESTED_KEY)
        self.history = HistoryStore(self.state, HISTORY_KEY, max_size=history_max_size)

        self.series_mode = series_mode
        self.filters = filters or EMPTY_FILTERS
        self.popularity_bias = max(-1.0, min(1.0, popularity_bias))
        self._rng = rng or random.Random()

        self.pool_manager = CarouselPool(capacity=capacity, rng=self._rng)
        self.spin_controller = SpinController(
            item_count=0,
            scheduler=scheduler or SteppedTickScheduler(),
            spin_duration_ms=spin_duration_ms,
            selection_angle=selection_angle,
            on_spin_complete=self._handle_spin_complete,
            rng=self._rng,
        )

        self._listeners: List[CarouselListener] = []
        self._catalog: List[Book] = []
        self._catalog_by_id: Dict[str, Book] = {}
        self.grouping = SeriesGroupResult()
        self.available_books: List[Book] = []
        # Wheel contents frozen from spin start until the next spin or reset
        self._spin_books: List[Book] = []
        self.landed_book: Optional[Book] = None

        self.set_catalog(books or [])

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    @property
    def catalog(self) -> List[Book]:
        return list(self._catalog)

    @property
    def visible_books(self) -> List[Book]:
        return list(self.grouping.visible_books)

    @property
    def pool(self) -> List[Book]:
        return self.pool_manager.pool

    @property
    def wheel_books(self) -> List[Book]:
        """
        What the wheel shows: the books of the last spin until the next one
        starts (so the landed card stays under the pointer), else the pool.
        """
        if self._spin_books:
            return list(self._spin_books)
        return self.pool

    @property
    def spin_state(self) -> SpinState:
        return self.spin_controller.state

    @property
    def fresh_count(self) -> int:
        return self.pool_manager.fresh_count

    def get_book(self, book_id: str) -> Optional[Book]:
        return self._catalog_by_id.get(book_id)

    def series_members(self, book: Union[Book, str]) -> List[Book]:
        book = self._resolve(book)
        return get_series_books(self.grouping.series_index, book) if book else []

    def has_multiple_books(self, book: Union[Book, str]) -> bool:
        book = self._resolve(book)
        return series_has_multiple_books(self.grouping.series_index, book) if book else False

    def _resolve(self, book: Union[Book, str]) -> Optional[Book]:
        if isinstance(book, Book):
            return book
        return self.get_book(book)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, listener: CarouselListener) -> Callable[[], None]:
        """Register an observer; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, name: str, book: Optional[Book] = None, **properties: Any) -> None:
        if book is not None:
            properties.setdefault("book_id", book.id)
        event = CarouselEvent(name=name, book=book, properties=properties)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                # An observer must never break the wheel
                logger.exception("Carousel listener failed on %s", name)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def set_catalog(self, books: List[Book]) -> None:
        self._catalog = list(books)
        self._catalog_by_id = {b.id: b for b in self._catalog}
        self._recompute()

    def apply_catalog_delta(self, books: List[Book]) -> None:
        """Merge new or updated books from an incremental fetch."""
        if books:
            self.set_catalog(merge_books(self._catalog, books))

    def remove_from_catalog(self, book_ids: List[str]) -> None:
        ids = set(book_ids)
        self.set_catalog([b for b in self._catalog if b.id not in ids])

    def set_filters(self, filters: BookFilters) -> None:
        self.filters = filters
        self._recompute()

    def set_series_mode(self, mode: str) -> None:
        self.series_mode = mode
        self._recompute()

    def set_popularity_bias(self, bias: float) -> None:
        self.popularity_bias = max(-1.0, min(1.0, bias))
        self._update_pool()

    def mark_not_interested(self, book_id: str) -> None:
        """Dismiss a book: it leaves the wheel now and is never offered again."""
        self.not_interested.add(book_id)
        self.pool_manager.remove_book(book_id)
        self._recompute()
        self._emit(EVENT_BOOK_DISMISSED, self.get_book(book_id), reason="not_interested")

    def unmark_not_interested(self, book_id: str) -> None:
        if self.not_interested.remove(book_id):
            self._recompute()

    def add_to_wishlist(self, book_id: str) -> None:
        self.wishlist.add(book_id)

    def remove_from_wishlist(self, book_id: str) -> None:
        self.wishlist.remove(book_id)

    def refresh(self) -> None:
        self.pool_manager.refresh()
        self._sync_wheel_size()

    def _recompute(self) -> None:
        filtered = apply_filters(self._catalog, self.filters)
        self.grouping = group_books_by_series(filtered, self.series_mode)
        excluded = self.not_interested.as_set()
        self.available_books = [b for b in self.grouping.visible_books if b.id not in excluded]
        self._update_pool()

    def _update_pool(self) -> None:
        self.pool_manager.update(
            self.available_books,
            seen_ids=self.history.seen_ids(),
            popularity_bias=self.popularity_bias,
        )
        self._sync_wheel_size()

    def _sync_wheel_size(self) -> None:
        if not self.spin_controller.spinning:
            self.spin_controller.set_item_count(len(self.pool_manager))

    # ------------------------------------------------------------------
    # Spinning
    # ------------------------------------------------------------------

    def select_target(self) -> Optional[Book]:
        """
        Weighted pick from the wheel, skipping wishlisted books when possible.

        If every wheel book is wishlisted but a non-wishlisted candidate exists
        off the wheel, that candidate is drawn and admitted to the pool in place
        of a wishlisted member.
        """
        wishlist = self.wishlist.as_set()
        wheel = self.pool
        if any(b.id not in wishlist for b in wheel):
            return select_weighted_random(wheel, wishlist, rng=self._rng)

        outside = [
            b for b in self.available_books
            if b.id not in wishlist and b.id not in self.pool_manager
        ]
        if outside:
            target = select_weighted_random(outside, wishlist, rng=self._rng)
            self.pool_manager.admit(target.id, evictable=wishlist)
            self._sync_wheel_size()
            logger.debug("Wheel fully wishlisted, admitted %s from the candidate list", target.id)
            return target

        return select_weighted_random(wheel, wishlist, rng=self._rng)

    def spin(self) -> Optional[SpinPlan]:
        """Pick a weighted target and spin to it. None when empty or already spinning."""
        if self.spin_controller.spinning:
            logger.debug("Spin ignored: wheel already spinning")
            return None
        target = self.select_target()
        if target is None:
            return None
        return self.start_spin(target)

    def start_spin(self, book: Union[Book, str]) -> Optional[SpinPlan]:
        """Spin to a specific wheel book. None when a spin is already running."""
        if self.spin_controller.spinning:
            logger.debug("Spin ignored: wheel already spinning")
            return None

        book_id = book.id if isinstance(book, Book) else book
        wheel = self.pool
        index = find_book_index(wheel, book_id)
        if index < 0:
            raise BookNotInPoolError(f"Book {book_id} is not on the wheel")

        self._spin_books = wheel
        self.landed_book = None
        self.spin_controller.set_item_count(len(wheel))
        plan = self.spin_controller.start_spin(index)
        if plan is not None:
            self._emit(
                EVENT_SPIN_STARTED,
                wheel[index],
                target_index=index,
                total_rotation=round(plan.total_rotation, 3),
            )
        return plan

    def _unavailable_reason(self, book_id: str) -> Optional[str]:
        if book_id not in self._catalog_by_id:
            return "removed_from_catalog"
        if self.not_interested.contains(book_id):
            return "not_interested"
        if all(b.id != book_id for b in self.available_books):
            return "filtered_out"
        return None

    def _handle_spin_complete(self, target_index: int) -> None:
        book_id = self._spin_books[target_index].id

        # The target may have gone away while the wheel was turning
        reason = self._unavailable_reason(book_id)
        if reason is not None:
            self.landed_book = None
            self._spin_books = []
            logger.info("Spin on %s voided: %s", book_id, reason)
            self._update_pool()
            self._emit(EVENT_SPIN_VOIDED, book_id=book_id, target_index=target_index, reason=reason)
            return

        book = self._catalog_by_id[book_id]
        self._spin_books[target_index] = book
        self.landed_book = book
        self.history.add(book.id)
        logger.debug("Landed on %s at index %d", book.id, target_index)
        self._update_pool()
        self._emit(EVENT_BOOK_LANDED, book, target_index=target_index)

    def reset(self) -> None:
        self.spin_controller.reset()
        self._spin_books = []
        self.landed_book = None
        self._sync_wheel_size()

    def dispose(self) -> None:
        """Carousel dismissed: cancel the animation and drop observers."""
        self.spin_controller.dispose()
        self._spin_books = []
        self._listeners.clear()
