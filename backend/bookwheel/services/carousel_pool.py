"""
Working pool of books on the carousel wheel.

The pool is a bounded, ordered set of book IDs drawn from the available
candidates (series-collapsed, filtered catalog minus not-interested books).
It is kept topped up with books the user has not landed on yet so the wheel
never stalls or repeats too soon.
"""
from typing import List, Dict, Optional, AbstractSet
import enum
import logging
import random

from bookwheel.schemas.book import Book
from bookwheel.services.weighted_selection import select_weighted_books
from bookwheel.utils.timing import time_operation

logger = logging.getLogger(__name__)

CAROUSEL_MAX_SIZE = 15


class PoolState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    POPULATED = "populated"


class CarouselPool:
    """
    Owns the pool IDs and re-balances them whenever its inputs change.

    Call update() with the current available books, the seen IDs and the
    popularity bias every time any of them changes; it prunes, resamples or
    replenishes as needed. Members always resolve against the latest
    available books, so stale Book objects are never handed out.
    """

    def __init__(self, capacity: int = CAROUSEL_MAX_SIZE, rng: Optional[random.Random] = None):
        if capacity < 1:
            raise ValueError(f"Pool capacity must be at least 1 (got {capacity})")
        self.capacity = capacity
        self.state = PoolState.UNINITIALIZED
        self._rng = rng or random.Random()
        self._pool_ids: List[str] = []
        self._available: List[Book] = []
        self._available_by_id: Dict[str, Book] = {}
        self._seen_ids: AbstractSet[str] = frozenset()
        self._bias = 0.0

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def pool(self) -> List[Book]:
        return [self._available_by_id[i] for i in self._pool_ids if i in self._available_by_id]

    @property
    def pool_ids(self) -> List[str]:
        return list(self._pool_ids)

    @property
    def popularity_bias(self) -> float:
        return self._bias

    @property
    def fresh_count(self) -> int:
        """Pool members the user has not landed on yet."""
        return sum(1 for i in self._pool_ids if i not in self._seen_ids)

    def __len__(self) -> int:
        return len(self._pool_ids)

    def __contains__(self, book_id: str) -> bool:
        return book_id in self._pool_ids

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def update(
        self,
        available: List[Book],
        seen_ids: AbstractSet[str] = frozenset(),
        popularity_bias: float = 0.0,
    ) -> None:
        """Apply new inputs: prune stale members, then populate, resample or replenish."""
        popularity_bias = max(-1.0, min(1.0, popularity_bias))
        bias_changed = popularity_bias != self._bias

        self._available = list(available)
        self._available_by_id = {b.id: b for b in self._available}
        self._seen_ids = frozenset(seen_ids)
        self._bias = popularity_bias

        self._prune()

        if self.state == PoolState.UNINITIALIZED:
            if self._available:
                self.state = PoolState.POPULATED
                logger.debug("Pool populated from %d available books", len(self._available))
                self.refresh()
            return

        if bias_changed:
            logger.info("Popularity bias changed to %.2f, resampling pool", popularity_bias)
            self.refresh()
            return

        self.replenish()

    def _prune(self) -> None:
        before = len(self._pool_ids)
        self._pool_ids = [i for i in self._pool_ids if i in self._available_by_id]
        pruned = before - len(self._pool_ids)
        if pruned:
            logger.debug("Pruned %d pool member(s) no longer available", pruned)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def remove_book(self, book_id: str) -> bool:
        """Drop a book from the pool right away (e.g. marked not interested)."""
        if book_id not in self._pool_ids:
            return False
        self._pool_ids.remove(book_id)
        logger.debug("Removed %s from pool (%d left)", book_id, len(self._pool_ids))
        return True

    def admit(self, book_id: str, evictable: AbstractSet[str] = frozenset()) -> bool:
        """
        Put an available book on the wheel right away.

        When the pool is full the oldest evictable member makes room, else the
        oldest member. Returns False if the book is not available.
        """
        if book_id in self._pool_ids:
            return True
        if book_id not in self._available_by_id:
            return False
        if len(self._pool_ids) >= self.capacity:
            victim = next((i for i in self._pool_ids if i in evictable), self._pool_ids[0])
            self._pool_ids.remove(victim)
            logger.debug("Evicted %s to admit %s", victim, book_id)
        self._pool_ids.append(book_id)
        self.state = PoolState.POPULATED
        return True

    def refresh(self) -> None:
        """Full resample of the pool from every available book."""
        if self.state == PoolState.UNINITIALIZED:
            return
        with time_operation("pool_refresh"):
            chosen = select_weighted_books(
                self._available,
                self.capacity,
                bias=self._bias,
                rng=self._rng,
            )
            self._pool_ids = [b.id for b in chosen]
            self.replenish()

    def replenish(self) -> int:
        """
        Restock the pool when it holds fewer fresh books than its capacity.

        Unseen books outside the pool are drawn first; already-seen members are
        evicted to make room for them. Any slots left over are filled with seen
        books so the wheel stays full. Returns the number of books added.
        """
        if self.state == PoolState.UNINITIALIZED:
            return 0

        fresh = self.fresh_count
        members = set(self._pool_ids)
        outside = [b for b in self._available if b.id not in members]
        if fresh >= self.capacity or not outside:
            return 0

        unseen_outside = [b for b in outside if b.id not in self._seen_ids]
        seen_outside = [b for b in outside if b.id in self._seen_ids]

        room = self.capacity - len(self._pool_ids)
        wanted_fresh = min(self.capacity - fresh, len(unseen_outside))
        self._evict_seen(max(0, wanted_fresh - room))

        added = select_weighted_books(unseen_outside, wanted_fresh, bias=self._bias, rng=self._rng)
        self._pool_ids.extend(b.id for b in added)

        room = self.capacity - len(self._pool_ids)
        if room > 0 and seen_outside:
            filler = select_weighted_books(seen_outside, room, bias=self._bias, rng=self._rng)
            self._pool_ids.extend(b.id for b in filler)
            added = added + filler

        if added:
            logger.debug(
                "Replenished pool with %d book(s): size=%d fresh=%d",
                len(added),
                len(self._pool_ids),
                self.fresh_count,
            )
        return len(added)

    def _evict_seen(self, count: int) -> None:
        """Evict the oldest `count` seen members."""
        if count <= 0:
            return
        evicted = 0
        kept: List[str] = []
        for book_id in self._pool_ids:
            if evicted < count and book_id in self._seen_ids:
                evicted += 1
                continue
            kept.append(book_id)
        self._pool_ids = kept
