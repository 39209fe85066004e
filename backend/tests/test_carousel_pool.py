"""Tests for the carousel working pool."""
import pytest
from bookwheel.services.carousel_pool import CarouselPool, PoolState, CAROUSEL_MAX_SIZE


@pytest.fixture
def catalog(book_factory):
    return [book_factory(id=f"b{i:02d}") for i in range(20)]


@pytest.fixture
def pool(rng) -> CarouselPool:
    return CarouselPool(capacity=CAROUSEL_MAX_SIZE, rng=rng)


def test_pool_stays_uninitialized_without_books(pool):
    pool.update([])
    assert pool.state == PoolState.UNINITIALIZED
    assert pool.pool == []

    pool.refresh()
    assert pool.pool == []


def test_first_update_populates_to_capacity(pool, catalog):
    pool.update(catalog)

    assert pool.state == PoolState.POPULATED
    assert len(pool.pool) == 15
    assert len(set(pool.pool_ids)) == 15
    assert set(pool.pool_ids) <= {b.id for b in catalog}


def test_pool_holds_everything_when_under_capacity(pool, book_factory):
    books = [book_factory(id=f"s{i}") for i in range(6)]

    pool.update(books)

    assert sorted(pool.pool_ids) == [f"s{i}" for i in range(6)]


def test_refresh_fills_to_capacity(pool, catalog):
    pool.update(catalog)
    pool.refresh()
    assert len(pool.pool) == 15


def test_replenishment_restores_fresh_books(pool, catalog):
    """20 available, 10 seen: fresh count comes back to min(15, unseen) = 10."""
    pool.update(catalog)
    seen = set(pool.pool_ids[:10])

    pool.update(catalog, seen_ids=seen)

    assert len(pool.pool) == 15
    assert pool.fresh_count == 10
    unseen = {b.id for b in catalog} - seen
    assert unseen <= set(pool.pool_ids)


def test_replenishment_prefers_unseen_books_up_to_capacity(pool, book_factory):
    books = [book_factory(id=f"b{i:02d}") for i in range(40)]
    pool.update(books)
    seen = set(pool.pool_ids[:5])

    pool.update(books, seen_ids=seen)

    assert len(pool.pool) == 15
    assert pool.fresh_count == 15


def test_no_replenishment_when_nothing_outside_pool(pool, book_factory):
    books = [book_factory(id=f"b{i}") for i in range(10)]
    pool.update(books)
    before = pool.pool_ids

    pool.update(books, seen_ids={b.id for b in books})

    assert pool.pool_ids == before


def test_remove_book_is_immediate(pool, catalog):
    pool.update(catalog)
    victim = pool.pool_ids[3]

    assert pool.remove_book(victim) is True

    assert victim not in pool
    assert len(pool.pool) == 14
    assert pool.remove_book(victim) is False


def test_catalog_shrink_prunes_and_refills(pool, catalog):
    pool.update(catalog)
    gone = pool.pool_ids[0]

    remaining = [b for b in catalog if b.id != gone]
    pool.update(remaining)

    assert gone not in pool
    assert len(pool.pool) == 15


def test_catalog_shrink_can_leave_pool_under_capacity(pool, catalog):
    pool.update(catalog)

    remaining = [b for b in catalog if b.id in set(pool.pool_ids[:8])]
    pool.update(remaining)

    assert len(pool.pool) == 8
    assert pool.state == PoolState.POPULATED


def test_pool_returns_latest_book_objects(pool, catalog):
    pool.update(catalog)
    member = pool.pool_ids[0]

    updated = [b.model_copy(update={"title": "Renamed"}) if b.id == member else b for b in catalog]
    pool.update(updated)

    book = next(b for b in pool.pool if b.id == member)
    assert book.title == "Renamed"


def test_bias_change_triggers_full_resample(pool, book_factory, monkeypatch):
    books = [book_factory(id=f"b{i:02d}") for i in range(40)]
    pool.update(books)

    calls = []
    original = pool.refresh
    monkeypatch.setattr(pool, "refresh", lambda: (calls.append(1), original())[1])

    pool.update(books, popularity_bias=0.0)
    assert calls == []

    pool.update(books, popularity_bias=0.8)
    assert calls == [1]
    assert pool.popularity_bias == 0.8
    assert len(pool.pool) == 15


def test_bias_is_clamped(pool, catalog):
    pool.update(catalog, popularity_bias=3.0)
    assert pool.popularity_bias == 1.0


def test_pool_never_exceeds_capacity(rng, book_factory):
    pool = CarouselPool(capacity=5, rng=rng)
    books = [book_factory(id=f"b{i}") for i in range(12)]
    seen = set()

    for step in range(12):
        pool.update(books, seen_ids=seen)
        assert len(pool.pool) <= 5
        seen.add(pool.pool_ids[0])


def test_invalid_capacity_rejected():
    with pytest.raises(ValueError):
        CarouselPool(capacity=0)


def test_admit_replaces_oldest_evictable_member(pool, catalog):
    pool.update(catalog)
    outsider = next(b.id for b in catalog if b.id not in pool)
    oldest, newer = pool.pool_ids[3], pool.pool_ids[4]

    assert pool.admit(outsider, evictable={oldest, newer}) is True

    assert outsider in pool
    assert len(pool.pool) == 15
    assert oldest not in pool
    assert newer in pool


def test_admit_rejects_unavailable_book(pool, catalog):
    pool.update(catalog)
    assert pool.admit("not-in-catalog") is False
    assert len(pool.pool) == 15
