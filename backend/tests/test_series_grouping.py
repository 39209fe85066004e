"""Tests for series collapse and drill-down lookups."""
import logging
import pytest
from bookwheel.services.series_grouping import (
    group_books_by_series,
    get_series_books,
    series_has_multiple_books,
    normalize_series_name,
)


def test_standalone_books_are_all_visible(book_factory):
    """Books without a series are always visible, in input order."""
    books = [book_factory(id="1"), book_factory(id="2", series="   ")]

    result = group_books_by_series(books)

    assert [b.id for b in result.visible_books] == ["1", "2"]
    assert result.series_index == {}


def test_only_first_book_of_series_visible(book_factory):
    """A multi-book series contributes only its lowest-position book."""
    books = [
        book_factory(id="b2", series="Cradle", series_position=2),
        book_factory(id="b1", series="Cradle", series_position=1),
        book_factory(id="b3", series="Cradle", series_position=3),
        book_factory(id="solo"),
    ]

    result = group_books_by_series(books)

    assert [b.id for b in result.visible_books] == ["solo", "b1"]
    assert [b.id for b in result.series_index["cradle"]] == ["b1", "b2", "b3"]


def test_latest_mode_picks_highest_position(book_factory):
    books = [
        book_factory(id="b1", series="Cradle", series_position=1),
        book_factory(id="b3", series="Cradle", series_position=3),
        book_factory(id="bx", series="Cradle", series_position=None),
    ]

    result = group_books_by_series(books, mode="latest")

    assert [b.id for b in result.visible_books] == ["b3"]


def test_series_without_first_book_shows_lowest_position(book_factory):
    """Series "Epic" with positions [2, 3, 5] shows only the position-2 book."""
    books = [
        book_factory(id="e5", series="Epic", series_position=5),
        book_factory(id="e2", series="Epic", series_position=2),
        book_factory(id="e3", series="Epic", series_position=3),
    ]

    result = group_books_by_series(books)

    assert [b.id for b in result.visible_books] == ["e2"]


def test_series_names_group_case_insensitively(book_factory):
    books = [
        book_factory(id="a", series="The Wandering Inn", series_position=1),
        book_factory(id="b", series="the wandering inn ", series_position=2),
    ]

    result = group_books_by_series(books)

    assert len(result.visible_books) == 1
    assert list(result.series_index) == [normalize_series_name("The Wandering Inn")]


def test_missing_positions_sort_last_then_by_added_at(book_factory):
    books = [
        book_factory(id="late", series="S", series_position=None, added_at=300),
        book_factory(id="early", series="S", series_position=None, added_at=100),
        book_factory(id="p4", series="S", series_position=4, added_at=500),
    ]

    result = group_books_by_series(books)

    assert [b.id for b in result.series_index["s"]] == ["p4", "early", "late"]


def test_duplicate_position_logs_warning_and_uses_added_at(book_factory, caplog):
    """Duplicate positions are a data problem, not a failure."""
    books = [
        book_factory(id="newer", title="Newer", series="Dup", series_position=1, added_at=2000),
        book_factory(id="older", title="Older", series="Dup", series_position=1, added_at=1000),
    ]

    with caplog.at_level(logging.WARNING, logger="bookwheel.services.series_grouping"):
        result = group_books_by_series(books)

    assert [b.id for b in result.visible_books] == ["older"]
    assert "Duplicate series position 1" in caplog.text


def test_grouping_is_idempotent(book_factory):
    books = [
        book_factory(id="x", series="A", series_position=2),
        book_factory(id="y"),
        book_factory(id="z", series="A", series_position=1),
        book_factory(id="w", series="B", series_position=1),
    ]

    first = group_books_by_series(books)
    second = group_books_by_series(books)

    assert [b.id for b in first.visible_books] == [b.id for b in second.visible_books]
    assert {k: [b.id for b in v] for k, v in first.series_index.items()} == {
        k: [b.id for b in v] for k, v in second.series_index.items()
    }


def test_every_multi_book_series_has_exactly_one_representative(book_factory):
    books = []
    for series in ("A", "B", "C"):
        for pos in (3, 1, 2):
            books.append(book_factory(id=f"{series}{pos}", series=series, series_position=pos))

    result = group_books_by_series(books)

    assert sorted(b.id for b in result.visible_books) == ["A1", "B1", "C1"]


def test_drill_down_lookups(book_factory):
    one = book_factory(id="one", series="Solo Series", series_position=1)
    a1 = book_factory(id="a1", series="Pair", series_position=1)
    a2 = book_factory(id="a2", series="Pair", series_position=2)
    standalone = book_factory(id="s")

    result = group_books_by_series([one, a1, a2, standalone])

    assert [b.id for b in get_series_books(result.series_index, a2)] == ["a1", "a2"]
    assert series_has_multiple_books(result.series_index, a1) is True
    assert series_has_multiple_books(result.series_index, one) is False
    assert get_series_books(result.series_index, standalone) == []
    assert series_has_multiple_books(result.series_index, standalone) is False


def test_empty_catalog_groups_to_nothing():
    result = group_books_by_series([])
    assert result.visible_books == []
    assert result.series_index == {}


def test_unknown_mode_is_rejected(book_factory):
    with pytest.raises(ValueError):
        group_books_by_series([book_factory()], mode="middle")
