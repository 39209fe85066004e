"""Tests for user state repositories and the typed stores on top of them."""
import pytest
from bookwheel.models import UserStateEntry
from bookwheel.services.user_state import (
    InMemoryStateRepository,
    SqlStateRepository,
    IdSetStore,
    HistoryStore,
    WISHLIST_KEY,
)


@pytest.fixture(params=["memory", "sql"])
def repo(request, session_factory):
    if request.param == "memory":
        return InMemoryStateRepository()
    return SqlStateRepository(session_factory, namespace="reader-1")


def test_missing_key_returns_default(repo):
    assert repo.get("nope") is None
    assert repo.get("nope", []) == []


def test_set_then_get(repo):
    repo.set("wishlist", ["a", "b"])
    assert repo.get("wishlist") == ["a", "b"]

    repo.set("wishlist", ["c"])
    assert repo.get("wishlist") == ["c"]


def test_id_set_store_keeps_unique_ids(repo):
    store = IdSetStore(repo, WISHLIST_KEY)

    assert store.add("a") is True
    assert store.add("b") is True
    assert store.add("a") is False

    assert store.ids == ["a", "b"]
    assert store.contains("b")
    assert len(store) == 2

    assert store.remove("a") is True
    assert store.remove("a") is False
    assert store.ids == ["b"]

    store.clear()
    assert store.as_set() == frozenset()


def test_history_moves_reviewed_book_to_front(repo):
    history = HistoryStore(repo)

    history.add("a", viewed_at=1)
    history.add("b", viewed_at=2)
    history.add("a", viewed_at=3)

    assert history.entries == [
        {"book_id": "a", "viewed_at": 3},
        {"book_id": "b", "viewed_at": 2},
    ]
    assert history.seen_ids() == frozenset({"a", "b"})


def test_history_is_capped(repo):
    history = HistoryStore(repo, max_size=3)

    for i in range(5):
        history.add(f"b{i}", viewed_at=i)

    assert [e["book_id"] for e in history.entries] == ["b4", "b3", "b2"]
    assert "b0" not in history.seen_ids()


def test_sql_state_is_scoped_by_namespace(session_factory):
    alice = SqlStateRepository(session_factory, namespace="alice")
    bob = SqlStateRepository(session_factory, namespace="bob")

    alice.set(WISHLIST_KEY, ["a"])
    bob.set(WISHLIST_KEY, ["b"])

    assert alice.get(WISHLIST_KEY) == ["a"]
    assert bob.get(WISHLIST_KEY) == ["b"]


def test_sql_state_updates_single_row(session_factory, db):
    repo = SqlStateRepository(session_factory, namespace="reader-1")

    repo.set("history", [])
    repo.set("history", [{"book_id": "x", "viewed_at": 1}])

    rows = db.query(UserStateEntry).filter(UserStateEntry.namespace == "reader-1").all()
    assert len(rows) == 1
    assert rows[0].value == [{"book_id": "x", "viewed_at": 1}]
