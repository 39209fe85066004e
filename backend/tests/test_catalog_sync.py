"""Tests for the catalog provider and incremental sync."""
import pytest
import requests
from bookwheel.services.catalog_sync import (
    CatalogSync,
    CatalogUnavailableError,
    HttpCatalogProvider,
    StaticCatalogProvider,
    merge_books,
    max_added_at,
)
from bookwheel.services.user_state import InMemoryStateRepository, BOOKS_CACHE_KEY


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append({"url": url, "params": params, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


class FlakyProvider(StaticCatalogProvider):
    def __init__(self, books):
        super().__init__(books)
        self.down = False
        self.calls = []

    def fetch_books(self, since=None):
        self.calls.append(since)
        if self.down:
            raise CatalogUnavailableError("catalog down")
        return super().fetch_books(since)


def test_http_provider_parses_camel_case_books():
    session = FakeSession(FakeResponse([
        {"id": "a", "title": "A", "author": "X", "seriesPosition": 2, "addedAt": 1000, "wishlistCount": 3},
    ]))
    provider = HttpCatalogProvider("http://catalog.local/", timeout=5, session=session)

    books = provider.fetch_books()

    assert books[0].series_position == 2
    assert books[0].added_at == 1000
    assert books[0].wishlist_count == 3
    assert session.calls == [{"url": "http://catalog.local/books", "params": {}, "timeout": 5}]


def test_http_provider_sends_since_and_accepts_wrapped_payload():
    session = FakeSession(FakeResponse({"books": [{"id": "a"}]}))
    provider = HttpCatalogProvider("http://catalog.local", session=session)

    books = provider.fetch_books(since=1234)

    assert [b.id for b in books] == ["a"]
    assert session.calls[0]["params"] == {"since": 1234}


def test_http_provider_skips_malformed_records():
    session = FakeSession(FakeResponse([{"id": "ok"}, {"title": "no id"}, {"id": "bad", "rating": 9}]))
    provider = HttpCatalogProvider("http://catalog.local", session=session)

    assert [b.id for b in provider.fetch_books()] == ["ok"]


@pytest.mark.parametrize(
    "session",
    [
        FakeSession(error=requests.ConnectionError("refused")),
        FakeSession(FakeResponse([], status_code=503)),
        FakeSession(FakeResponse(ValueError("not json"))),
        FakeSession(FakeResponse("just a string")),
    ],
)
def test_http_provider_failures_raise_catalog_unavailable(session):
    provider = HttpCatalogProvider("http://catalog.local", session=session)

    with pytest.raises(CatalogUnavailableError):
        provider.fetch_books()


def test_merge_replaces_known_and_appends_new(book_factory):
    a = book_factory(id="a", title="Old")
    b = book_factory(id="b")
    a_new = book_factory(id="a", title="New")
    c = book_factory(id="c")

    merged = merge_books([a, b], [c, a_new])

    assert [x.id for x in merged] == ["a", "b", "c"]
    assert merged[0].title == "New"


def test_max_added_at(book_factory):
    assert max_added_at([]) == 0
    assert max_added_at([book_factory(added_at=5), book_factory(added_at=9)]) == 9


def test_first_sync_fetches_everything_and_caches(book_factory):
    books = [book_factory(id="a", added_at=100), book_factory(id="b", added_at=200)]
    cache = InMemoryStateRepository()
    provider = FlakyProvider(books)

    fetched = CatalogSync(provider, cache).sync()

    assert [b.id for b in fetched] == ["a", "b"]
    assert provider.calls == [None]
    assert [item["id"] for item in cache.get(BOOKS_CACHE_KEY)] == ["a", "b"]
    assert cache.get(BOOKS_CACHE_KEY)[0]["addedAt"] == 100


def test_later_sync_only_asks_for_newer_books(book_factory):
    provider = FlakyProvider([book_factory(id="a", added_at=100)])
    sync = CatalogSync(provider, InMemoryStateRepository())
    sync.sync()

    provider.books.append(book_factory(id="b", added_at=300))
    fetched = sync.sync()

    assert provider.calls == [None, 100]
    assert [b.id for b in fetched] == ["b"]
    assert [b.id for b in sync.books] == ["a", "b"]


def test_cache_is_reloaded_on_startup(book_factory):
    cache = InMemoryStateRepository()
    CatalogSync(FlakyProvider([book_factory(id="a", added_at=100)]), cache).sync()

    provider = FlakyProvider([])
    restored = CatalogSync(provider, cache)

    assert [b.id for b in restored.books] == ["a"]
    restored.sync()
    assert provider.calls == [100]


def test_outage_serves_cached_catalog(book_factory):
    provider = FlakyProvider([book_factory(id="a", added_at=100)])
    sync = CatalogSync(provider, InMemoryStateRepository())
    sync.sync()

    provider.down = True

    assert sync.sync() == []
    assert [b.id for b in sync.books] == ["a"]
    assert sync.last_error == "catalog down"


def test_outage_without_cache_propagates():
    provider = FlakyProvider([])
    provider.down = True

    with pytest.raises(CatalogUnavailableError):
        CatalogSync(provider, InMemoryStateRepository()).sync()


def test_remove_drops_books_from_cache(book_factory):
    cache = InMemoryStateRepository()
    sync = CatalogSync(FlakyProvider([book_factory(id="a"), book_factory(id="b")]), cache)
    sync.sync()

    assert sync.remove(["a", "zzz"]) == 1
    assert [item["id"] for item in cache.get(BOOKS_CACHE_KEY)] == ["b"]
