"""
Catalog provider and incremental sync.

The catalog service returns every book, or only books added after a given
timestamp. CatalogSync keeps a cached copy in a StateRepository and only asks
for what is new since the newest cached book.
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Dict, Any
import logging

import requests
from pydantic import ValidationError

from bookwheel.schemas.book import Book
from bookwheel.services.user_state import StateRepository, BOOKS_CACHE_KEY

logger = logging.getLogger(__name__)


class CatalogUnavailableError(Exception):
    """Raised when the catalog service cannot be reached or returns garbage."""
    pass


class CatalogProvider(ABC):
    @abstractmethod
    def fetch_books(self, since: Optional[int] = None) -> List[Book]:
        """All books, or only those added after `since` (epoch millis)."""


class StaticCatalogProvider(CatalogProvider):
    """Serves a fixed list of books (seed data, offline runs)."""

    def __init__(self, books: List[Book]):
        self.books = list(books)

    def fetch_books(self, since: Optional[int] = None) -> List[Book]:
        if since is None:
            return list(self.books)
        return [b for b in self.books if b.added_at > since]


class HttpCatalogProvider(CatalogProvider):
    """GET {base_url}/books[?since=<ms>] against the catalog REST service."""

    def __init__(self, base_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch_books(self, since: Optional[int] = None) -> List[Book]:
        params: Dict[str, Any] = {}
        if since:
            params["since"] = since

        url = f"{self.base_url}/books"
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise CatalogUnavailableError(f"Catalog request to {url} failed: {e}") from e

        # The service answers with a bare list, older deployments wrap it in {"books": [...]}
        items = payload.get("books", []) if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            raise CatalogUnavailableError(f"Unexpected catalog payload type: {type(items).__name__}")

        books: List[Book] = []
        skipped = 0
        for item in items:
            try:
                books.append(Book.model_validate(item))
            except ValidationError as e:
                skipped += 1
                logger.warning("Skipping malformed catalog record %s: %s", item.get("id") if isinstance(item, dict) else item, e)
        if skipped:
            logger.info("Catalog fetch skipped %d malformed record(s)", skipped)
        return books


def max_added_at(books: List[Book]) -> int:
    return max((b.added_at or 0 for b in books), default=0)


def merge_books(cached: List[Book], incoming: List[Book]) -> List[Book]:
    """Known ids take the incoming (fresher) record in place; new ids are appended."""
    incoming_by_id = {b.id: b for b in incoming}
    merged = [incoming_by_id.pop(b.id, b) for b in cached]
    # dicts keep insertion order, so new books land in fetch order
    merged.extend(incoming_by_id.values())
    return merged


class CatalogSync:
    def __init__(self, provider: CatalogProvider, cache: StateRepository, cache_key: str = BOOKS_CACHE_KEY):
        self.provider = provider
        self.cache = cache
        self.cache_key = cache_key
        self._books: List[Book] = self._load_cache()
        self.last_error: Optional[str] = None

    @property
    def books(self) -> List[Book]:
        return list(self._books)

    def _load_cache(self) -> List[Book]:
        raw = self.cache.get(self.cache_key, []) or []
        books = []
        for item in raw:
            try:
                books.append(Book.model_validate(item))
            except ValidationError:
                logger.warning("Dropping unreadable cached book record")
        return books

    def _save_cache(self) -> None:
        self.cache.set(self.cache_key, [b.model_dump(mode="json", by_alias=True) for b in self._books])

    def sync(self) -> List[Book]:
        """
        Fetch new books and merge them into the cache.

        Returns the fetched books. When the service is down the cached catalog
        keeps being served; the error only propagates when there is no cache.
        """
        since = max_added_at(self._books) or None
        try:
            fetched = self.provider.fetch_books(since=since)
        except CatalogUnavailableError as e:
            self.last_error = str(e)
            if not self._books:
                logger.error("[SYNC] Catalog unavailable and no cache: %s", e)
                raise
            logger.warning("[SYNC] Catalog unavailable, serving %d cached book(s): %s", len(self._books), e)
            return []

        self.last_error = None
        if since is None:
            # No cache - fetched books are the full catalog
            self._books = fetched
        elif fetched:
            self._books = merge_books(self._books, fetched)
        else:
            logger.debug("[SYNC] No new books since %s", since)
            return []

        self._save_cache()
        logger.info("[SYNC] Catalog now holds %d book(s) (%d fetched)", len(self._books), len(fetched))
        return fetched

    def remove(self, book_ids: List[str]) -> int:
        """Drop books the catalog service reported as removed."""
        ids = set(book_ids)
        before = len(self._books)
        self._books = [b for b in self._books if b.id not in ids]
        removed = before - len(self._books)
        if removed:
            self._save_cache()
        return removed
