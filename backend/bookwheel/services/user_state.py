"""
User state behind an explicit repository interface.

The carousel only talks to StateRepository.get()/set(); where the values live
(memory, SQL) is decided by whoever builds the engine. Typed stores for the
wishlist, not-interested list and landing history sit on top.
"""
from typing import Any, Callable, List, Optional, Protocol, TypedDict
import logging

from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from bookwheel.models import UserStateEntry
from bookwheel.utils.timing import epoch_ms

logger = logging.getLogger(__name__)

WISHLIST_KEY = "wishlist"
NOT_INTERESTED_KEY = "not-interested"
HISTORY_KEY = "history"
BOOKS_CACHE_KEY = "books-cache"

MAX_HISTORY_SIZE = 50


class StateRepository(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...


class InMemoryStateRepository:
    def __init__(self, initial: Optional[dict] = None):
        self._data = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value


class SqlStateRepository:
    """
    Key/value state in the user_state_entries table, scoped to one namespace.

    Opens a short-lived session per call so it can be shared by long-lived
    carousel engines without holding a connection.
    """

    def __init__(self, session_factory: Callable[[], Session], namespace: str):
        self.session_factory = session_factory
        self.namespace = namespace

    def _find(self, db: Session, key: str) -> Optional[UserStateEntry]:
        return db.query(UserStateEntry).filter(
            UserStateEntry.namespace == self.namespace,
            UserStateEntry.key == key,
        ).first()

    def get(self, key: str, default: Any = None) -> Any:
        db = self.session_factory()
        try:
            entry = self._find(db, key)
            if entry is None or entry.value is None:
                return default
            return entry.value
        finally:
            db.close()

    def set(self, key: str, value: Any) -> None:
        db = self.session_factory()
        try:
            entry = self._find(db, key)
            if entry is None:
                db.add(UserStateEntry(namespace=self.namespace, key=key, value=value))
            else:
                entry.value = value
            try:
                db.commit()
            except IntegrityError:
                # Another writer inserted the same (namespace, key) first
                db.rollback()
                logger.debug("State insert raced for %s/%s, updating instead", self.namespace, key)
                entry = self._find(db, key)
                entry.value = value
                db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class IdSetStore:
    """Ordered set of book IDs (wishlist, not interested)."""

    def __init__(self, repository: StateRepository, key: str):
        self.repository = repository
        self.key = key

    @property
    def ids(self) -> List[str]:
        return list(self.repository.get(self.key, []) or [])

    def as_set(self) -> frozenset:
        return frozenset(self.ids)

    def contains(self, book_id: str) -> bool:
        return book_id in self.ids

    def add(self, book_id: str) -> bool:
        ids = self.ids
        if book_id in ids:
            return False
        ids.append(book_id)
        self.repository.set(self.key, ids)
        return True

    def remove(self, book_id: str) -> bool:
        ids = self.ids
        if book_id not in ids:
            return False
        self.repository.set(self.key, [i for i in ids if i != book_id])
        return True

    def clear(self) -> None:
        self.repository.set(self.key, [])

    def __len__(self) -> int:
        return len(self.ids)


class HistoryEntry(TypedDict):
    book_id: str
    viewed_at: int  # Epoch millis


class HistoryStore:
    """Books the user landed on, newest first, capped at max_size."""

    def __init__(self, repository: StateRepository, key: str = HISTORY_KEY, max_size: int = MAX_HISTORY_SIZE):
        self.repository = repository
        self.key = key
        self.max_size = max_size

    @property
    def entries(self) -> List[HistoryEntry]:
        return list(self.repository.get(self.key, []) or [])

    def add(self, book_id: str, viewed_at: Optional[int] = None) -> HistoryEntry:
        entry: HistoryEntry = {
            "book_id": book_id,
            "viewed_at": viewed_at if viewed_at is not None else epoch_ms(),
        }
        # Re-viewing a book moves it to the front instead of duplicating it
        kept = [e for e in self.entries if e["book_id"] != book_id]
        self.repository.set(self.key, [entry, *kept][: self.max_size])
        return entry

    def seen_ids(self) -> frozenset:
        return frozenset(e["book_id"] for e in self.entries)

    def clear(self) -> None:
        self.repository.set(self.key, [])

    def __len__(self) -> int:
        return len(self.entries)
