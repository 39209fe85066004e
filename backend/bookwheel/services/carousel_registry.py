"""
Per-process registry of live carousels and the shared catalog sync.

Each carousel id maps to its own CarouselEngine. Catalog deltas fetched by the
sync job are pushed into every live engine.
"""
from typing import Callable, Dict, List, Optional
import logging
import threading
import uuid

from sqlalchemy.orm import Session

from bookwheel.core.config import settings
from bookwheel.schemas.book import Book
from bookwheel.services.carousel_engine import CarouselEngine
from bookwheel.services.catalog_filters import BookFilters
from bookwheel.services.catalog_sync import (
    CatalogSync,
    CatalogProvider,
    HttpCatalogProvider,
    StaticCatalogProvider,
)
from bookwheel.services.tick_scheduler import TickScheduler, AsyncioTickScheduler
from bookwheel.services.user_state import SqlStateRepository, InMemoryStateRepository
from bookwheel.utils.instrumentation import EventLogObserver

logger = logging.getLogger(__name__)

CATALOG_NAMESPACE = "__catalog__"


class CarouselNotFoundError(KeyError):
    pass


def build_catalog_provider() -> CatalogProvider:
    if settings.catalog_sync_enabled:
        return HttpCatalogProvider(settings.CATALOG_API_URL, timeout=settings.CATALOG_REQUEST_TIMEOUT)
    logger.info("CATALOG_API_URL not set, starting with an empty static catalog")
    return StaticCatalogProvider([])


def default_scheduler_factory() -> TickScheduler:
    return AsyncioTickScheduler(interval_ms=settings.FRAME_INTERVAL_MS)


class CarouselRegistry:
    def __init__(
        self,
        catalog_sync: CatalogSync,
        session_factory: Optional[Callable[[], Session]] = None,
        scheduler_factory: Callable[[], TickScheduler] = default_scheduler_factory,
    ):
        self.catalog_sync = catalog_sync
        self.session_factory = session_factory
        self.scheduler_factory = scheduler_factory
        self._engines: Dict[str, CarouselEngine] = {}
        self._namespaces: Dict[str, Optional[str]] = {}
        # The sync job runs on an APScheduler thread; engines live on the event loop
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._engines)

    def create(
        self,
        namespace: Optional[str] = None,
        series_mode: Optional[str] = None,
        popularity_bias: float = 0.0,
        filters: Optional[BookFilters] = None,
    ) -> tuple[str, CarouselEngine]:
        if namespace and self.session_factory is not None:
            state = SqlStateRepository(self.session_factory, namespace)
        else:
            state = InMemoryStateRepository()

        carousel_id = str(uuid.uuid4())
        engine = CarouselEngine(
            books=self.catalog_sync.books,
            state=state,
            scheduler=self.scheduler_factory(),
            capacity=settings.CAROUSEL_CAPACITY,
            series_mode=series_mode or settings.SERIES_MODE,
            popularity_bias=popularity_bias,
            filters=filters,
            spin_duration_ms=settings.SPIN_DURATION_MS,
            selection_angle=settings.SELECTION_ANGLE,
            history_max_size=settings.HISTORY_MAX_SIZE,
        )
        if self.session_factory is not None:
            engine.subscribe(EventLogObserver(self.session_factory, namespace=namespace, carousel_id=carousel_id))

        with self._lock:
            self._engines[carousel_id] = engine
            self._namespaces[carousel_id] = namespace
        logger.info("Created carousel %s (namespace=%s, pool=%d)", carousel_id, namespace, len(engine.pool))
        return carousel_id, engine

    def get(self, carousel_id: str) -> CarouselEngine:
        engine = self._engines.get(carousel_id)
        if engine is None:
            raise CarouselNotFoundError(carousel_id)
        return engine

    def namespace_of(self, carousel_id: str) -> Optional[str]:
        return self._namespaces.get(carousel_id)

    def dispose(self, carousel_id: str) -> None:
        with self._lock:
            engine = self._engines.pop(carousel_id, None)
            self._namespaces.pop(carousel_id, None)
        if engine is None:
            raise CarouselNotFoundError(carousel_id)
        engine.dispose()
        logger.info("Disposed carousel %s", carousel_id)

    def dispose_all(self) -> None:
        for carousel_id in list(self._engines):
            self.dispose(carousel_id)

    def sync_catalog(self, deliver: Optional[Callable[[Callable[[], None]], object]] = None) -> List[Book]:
        """
        Pull catalog changes and push them into every live carousel.

        The fetch runs in the calling thread. `deliver` hands the engine update
        to the thread that owns the engines (e.g. loop.call_soon_threadsafe);
        without it the update runs inline.
        """
        fetched = self.catalog_sync.sync()
        if not fetched:
            return fetched

        def apply() -> None:
            with self._lock:
                engines = list(self._engines.values())
            for engine in engines:
                engine.apply_catalog_delta(fetched)

        if deliver is not None:
            deliver(apply)
        else:
            apply()
        return fetched

    def remove_books(self, book_ids: List[str]) -> int:
        """Drop books the catalog service withdrew from the cache and every live carousel."""
        removed = self.catalog_sync.remove(book_ids)
        with self._lock:
            engines = list(self._engines.values())
        for engine in engines:
            engine.remove_from_catalog(book_ids)
        logger.info("Removed %d book(s) from the catalog (%d carousel(s) updated)", removed, len(engines))
        return removed


def build_registry(session_factory: Optional[Callable[[], Session]] = None) -> CarouselRegistry:
    cache = (
        SqlStateRepository(session_factory, CATALOG_NAMESPACE)
        if session_factory is not None
        else InMemoryStateRepository()
    )
    return CarouselRegistry(
        catalog_sync=CatalogSync(build_catalog_provider(), cache),
        session_factory=session_factory,
    )
