"""Pytest configuration for backend tests."""
import sys
import os
import random
from itertools import count
from pathlib import Path
import pytest
from sqlalchemy.orm import sessionmaker, Session

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Settings are read at import time: point the app at an in-memory database
# before anything from bookwheel is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CATALOG_API_URL"] = ""

from bookwheel.database import Base, engine as app_engine
from bookwheel.schemas.book import Book
from bookwheel.services.tick_scheduler import SteppedTickScheduler
from bookwheel.utils.timing import epoch_ms, MS_PER_DAY

# Import the models module so every table is registered with Base.metadata
import bookwheel.models  # noqa: F401


@pytest.fixture(scope="session")
def db_engine():
    """In-memory SQLite engine shared by the app and the tests (StaticPool)."""
    if not Base.metadata.tables:
        raise RuntimeError(
            "No tables registered in Base.metadata. "
            "Did you import bookwheel.models? All model classes must be imported before create_all()."
        )
    Base.metadata.create_all(bind=app_engine)
    yield app_engine
    Base.metadata.drop_all(bind=app_engine)


@pytest.fixture(scope="function")
def session_factory(db_engine):
    """
    Session factory for code that opens and commits its own sessions.

    Tables are emptied after each test for isolation.
    """
    factory = sessionmaker(bind=db_engine, autocommit=False, autoflush=False)
    yield factory
    with db_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(scope="function")
def db(session_factory) -> Session:
    """Database session for a single test."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def rng() -> random.Random:
    """Seeded RNG so weighted draws are reproducible."""
    return random.Random(1234)


@pytest.fixture
def scheduler() -> SteppedTickScheduler:
    """Manually advanced frame clock starting at t=0."""
    return SteppedTickScheduler(frame_ms=16.0, start_ms=0.0)


@pytest.fixture
def book_factory():
    """
    Build catalog books with neutral defaults.

    Defaults are a year old, unrated and unengaged so no bonus applies unless a
    test asks for it.
    """
    ids = count(1)
    old = epoch_ms() - 365 * MS_PER_DAY

    def make(**overrides) -> Book:
        n = next(ids)
        fields = {
            "id": f"book-{n}",
            "title": f"Book {n}",
            "author": "Test Author",
            "added_at": old,
        }
        fields.update(overrides)
        return Book(**fields)

    return make
