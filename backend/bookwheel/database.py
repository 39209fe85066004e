from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from bookwheel.core.config import settings
from bookwheel.utils.timing import now_ms
import logging

logger = logging.getLogger(__name__)

SLOW_QUERY_THRESHOLD_MS = 200.0


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # In-memory SQLite must share one connection or every session sees an empty DB
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {"pool_pre_ping": True}


engine = create_engine(settings.DATABASE_URL, echo=False, **_engine_kwargs(settings.DATABASE_URL))


def _install_slow_query_log(target) -> None:
    """Warn about statements slower than SLOW_QUERY_THRESHOLD_MS (DEBUG only)."""

    @event.listens_for(target, "before_cursor_execute")
    def _mark_start(conn, cursor, statement, parameters, context, executemany):
        context._bookwheel_started_ms = now_ms()

    @event.listens_for(target, "after_cursor_execute")
    def _report(conn, cursor, statement, parameters, context, executemany):
        started = getattr(context, "_bookwheel_started_ms", None)
        if started is None:
            return
        elapsed_ms = now_ms() - started
        if elapsed_ms >= SLOW_QUERY_THRESHOLD_MS:
            logger.warning("SLOW_QUERY: %.2fms - %s", elapsed_ms, statement.split("\n")[0].strip()[:100])


if settings.DEBUG:
    _install_slow_query_log(engine)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency for a request-scoped database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """
    Create the user state and event log tables if they are missing.

    create_all() never alters tables that already exist.
    """
    from bookwheel import models  # noqa: F401  (registers the tables on Base.metadata)

    Base.metadata.create_all(bind=engine)
    logger.info("Database ready (%s)", engine.url.render_as_string(hide_password=True))
