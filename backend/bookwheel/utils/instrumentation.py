"""
Carousel event logging.

Events go to structured logs for immediate visibility and, best-effort, to the
event_logs table for querying. Logging an event never breaks the caller.
"""
import logging
from typing import Optional, Dict, Any, Callable
from sqlalchemy.orm import Session
from sqlalchemy.exc import OperationalError, ProgrammingError
from bookwheel.models import EventLog

logger = logging.getLogger(__name__)


def _emit_log(event_name: str, namespace: Optional[str], carousel_id: Optional[str], properties: Optional[Dict[str, Any]]) -> None:
    logger.info(
        "event_logged",
        extra={
            "event_name": event_name,
            "namespace": namespace,
            "carousel_id": carousel_id,
            "properties": properties,
        },
    )


def log_event(
    db: Session,
    event_name: str,
    namespace: Optional[str] = None,
    carousel_id: Optional[str] = None,
    properties: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Log an event within the caller's transaction.

    Note: This function does NOT commit. It flushes so the row is part of the
    caller's transaction, and the caller decides when to commit.
    """
    try:
        db.add(EventLog(
            event_name=event_name,
            namespace=namespace,
            carousel_id=carousel_id,
            properties=properties,
        ))
        db.flush()
        _emit_log(event_name, namespace, carousel_id, properties)
    except Exception as e:
        logger.warning(
            "Failed to log event: event_name=%s, carousel_id=%s, error=%s",
            event_name,
            carousel_id,
            str(e),
            exc_info=True,
        )


def log_event_best_effort(
    session_factory: Callable[[], Session],
    event_name: str,
    namespace: Optional[str] = None,
    carousel_id: Optional[str] = None,
    properties: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Log an event in its own session and commit it independently.

    This function never raises - failures are logged as warnings.
    """
    db = None
    try:
        db = session_factory()
        db.add(EventLog(
            event_name=event_name,
            namespace=namespace,
            carousel_id=carousel_id,
            properties=properties,
        ))
        db.commit()
        _emit_log(event_name, namespace, carousel_id, properties)
    except (OperationalError, ProgrammingError) as e:
        error_str = str(e).lower()
        if "no such table" in error_str or "does not exist" in error_str:
            logger.warning(
                "event_logs table missing - call init_db(). "
                "Event logging disabled until the table exists."
            )
        else:
            logger.warning(
                "Failed to log event (database error): event_name=%s, carousel_id=%s, error=%s",
                event_name,
                carousel_id,
                str(e),
                exc_info=True,
            )
        if db:
            db.rollback()
    except Exception as e:
        logger.warning(
            "Failed to log event: event_name=%s, carousel_id=%s, error=%s",
            event_name,
            carousel_id,
            str(e),
            exc_info=True,
        )
        if db:
            db.rollback()
    finally:
        if db:
            db.close()


class EventLogObserver:
    """Subscribes to a carousel engine and records its events in event_logs."""

    def __init__(self, session_factory: Callable[[], Session], namespace: Optional[str] = None, carousel_id: Optional[str] = None):
        self.session_factory = session_factory
        self.namespace = namespace
        self.carousel_id = carousel_id

    def __call__(self, event) -> None:
        log_event_best_effort(
            self.session_factory,
            event.name,
            namespace=self.namespace,
            carousel_id=self.carousel_id,
            properties=event.properties,
        )
