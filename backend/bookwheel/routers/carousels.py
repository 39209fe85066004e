from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from typing import Optional
import logging

from bookwheel.database import get_db
from bookwheel.schemas.carousel import (
    CarouselCreateRequest,
    CarouselSnapshot,
    SpinStateResponse,
    SpinRequest,
    SpinResponse,
    PopularityBiasRequest,
    SeriesResponse,
)
from bookwheel.services.carousel_engine import CarouselEngine, BookNotInPoolError
from bookwheel.services.carousel_registry import CarouselRegistry, CarouselNotFoundError
from bookwheel.services.catalog_filters import BookFilters
from bookwheel.utils.instrumentation import log_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/carousels", tags=["carousels"])


def get_registry(request: Request) -> CarouselRegistry:
    """Dependency for the process-wide carousel registry (set up at startup)."""
    return request.app.state.registry


def _get_engine(registry: CarouselRegistry, carousel_id: str) -> CarouselEngine:
    try:
        return registry.get(carousel_id)
    except CarouselNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Carousel {carousel_id} not found",
        )


def _snapshot(carousel_id: str, engine: CarouselEngine, namespace: Optional[str] = None) -> CarouselSnapshot:
    spin = engine.spin_state
    return CarouselSnapshot(
        id=carousel_id,
        namespace=namespace,
        pool_state=engine.pool_manager.state.value,
        series_mode=engine.series_mode,
        popularity_bias=engine.popularity_bias,
        visible_count=len(engine.grouping.visible_books),
        visible_books=engine.visible_books,
        wheel=engine.wheel_books,
        fresh_count=engine.fresh_count,
        spin=SpinStateResponse(angle=spin.angle, phase=spin.phase.value, target_index=spin.target_index),
        landed_book=engine.landed_book,
    )


@router.post("", response_model=CarouselSnapshot, status_code=status.HTTP_201_CREATED)
async def create_carousel(
    payload: CarouselCreateRequest,
    registry: CarouselRegistry = Depends(get_registry),
    db: Session = Depends(get_db),
):
    """Create a carousel from the synced catalog."""
    carousel_id, engine = registry.create(
        namespace=payload.namespace,
        series_mode=payload.series_mode,
        popularity_bias=payload.popularity_bias,
        filters=payload.filters,
    )
    log_event(
        db=db,
        event_name="carousel_created",
        namespace=payload.namespace,
        carousel_id=carousel_id,
        properties={
            "visible_count": len(engine.grouping.visible_books),
            "pool_size": len(engine.pool_manager),
            "popularity_bias": engine.popularity_bias,
        },
    )
    db.commit()
    return _snapshot(carousel_id, engine, payload.namespace)


@router.get("/{carousel_id}", response_model=CarouselSnapshot)
async def get_carousel(carousel_id: str, registry: CarouselRegistry = Depends(get_registry)):
    engine = _get_engine(registry, carousel_id)
    return _snapshot(carousel_id, engine, registry.namespace_of(carousel_id))


@router.delete("/{carousel_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_carousel(carousel_id: str, registry: CarouselRegistry = Depends(get_registry)):
    """Carousel dismissed: cancel any running spin and forget it."""
    try:
        registry.dispose(carousel_id)
    except CarouselNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Carousel {carousel_id} not found",
        )
    return None


@router.post("/{carousel_id}/spin", response_model=SpinResponse)
async def spin_carousel(
    carousel_id: str,
    payload: Optional[SpinRequest] = None,
    registry: CarouselRegistry = Depends(get_registry),
):
    """
    Start a spin: a weighted pick from the wheel, or the given wheel book.

    The animation runs server-side; poll GET /carousels/{id} for the angle.
    """
    engine = _get_engine(registry, carousel_id)

    if engine.spin_controller.spinning:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "already_spinning", "angle": engine.spin_state.angle},
        )

    try:
        if payload is not None and payload.book_id:
            plan = engine.start_spin(payload.book_id)
        else:
            plan = engine.spin()
    except BookNotInPoolError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    if plan is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "empty_wheel"},
        )

    return SpinResponse(
        target_index=plan.target_index,
        start_angle=plan.start_angle,
        target_angle=plan.target_angle,
        duration_ms=plan.duration_ms,
        book=engine.wheel_books[plan.target_index],
    )


@router.post("/{carousel_id}/reset", response_model=CarouselSnapshot)
async def reset_carousel(carousel_id: str, registry: CarouselRegistry = Depends(get_registry)):
    engine = _get_engine(registry, carousel_id)
    engine.reset()
    return _snapshot(carousel_id, engine, registry.namespace_of(carousel_id))


@router.post("/{carousel_id}/refresh", response_model=CarouselSnapshot)
async def refresh_carousel(carousel_id: str, registry: CarouselRegistry = Depends(get_registry)):
    """Full resample of the wheel."""
    engine = _get_engine(registry, carousel_id)
    engine.refresh()
    return _snapshot(carousel_id, engine, registry.namespace_of(carousel_id))


@router.post("/{carousel_id}/not-interested/{book_id}", response_model=CarouselSnapshot)
async def mark_not_interested(carousel_id: str, book_id: str, registry: CarouselRegistry = Depends(get_registry)):
    engine = _get_engine(registry, carousel_id)
    engine.mark_not_interested(book_id)
    return _snapshot(carousel_id, engine, registry.namespace_of(carousel_id))


@router.delete("/{carousel_id}/not-interested/{book_id}", response_model=CarouselSnapshot)
async def unmark_not_interested(carousel_id: str, book_id: str, registry: CarouselRegistry = Depends(get_registry)):
    engine = _get_engine(registry, carousel_id)
    engine.unmark_not_interested(book_id)
    return _snapshot(carousel_id, engine, registry.namespace_of(carousel_id))


@router.post("/{carousel_id}/wishlist/{book_id}", status_code=status.HTTP_204_NO_CONTENT)
async def add_to_wishlist(carousel_id: str, book_id: str, registry: CarouselRegistry = Depends(get_registry)):
    engine = _get_engine(registry, carousel_id)
    engine.add_to_wishlist(book_id)
    return None


@router.delete("/{carousel_id}/wishlist/{book_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_from_wishlist(carousel_id: str, book_id: str, registry: CarouselRegistry = Depends(get_registry)):
    engine = _get_engine(registry, carousel_id)
    engine.remove_from_wishlist(book_id)
    return None


@router.put("/{carousel_id}/popularity-bias", response_model=CarouselSnapshot)
async def set_popularity_bias(
    carousel_id: str,
    payload: PopularityBiasRequest,
    registry: CarouselRegistry = Depends(get_registry),
):
    engine = _get_engine(registry, carousel_id)
    engine.set_popularity_bias(payload.popularity_bias)
    return _snapshot(carousel_id, engine, registry.namespace_of(carousel_id))


@router.put("/{carousel_id}/filters", response_model=CarouselSnapshot)
async def set_filters(
    carousel_id: str,
    payload: BookFilters,
    registry: CarouselRegistry = Depends(get_registry),
):
    engine = _get_engine(registry, carousel_id)
    engine.set_filters(payload)
    return _snapshot(carousel_id, engine, registry.namespace_of(carousel_id))


@router.get("/{carousel_id}/series/{book_id}", response_model=SeriesResponse)
async def get_series(carousel_id: str, book_id: str, registry: CarouselRegistry = Depends(get_registry)):
    """Drill-down: every book in the series of a wheel book."""
    engine = _get_engine(registry, carousel_id)
    book = engine.get_book(book_id)
    if book is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Book {book_id} not found")
    return SeriesResponse(
        book_id=book.id,
        series=book.series,
        has_multiple_books=engine.has_multiple_books(book),
        books=engine.series_members(book),
    )
