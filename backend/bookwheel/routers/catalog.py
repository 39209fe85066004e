from fastapi import APIRouter, Depends, HTTPException, status
import logging

from bookwheel.routers.carousels import get_registry
from bookwheel.services.carousel_registry import CarouselRegistry
from bookwheel.services.catalog_sync import CatalogUnavailableError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/catalog", tags=["catalog"])


@router.post("/sync")
async def sync_catalog(registry: CarouselRegistry = Depends(get_registry)):
    """Run a catalog sync now instead of waiting for the scheduled job."""
    try:
        fetched = registry.sync_catalog()
    except CatalogUnavailableError as e:
        logger.error("[SYNC] Manual catalog sync failed: %s", e)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return {"fetched": len(fetched), "total": len(registry.catalog_sync.books)}


@router.delete("/books/{book_id}")
async def remove_book(book_id: str, registry: CarouselRegistry = Depends(get_registry)):
    """Withdraw a book: it leaves the cached catalog and every live wheel."""
    removed = registry.remove_books([book_id])
    if not removed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Book {book_id} not found")
    return {"removed": removed}
