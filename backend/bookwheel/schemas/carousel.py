from pydantic import BaseModel, Field
from typing import Optional, List, Literal
from bookwheel.schemas.book import Book
from bookwheel.services.catalog_filters import BookFilters


class CarouselCreateRequest(BaseModel):
    namespace: Optional[str] = None  # Persist wishlist/history under this key; None = in-memory only
    series_mode: Optional[Literal["first", "latest"]] = None  # Defaults to settings.SERIES_MODE
    popularity_bias: float = Field(0.0, ge=-1.0, le=1.0)
    filters: Optional[BookFilters] = None


class SpinStateResponse(BaseModel):
    angle: float
    phase: Literal["idle", "spinning", "stopped"]
    target_index: int


class CarouselSnapshot(BaseModel):
    id: str
    namespace: Optional[str] = None
    pool_state: Literal["uninitialized", "populated"]
    series_mode: str
    popularity_bias: float
    visible_count: int
    visible_books: List[Book]
    wheel: List[Book]  # Books in wheel order; index 0 rests under the pointer at angle 0
    fresh_count: int
    spin: SpinStateResponse
    landed_book: Optional[Book] = None


class SpinRequest(BaseModel):
    book_id: Optional[str] = None  # Spin to this wheel book instead of a weighted pick


class SpinResponse(BaseModel):
    target_index: int
    start_angle: float
    target_angle: float
    duration_ms: float
    book: Book


class PopularityBiasRequest(BaseModel):
    popularity_bias: float = Field(..., ge=-1.0, le=1.0)


class SeriesResponse(BaseModel):
    book_id: str
    series: Optional[str] = None
    has_multiple_books: bool
    books: List[Book]
