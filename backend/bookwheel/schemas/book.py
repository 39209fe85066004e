from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional
import enum


class BookSource(str, enum.Enum):
    AUDIBLE = "AUDIBLE"
    ROYAL_ROAD = "ROYAL_ROAD"


class Book(BaseModel):
    """
    Catalog record as served by the catalog service.

    Immutable: the carousel never edits books, it only reads engagement metrics.
    Accepts the camelCase wire names (seriesPosition, addedAt, ...) as well as
    the snake_case field names.
    """
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )

    id: str
    title: str = ""
    subtitle: Optional[str] = None
    author: str = ""
    narrator: Optional[str] = None
    series: Optional[str] = None
    series_position: Optional[int] = None
    genres: list[str] = Field(default_factory=list)
    length: Optional[str] = None  # e.g. "12 hrs and 30 mins" (Audible only)
    language: str = "English"
    image_url: str = ""
    description: str = ""
    source: Optional[BookSource] = None
    rating: float = Field(0.0, ge=0.0, le=5.0)
    num_ratings: int = 0
    wishlist_count: int = 0
    click_through_count: int = 0
    not_interested_count: int = 0
    impression_count: int = 0
    added_at: int = 0  # Epoch millis
    updated_at: int = 0  # Epoch millis
