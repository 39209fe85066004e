from pydantic_settings import BaseSettings, SettingsConfigDict
import json
from pathlib import Path


SERIES_MODES = ("first", "latest")


class Settings(BaseSettings):
    # Database (user state + event log)
    DATABASE_URL: str = "sqlite:///./bookwheel.db"

    # Catalog service
    CATALOG_API_URL: str = ""  # Empty disables background sync
    CATALOG_REQUEST_TIMEOUT: float = 10.0
    CATALOG_SYNC_INTERVAL_MINUTES: int = 15

    # Carousel
    CAROUSEL_CAPACITY: int = 15
    SPIN_DURATION_MS: float = 4000.0
    SELECTION_ANGLE: float = 40.0  # Angle under the pointer, where index 0 rests
    FRAME_INTERVAL_MS: float = 16.0
    SERIES_MODE: str = "first"
    HISTORY_MAX_SIZE: int = 50

    # CORS - can be JSON string or comma-separated string
    CORS_ORIGINS: str = '["http://localhost:3000", "http://localhost:5173"]'

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    model_config = SettingsConfigDict(
        # Load from backend/.env (relative to this file's parent's parent)
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if not self.DATABASE_URL or self.DATABASE_URL.strip() == "":
            raise RuntimeError(
                "DATABASE_URL is empty. Set it in backend/.env, e.g. DATABASE_URL=sqlite:///./bookwheel.db"
            )

        if self.CAROUSEL_CAPACITY < 1:
            raise RuntimeError(
                f"CAROUSEL_CAPACITY must be at least 1 (got {self.CAROUSEL_CAPACITY})"
            )

        if self.SPIN_DURATION_MS <= 0:
            raise RuntimeError(
                f"SPIN_DURATION_MS must be positive (got {self.SPIN_DURATION_MS})"
            )

        if self.FRAME_INTERVAL_MS <= 0:
            raise RuntimeError(
                f"FRAME_INTERVAL_MS must be positive (got {self.FRAME_INTERVAL_MS})"
            )

        if self.SERIES_MODE not in SERIES_MODES:
            raise RuntimeError(
                f"SERIES_MODE must be one of {', '.join(SERIES_MODES)} (got {self.SERIES_MODE!r})"
            )

        if self.HISTORY_MAX_SIZE < 1:
            raise RuntimeError(
                f"HISTORY_MAX_SIZE must be at least 1 (got {self.HISTORY_MAX_SIZE})"
            )

        # Trailing slash would double up when building /books URLs
        self.CATALOG_API_URL = self.CATALOG_API_URL.strip().rstrip("/")

    @property
    def catalog_sync_enabled(self) -> bool:
        return bool(self.CATALOG_API_URL)

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS from JSON string or comma-separated string."""
        if not self.CORS_ORIGINS:
            return ["http://localhost:3000", "http://localhost:5173"]

        try:
            # Try parsing as JSON first
            parsed = json.loads(self.CORS_ORIGINS)
            if isinstance(parsed, list):
                return parsed
            # If it's a string, treat as single origin
            return [str(parsed)]
        except (json.JSONDecodeError, TypeError):
            # Fall back to comma-separated string
            origins = [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]
            return origins if origins else ["http://localhost:3000", "http://localhost:5173"]


settings = Settings()
