from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import asyncio
import logging
import os
from datetime import datetime

from bookwheel.core.config import settings
from bookwheel.routers import carousels, catalog
from bookwheel.database import init_db, SessionLocal
from bookwheel.scheduler import start_scheduler, stop_scheduler
from bookwheel.services.carousel_registry import build_registry
from bookwheel.services.catalog_sync import CatalogUnavailableError

# ----------------------------
# Logging
# ----------------------------
logger = logging.getLogger("bookwheel")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

# Server fingerprint for debugging
SERVER_BOOT_ID = f"bookwheel::{os.getpid()}::{datetime.utcnow().isoformat()}"

app = FastAPI(debug=settings.DEBUG)

BUILD_ID = os.getenv("BUILD_ID", "missing")


# ----------------------------
# CORS
# ----------------------------
cors_origins = settings.cors_origins_list
logger.info("[CORS] allow_origins=%s", cors_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_build_header(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Bookwheel-Build"] = BUILD_ID
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("[UNHANDLED] %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal Server Error"}
    )


# ----------------------------
# Routers
# ----------------------------
app.include_router(carousels.router, prefix="/api")
app.include_router(catalog.router, prefix="/api")


@app.on_event("startup")
async def on_startup() -> None:
    logger.info("[BOOT] %s", SERVER_BOOT_ID)
    init_db()

    registry = build_registry(SessionLocal)
    app.state.registry = registry
    try:
        registry.sync_catalog()
    except CatalogUnavailableError as e:
        logger.error("[BOOT] Initial catalog sync failed, starting with an empty catalog: %s", e)

    start_scheduler(registry, asyncio.get_running_loop())


@app.on_event("shutdown")
async def on_shutdown() -> None:
    stop_scheduler()
    registry = getattr(app.state, "registry", None)
    if registry is not None:
        registry.dispose_all()


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/api/health")
def api_health_check():
    return {"status": "ok"}


@app.get("/api/_debug/server-id")
def server_id():
    return {"server_id": SERVER_BOOT_ID, "build_id": BUILD_ID}
