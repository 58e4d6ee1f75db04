"""
Main FastAPI application entrypoint.
"""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from src.config import settings
from src.api.health import router as health_router
from src.api.locations import router as locations_router
from src.api.photos import router as photos_router


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan event handler for startup and shutdown.
    """
    # Startup
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info(f"Starting Location Sharing API on {settings.host}:{settings.port}")
    logger.info(f"Debug mode: {settings.debug}, orphan policy: {settings.orphan_policy}")
    if not settings.imagekit_private_key:
        logger.warning("IMAGEKIT_PRIVATE_KEY is not set; photo files will not be deleted from storage")

    yield

    # Shutdown
    logger.info("Shutting down Location Sharing API")


# Create FastAPI app
app = FastAPI(
    title="Location Sharing API",
    description="Backend API for saving and sharing film locations",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for the web client
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Total-Count", "X-Page", "X-Per-Page", "X-Total-Pages"],
)

# Register routers
app.include_router(health_router, prefix="/api")
app.include_router(locations_router, prefix="/api")
app.include_router(photos_router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Location Sharing API",
        "version": "0.1.0",
        "status": "running",
        "docs": "/docs",
    }
