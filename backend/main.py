"""
Location Engine API
Marker clustering, location hierarchy, and admin batch jobs.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import config
from database import Database
from routers import locations, markers
from services.location.engine import LocationEngine

logger = logging.getLogger(__name__)


def configure_logging():
    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)


def create_app(database: Optional[Database] = None) -> FastAPI:
    """
    Build the API. The Database handle is created once here (or passed in
    by tests) and shared through app.state.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        configure_logging()
        db_handle = database or Database()
        db_handle.create_all()
        app.state.database = db_handle
        app.state.location_engine = LocationEngine(db_handle)
        logger.info("Location Engine starting up...")
        yield
        # Shutdown
        logger.info("Location Engine shutting down...")
        if database is None:
            db_handle.dispose()

    app = FastAPI(
        title="Location Engine API",
        description="Marker clustering and city/landmark hierarchy",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Tighten in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(locations.router, prefix="/api/locations", tags=["Locations"])
    app.include_router(markers.router, prefix="/api/markers", tags=["Markers"])

    @app.get("/")
    async def root():
        return {"status": "ok", "service": "Location Engine API", "version": "1.0.0"}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    return app


app = create_app()
