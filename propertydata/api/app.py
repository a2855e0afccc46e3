"""
FastAPI application factory for the map API.

The pooled DatabaseManager is created in the lifespan and shared through
app.state; routes obtain sessions from it per request.
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .. import __version__
from ..config import Settings, get_settings
from ..database import DatabaseManager, PostgresConnector
from ..utils.logging import configure_logging, get_logger
from .map_routes import router as map_router


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None, db_manager: Optional[DatabaseManager] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        settings: Defaults to get_settings()
        db_manager: Pre-built manager; when omitted one is created from settings at startup
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.LOG_LEVEL, json_output=settings.LOG_JSON)

        manager = db_manager
        if manager is None:
            manager = DatabaseManager(PostgresConnector.from_settings(settings))
            await manager.initialize()
        app.state.db_manager = manager
        logger.info("api_started", environment=settings.ENVIRONMENT, schema=manager.connector.schema_name)

        yield

        await manager.close()
        logger.info("api_stopped")

    app = FastAPI(
        title="Property Data API",
        description="Bounding-box and detail queries over the property dataset",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.include_router(map_router)

    @app.get("/health")
    async def health_check():
        """Service status and database connectivity"""
        healthy = await app.state.db_manager.health_check()
        return {
            "status": "healthy" if healthy else "degraded",
            "database": "connected" if healthy else "unavailable",
        }

    return app
