"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tablemin.service import TableService
from tablemin_api.config import get_settings
from tablemin_api.core.exceptions import register_exception_handlers
from tablemin_api.core.logging_config import setup_logging
from tablemin_api.database import create_engine_from_settings

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown."""
    # Startup
    setup_logging(settings)
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    engine = create_engine_from_settings(settings)
    app.state.table_service = TableService.from_engine(engine, settings.engine_config())
    if settings.READ_ONLY:
        logger.info("Database is read-only: writes and raw SQL are rejected")
    yield
    # Shutdown
    logger.info("Shutting down application")
    await app.state.table_service.gateway.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Browse, search and edit any table of a PostgreSQL schema",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:8080"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "read_only": settings.READ_ONLY,
    }


# Import and include routers after app is created to avoid circular imports
from tablemin_api.api.v1.router import api_router

app.include_router(api_router, prefix="/api/v1")
