"""FastAPI application entry point for the Storyboard canvas backend.

This module initializes the FastAPI application with all middleware,
routers, and event handlers configured.

Usage:
    uv run uvicorn main:app --reload
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import router
from api.routes import set_project_manager as set_routes_project_manager
from api.websocket import (
    set_project_manager as set_websocket_project_manager,
)
from api.websocket import (
    websocket_router,
)
from config import configure_logging, settings
from events import get_event_bus
from models.database import CanvasStore
from project_manager import ProjectManager
from services import create_content_service

# Configure structured logging
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events.

    Creates the canvas store, the generation backend and the project manager
    on startup, and flushes every open canvas on shutdown.

    Args:
        app: The FastAPI application instance.

    Yields:
        None during application runtime.
    """
    logger.info(
        "application_starting",
        backend_port=settings.backend_port,
        log_level=settings.log_level,
        use_mock_generation=settings.use_mock_generation,
    )

    canvas_store = CanvasStore(settings.database_path)
    try:
        await canvas_store.init()
    except Exception as e:
        # Keep the API up so /health can report the failure.
        logger.warning("canvas_store_init_failed", error=str(e))

    project_manager = ProjectManager(
        canvas_store,
        create_content_service(),
        get_event_bus(),
    )

    set_routes_project_manager(project_manager)
    set_websocket_project_manager(project_manager)

    app.state.project_manager = project_manager
    app.state.canvas_store = canvas_store

    logger.info("application_started")

    yield

    logger.info("application_shutting_down")

    project_manager = app.state.project_manager
    await project_manager.cleanup_all()

    logger.info("application_shutdown_complete")


app = FastAPI(
    title="Storyboard Canvas",
    description="Backend API for a canvas of videos, transcripts, mood boards "
    "and AI agents that generate titles, descriptions, thumbnails and tweets.",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["*"],
)

app.include_router(router, tags=["canvas"])

app.include_router(websocket_router, tags=["websocket"])


@app.get("/", include_in_schema=False)
async def root() -> dict[str, str]:
    """Root endpoint that points at the API documentation.

    Returns:
        A welcome message with documentation URL.
    """
    return {
        "message": "Storyboard Canvas API",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.backend_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
