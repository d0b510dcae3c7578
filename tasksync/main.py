"""
FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from tasksync import __version__
from tasksync.config import get_settings
from tasksync.database import init_db, close_db, get_db_context
from tasksync.core.provider_client import close_provider_client
from tasksync.core.taxonomy import get_taxonomy_service
from tasksync.services.sync_service import get_sync_service, close_sync_service
from tasksync.api import api_router

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting task sync service...")

    # Initialize database
    await init_db()
    logger.info("Database initialized")

    # Fails fast on a missing or malformed taxonomy
    get_taxonomy_service()

    sync_service = await get_sync_service()
    if settings.standalone_mode:
        logger.warning("No task provider token configured, running in standalone mode")
    elif settings.sync_enabled:
        sync_service.start()

    yield

    # Shutdown
    logger.info("Shutting down task sync service...")

    await close_sync_service()
    await close_provider_client()
    await close_db()

    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Task Sync API",
    description="Task synchronization and reconciliation with a remote task provider",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


# Include API routes
app.include_router(api_router)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
    }


# Ready check endpoint
@app.get("/ready")
async def ready_check():
    """Readiness check endpoint."""
    try:
        async with get_db_context() as db:
            await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "error": str(e),
            },
        )

    return {
        "status": "ready",
        "database": "connected",
        "provider": "standalone" if settings.standalone_mode else "configured",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tasksync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
