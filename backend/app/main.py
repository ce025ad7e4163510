"""
FastAPI Application Entry Point.

This is the main application file for the Finance Ledger Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from backend.app.core.config import settings
from backend.app.api.v1.router import router as api_v1_router
from backend.app.db.session import engine, Base, AsyncSessionLocal
from backend.app.core.observability import ObservabilityMiddleware, configure_logging
from backend.app.core.redis_client import ping_redis
from backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from backend.app.domain.recurring.scheduler import RecurringScheduler
from backend.app.services.ledger_notifier import InAppLedgerNotifier
from backend.app.services.recurring_runner import RecurringProcessingLoop

# Import models to ensure they are registered with Base
from backend.app.models.audit_log import AuditLog
from backend.app.models.category import Category
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.notification import Notification


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Configures logging and creates database tables on startup.
    2. Starts the recurring processing loop when enabled, stops it on shutdown.
    """
    configure_logging()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    processing_loop = None
    if settings.scheduler_enabled:
        scheduler = RecurringScheduler(
            AsyncSessionLocal,
            notifier=InAppLedgerNotifier(AsyncSessionLocal),
        )
        processing_loop = RecurringProcessingLoop(scheduler)
        processing_loop.start()
    app.state.processing_loop = processing_loop

    yield

    if processing_loop is not None:
        await processing_loop.stop()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Personal finance ledger with recurring transaction scheduling",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status, application information and Redis reachability
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if await ping_redis() else "down",
        "scheduler_enabled": settings.scheduler_enabled,
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to Finance Ledger Backend API",
        "docs": "/docs",
        "health": "/health",
    }
