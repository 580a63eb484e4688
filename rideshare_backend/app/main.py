"""
FastAPI Application Entry Point.

This is the main application file for the Rideshare Lobby Backend.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from rideshare_backend.app.core.config import settings
from rideshare_backend.app.api.v1.router import router as api_v1_router
from rideshare_backend.app.core.observability import ObservabilityMiddleware
from rideshare_backend.app.core.redis_client import redis_client, get_redis
from rideshare_backend.app.db.session import engine, Base, AsyncSessionLocal
from rideshare_backend.app.services.housekeeping import HousekeepingMonitor
from rideshare_backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from rideshare_backend.app.models.ride import Ride
from rideshare_backend.app.models.ride_member import RideMember

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Starts the housekeeping sweep (if enabled) and stops it on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    monitor = None
    if settings.housekeeping_enabled:
        monitor = HousekeepingMonitor(
            AsyncSessionLocal,
            redis_client,
            interval_seconds=settings.housekeeping_interval_seconds,
        )
        monitor.start()

    yield

    if monitor:
        await monitor.stop()
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Rideshare lobby coordination: create, join, drive and close out shared rides",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check(redis=Depends(get_redis)):
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    try:
        redis_ok = bool(await redis.ping())
    except Exception:
        redis_ok = False

    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "ok" if redis_ok else "unavailable",
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
        "message": "Welcome to Rideshare Lobby Backend API",
        "docs": "/docs",
        "health": "/health",
    }
