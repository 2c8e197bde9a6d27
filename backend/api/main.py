"""
Sentry Replenishment API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import get_settings
from core.exceptions import (
    InsufficientStock,
    InvalidStateTransition,
    NotFound,
    PersistenceError,
    ReplenishmentError,
    ValidationError,
)
from core.logging import configure_logging
from replenishment.runtime import build_runtime

settings = get_settings()
logger = structlog.get_logger()

ERROR_STATUS = {
    NotFound: 404,
    InvalidStateTransition: 409,
    InsufficientStock: 409,
    ValidationError: 422,
    PersistenceError: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    configure_logging(settings)
    logger.info("api.starting", version=settings.app_version, event_bus=settings.event_bus)
    # Tests install their own runtime before startup.
    owns_runtime = getattr(app.state, "runtime", None) is None
    if owns_runtime:
        app.state.runtime = await build_runtime(settings)
    try:
        yield
    finally:
        if owns_runtime:
            await app.state.runtime.close()
            app.state.runtime = None
        logger.info("api.shutting_down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Store replenishment workflow: low-stock alerts, transfers, shipments and receiving",
    lifespan=lifespan,
)


def status_for(exc: ReplenishmentError) -> int:
    for exc_type in type(exc).__mro__:
        if exc_type in ERROR_STATUS:
            return ERROR_STATUS[exc_type]
    return 500


@app.exception_handler(ReplenishmentError)
async def replenishment_error_handler(request: Request, exc: ReplenishmentError):
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.info
    log("api.request_failed", path=request.url.path, status=status_code, code=exc.code, detail=exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import inventory, replenishment

app.include_router(replenishment.router)
app.include_router(inventory.router)


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint for load balancers."""
    runtime = getattr(request.app.state, "runtime", None)
    return {
        "status": "healthy" if runtime is not None else "starting",
        "version": settings.app_version,
        "event_bus": runtime.bus.get_status() if runtime is not None else None,
        "pending_notifications": runtime.notifier.pending if runtime is not None else 0,
        "failed_notifications": runtime.notifier.failures if runtime is not None else 0,
    }
