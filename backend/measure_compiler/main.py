"""FastAPI application for Measure Compiler."""

import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from measure_compiler import __version__
from measure_compiler.api import codegen_router, diff_router, overrides_router, validation_router
from measure_compiler.core.config import settings
from measure_compiler.services.code_overrides import OverrideStore
from measure_compiler.services.measure_boilerplate import get_boilerplate_registry
from measure_compiler.services.measure_compiler import MeasureCompiler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Handles startup and shutdown events:
    - Startup: Create the override store and the compiler bound to it
    - Shutdown: Log how many overrides were held in memory
    """
    startup_start = time.perf_counter()

    store = OverrideStore()
    app.state.override_store = store
    app.state.compiler = MeasureCompiler(store, get_boilerplate_registry())

    app.state.startup_time_ms = (time.perf_counter() - startup_start) * 1000
    logger.info(f"Server ready - total startup time: {app.state.startup_time_ms:.0f}ms")

    yield

    # Overrides are in-memory only
    stats = store.get_stats()
    logger.info(f"Shutting down with {stats['total_overrides']} overrides in memory")


app = FastAPI(
    title=settings.app_name,
    description="API for compiling clinical quality measure criteria trees to CQL and Synapse SQL.",
    version=__version__,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(codegen_router)
app.include_router(diff_router)
app.include_router(overrides_router)
app.include_router(validation_router)


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, Any]:
    """Health check endpoint (liveness probe).

    Returns service status and basic info for monitoring.
    Use /ready for readiness checks.
    """
    return {
        "status": "healthy",
        "service": "measure-compiler",
        "version": __version__,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@app.get("/ready", tags=["Health"])
async def readiness_check() -> dict[str, Any]:
    """Readiness check endpoint.

    Reports the boilerplate bundles loaded and the override store size.
    """
    store: OverrideStore | None = getattr(app.state, "override_store", None)

    return {
        "status": "ready",
        "service": "measure-compiler",
        "version": __version__,
        "timestamp": datetime.now(UTC).isoformat(),
        "startup_time_ms": getattr(app.state, "startup_time_ms", 0),
        "boilerplate": get_boilerplate_registry().get_stats(),
        "overrides": store.get_stats() if store is not None else {},
    }


@app.get("/", tags=["Health"])
async def root() -> dict[str, str]:
    """Root endpoint with API info."""
    return {
        "service": "Measure Compiler API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
        "ready": "/ready",
    }
