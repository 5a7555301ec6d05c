# ============================================================================
# RESOURCE ORCHESTRATOR - MAIN APPLICATION
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - FastAPI application entry point
# PURPOSE: Main application with in-process workers
# CREATED: 16 OCT 2026
# ============================================================================
"""
Resource Orchestrator Main Application

FastAPI application that:
1. Loads the resource registry
2. Builds the orchestrator on the configured queue backend
3. Runs workers in-process (unless RUN_WORKERS_IN_PROCESS=false)
4. Serves the HTTP API

Usage:
    uvicorn main:app --host 0.0.0.0 --port 8000

Environment Variables:
    ORCHESTRATOR_BACKEND: "memory" (default) or "postgres"
    RESOURCE_DEFINITIONS_PATH: Registry YAML
    RUN_WORKERS_IN_PROCESS: "false" to leave consumption to worker.main
    AUTO_BOOTSTRAP_SCHEMA: "true" to deploy the schema on startup
"""

import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from __version__ import __version__, BUILD_DATE, EPOCH
from api.routes import router, set_services
from core.config import get_defaults
from core.contracts import QueueBackend
from orchestrator import ResourceOrchestrator
from repositories.database import init_pool, close_pool

# Configure logging using our structured logging system
from core.logging import configure_logging, get_logger

configure_logging(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    json_output=os.environ.get("LOG_FORMAT", "").lower() == "json",
)
logger = get_logger(__name__)

# Global instance
_orchestrator: Optional[ResourceOrchestrator] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Initializes services on startup, cleans up on shutdown.
    """
    global _orchestrator

    defaults = get_defaults()
    config = defaults.orchestrator
    logger.info(
        f"Starting Resource Orchestrator v{__version__} "
        f"(Epoch {EPOCH}, Build {BUILD_DATE}, backend={config.backend.value})"
    )

    pool = None
    if config.backend == QueueBackend.POSTGRES:
        pool = await init_pool(min_size=config.db_pool_min, max_size=config.db_pool_max)
        logger.info("Database pool initialized")
        _orchestrator = await ResourceOrchestrator.create_postgres(pool, defaults=defaults)
    else:
        _orchestrator = ResourceOrchestrator.create(defaults=defaults)

    logger.info(f"Loaded {len(_orchestrator.registry)} resource definitions")

    set_services(_orchestrator)

    await _orchestrator.start(run_workers=config.start_workers)

    yield

    # Shutdown
    logger.info("Shutting down Resource Orchestrator...")

    await _orchestrator.stop()
    if pool is not None:
        await close_pool()

    logger.info("Resource Orchestrator stopped")


# Create FastAPI app
app = FastAPI(
    title="Resource Orchestrator",
    description=f"Epoch {EPOCH} dependency-aware resource generation",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api/v1")


# ============================================================================
# HEALTH
# ============================================================================

@app.get("/livez", tags=["Health"])
async def livez():
    """Liveness: the process is serving requests."""
    return {"status": "alive"}


@app.get("/readyz", tags=["Health"])
async def readyz():
    """Readiness: the orchestrator has been built and started."""
    if _orchestrator is None or not _orchestrator.is_running:
        return JSONResponse({"status": "not_ready"}, status_code=503)
    return {"status": "ready"}


@app.get("/health", tags=["Health"])
async def health():
    """Backend, registry size, queue stats and worker counters."""
    if _orchestrator is None:
        return JSONResponse({"status": "starting", "version": __version__}, status_code=503)

    report = await _orchestrator.check_health()
    report["version"] = __version__
    report["build_date"] = BUILD_DATE
    status_code = 200 if report["status"] == "healthy" else 503
    return JSONResponse(report, status_code=status_code)


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Resource Orchestrator",
        "version": __version__,
        "epoch": EPOCH,
        "build_date": BUILD_DATE,
        "status": "running",
        "docs": "/docs",
    }


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=os.environ.get("RELOAD", "false").lower() == "true",
    )
