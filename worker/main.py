# ============================================================================
# WORKER MAIN ENTRY POINT
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - Worker process entry point
# PURPOSE: Consume the durable queues in a standalone process
# CREATED: 16 OCT 2026
# ============================================================================
"""
Worker Main Entry Point

Starts a worker process that:
1. Connects to PostgreSQL
2. Builds the orchestrator on the postgres backend
3. Consumes every queue until shutdown

Only the postgres backend can be consumed from a separate process; the
memory backend runs its workers inside the API process.

Usage:
    python -m worker.main

Environment Variables:
    DATABASE_URL or POSTGRES_*: PostgreSQL connection
    WORKER_ID: Unique worker identifier (default: hostname-pid)
    WORKER_CONCURRENCY: Concurrent jobs per queue
    PORT: Health server port (default 8001)
"""

import asyncio
import os
import signal
import sys
from typing import Optional
from aiohttp import web

from core.config import get_defaults
from orchestrator import ResourceOrchestrator
from queues.postgres import default_worker_id
from repositories.database import init_pool, close_pool

# Configure logging using our structured logging system
from core.logging import configure_logging, get_logger
from __version__ import __version__, BUILD_DATE

configure_logging(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    json_output=os.environ.get("LOG_FORMAT", "").lower() == "json",
)
logger = get_logger(__name__)

# Worker state for health checks
_worker_healthy = True
_worker_status = "starting"
_worker_id: Optional[str] = None
_orchestrator: Optional[ResourceOrchestrator] = None


# ============================================================================
# HEALTH SERVER
# ============================================================================

async def livez_handler(request):
    """Liveness: the process and its event loop respond."""
    return web.json_response({"status": "alive", "worker_id": _worker_id or "unknown"})


async def readyz_handler(request):
    """Readiness: consumers are running on every queue."""
    ready = _orchestrator is not None and _orchestrator.is_running
    return web.json_response({"status": "ready" if ready else _worker_status}, status=200 if ready else 503)


async def health_handler(request):
    """Version, worker id and per-queue worker counters."""
    response_data = {
        "status": "healthy" if _worker_healthy else "unhealthy",
        "worker_status": _worker_status,
        "version": __version__,
        "build_date": BUILD_DATE,
        "worker_id": _worker_id or "unknown",
    }
    if _orchestrator is not None:
        response_data["workers"] = [w.get_status() for w in _orchestrator.workers]

    return web.json_response(response_data, status=200 if _worker_healthy else 503)


async def start_health_server(port: int = 8001):
    """Start minimal HTTP server for health probes."""
    app = web.Application()
    app.router.add_get("/", health_handler)
    app.router.add_get("/health", health_handler)
    app.router.add_get("/livez", livez_handler)
    app.router.add_get("/readyz", readyz_handler)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", port)
    await site.start()
    logger.info(f"Health server started on port {port}")
    return runner


# ============================================================================
# MAIN
# ============================================================================

async def main() -> None:
    """Main entry point."""
    global _worker_healthy, _worker_status, _worker_id, _orchestrator

    logger.info("=" * 60)
    logger.info(f"Resource Worker Starting v{__version__}")
    logger.info("=" * 60)

    health_port = int(os.environ.get("PORT", "8001"))
    health_runner = await start_health_server(health_port)

    defaults = get_defaults()
    _worker_id = os.environ.get("WORKER_ID") or default_worker_id()
    logger.info(f"Worker ID: {_worker_id}")
    logger.info(f"Concurrency: {defaults.worker.concurrency}")

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass

    pool = None
    try:
        pool = await init_pool(
            min_size=defaults.orchestrator.db_pool_min,
            max_size=defaults.orchestrator.db_pool_max,
        )
        _orchestrator = await ResourceOrchestrator.create_postgres(
            pool,
            defaults=defaults,
            worker_id=_worker_id,
        )
        await _orchestrator.start(run_workers=True)
        _worker_status = "running"

        await stop_event.wait()
        logger.info("Shutdown signal received")
        _worker_status = "stopping"
    except Exception as e:
        logger.exception(f"Worker failed: {e}")
        _worker_healthy = False
        _worker_status = f"error: {str(e)[:100]}"
        sys.exit(1)
    finally:
        if _orchestrator is not None:
            await _orchestrator.stop()
        if pool is not None:
            await close_pool()
        await health_runner.cleanup()

    logger.info("Resource Worker stopped")


def run() -> None:
    """Synchronous entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
