# ============================================================================
# DATABASE CONNECTION POOL
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - Async PostgreSQL connection management
# PURPOSE: Provide connection pooling for psycopg3 async
# CREATED: 16 OCT 2026
# ============================================================================
"""
Database Connection Pool

Manages async PostgreSQL connections using psycopg3 and psycopg_pool.
One pool per process, owned by the composition root (main.py or
worker/main.py) and passed by reference to repositories and queues.

Connection string resolution: DATABASE_URL, then POSTGRES_* vars.

Usage:
    from repositories.database import init_pool

    pool = await init_pool()
    async with pool.connection() as conn:
        result = await conn.execute("SELECT 1")
"""

import logging
import os
from typing import Optional

from psycopg import sql as psycopg_sql
from psycopg.conninfo import conninfo_to_dict, make_conninfo
from psycopg_pool import AsyncConnectionPool

logger = logging.getLogger(__name__)

_pool: Optional[AsyncConnectionPool] = None


# ============================================================================
# SCHEMA CONSTANTS
# ============================================================================

SCHEMA = os.environ.get("ORCHESTRATOR_DB_SCHEMA", "orchestrator")

# Table identifiers, used with psycopg sql.SQL().format() for injection-safe queries
TABLE_GENERATED = psycopg_sql.Identifier(SCHEMA, "generated_resources")
TABLE_CACHE = psycopg_sql.Identifier(SCHEMA, "context_cache")
TABLE_QUEUE_JOBS = psycopg_sql.Identifier(SCHEMA, "queue_jobs")


# ============================================================================
# CONNECTION STRING
# ============================================================================

def get_connection_string() -> str:
    """DATABASE_URL if set, otherwise built from POSTGRES_* variables."""
    if url := os.environ.get("DATABASE_URL"):
        return url

    return make_conninfo(
        host=os.environ.get("POSTGRES_HOST", "localhost"),
        port=os.environ.get("POSTGRES_PORT", "5432"),
        dbname=os.environ.get("POSTGRES_DB", "postgres"),
        user=os.environ.get("POSTGRES_USER", "postgres"),
        password=os.environ.get("POSTGRES_PASSWORD", ""),
        sslmode=os.environ.get("POSTGRES_SSLMODE", "prefer"),
        application_name="resource-orchestrator",
    )


def mask_conninfo(conninfo: str) -> str:
    """host:port/dbname for logs; never includes credentials."""
    try:
        params = conninfo_to_dict(conninfo)
    except Exception:
        return "<unparseable conninfo>"
    return f"{params.get('host', 'localhost')}:{params.get('port', 5432)}/{params.get('dbname', '')}"


# ============================================================================
# POOL LIFECYCLE
# ============================================================================

async def init_pool(
    min_size: int = 2,
    max_size: int = 10,
    connection_string: Optional[str] = None,
) -> AsyncConnectionPool:
    """
    Open the process-wide connection pool (idempotent).

    Args:
        min_size: Minimum connections to maintain
        max_size: Maximum connections allowed
        connection_string: Override connection string (defaults to env)
    """
    global _pool

    if _pool is not None:
        logger.warning("Pool already initialized, returning existing pool")
        return _pool

    conninfo = connection_string or get_connection_string()
    logger.info(f"Initializing connection pool: {mask_conninfo(conninfo)}")

    pool = AsyncConnectionPool(
        conninfo=conninfo,
        min_size=min_size,
        max_size=max_size,
        name="orchestrator",
        check=AsyncConnectionPool.check_connection,
        open=False,
    )
    await pool.open(wait=True)
    _pool = pool

    logger.info(f"Connection pool opened (min={min_size}, max={max_size})")
    return _pool


async def close_pool() -> None:
    """Close the process-wide connection pool."""
    global _pool

    if _pool is None:
        return
    pool, _pool = _pool, None
    await pool.close()
    logger.info("Connection pool closed")


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "SCHEMA",
    "TABLE_GENERATED",
    "TABLE_CACHE",
    "TABLE_QUEUE_JOBS",
    "get_connection_string",
    "mask_conninfo",
    "init_pool",
    "close_pool",
]
