# ============================================================================
# SCHEMA DDL
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - Table definitions for the durable backend
# PURPOSE: Create the orchestrator schema idempotently
# CREATED: 16 OCT 2026
# ============================================================================
"""
Schema DDL

Tables:
    generated_resources - Resource Store (one row per user/resource)
    context_cache       - Aggregated context, keyed by (user, target)
    queue_jobs          - Durable job queue

Every statement is idempotent (IF NOT EXISTS) so ensure_schema() can run
on every startup.
"""

import logging
from typing import List

from psycopg import sql
from psycopg_pool import AsyncConnectionPool

from .database import SCHEMA, TABLE_CACHE, TABLE_GENERATED, TABLE_QUEUE_JOBS

logger = logging.getLogger(__name__)


def build_statements() -> List[sql.Composed]:
    """Return the ordered list of DDL statements."""
    return [
        sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(sql.Identifier(SCHEMA)),

        sql.SQL("""
        CREATE TABLE IF NOT EXISTS {} (
            user_id         VARCHAR(128) NOT NULL,
            resource_id     VARCHAR(128) NOT NULL,
            generated_at    TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            summary         JSONB,
            PRIMARY KEY (user_id, resource_id)
        )
        """).format(TABLE_GENERATED),
        sql.SQL(
            "CREATE INDEX IF NOT EXISTS idx_generated_user_time ON {} (user_id, generated_at)"
        ).format(TABLE_GENERATED),

        sql.SQL("""
        CREATE TABLE IF NOT EXISTS {} (
            user_id             VARCHAR(128) NOT NULL,
            target_resource_id  VARCHAR(128) NOT NULL,
            resource_version    VARCHAR(64) NOT NULL,
            payload             JSONB NOT NULL,
            metadata            JSONB NOT NULL DEFAULT '{{}}'::jsonb,
            cached_at           TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            PRIMARY KEY (user_id, target_resource_id, resource_version)
        )
        """).format(TABLE_CACHE),
        sql.SQL(
            "CREATE INDEX IF NOT EXISTS idx_context_cache_age ON {} (cached_at)"
        ).format(TABLE_CACHE),

        sql.SQL("""
        CREATE TABLE IF NOT EXISTS {} (
            job_id              VARCHAR(256) PRIMARY KEY,
            queue_name          VARCHAR(64) NOT NULL,
            job_type            VARCHAR(64) NOT NULL,
            payload             JSONB NOT NULL DEFAULT '{{}}'::jsonb,
            state               VARCHAR(16) NOT NULL DEFAULT 'waiting',
            progress            INTEGER NOT NULL DEFAULT 0,
            attempts_made       INTEGER NOT NULL DEFAULT 0,
            max_attempts        INTEGER NOT NULL DEFAULT 1,
            backoff             JSONB NOT NULL DEFAULT '{{}}'::jsonb,
            remove_on_complete  JSONB NOT NULL DEFAULT '{{}}'::jsonb,
            remove_on_fail      JSONB NOT NULL DEFAULT '{{}}'::jsonb,
            dedupe_key          VARCHAR(256),
            result              JSONB,
            failed_reason       VARCHAR(2000),
            locked_by           VARCHAR(128),
            heartbeat_at        TIMESTAMPTZ,
            created_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            run_at              TIMESTAMPTZ,
            processed_at        TIMESTAMPTZ,
            finished_at         TIMESTAMPTZ,
            updated_at          TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
        """).format(TABLE_QUEUE_JOBS),
        sql.SQL(
            "CREATE INDEX IF NOT EXISTS idx_queue_jobs_dequeue ON {} (queue_name, state, created_at)"
        ).format(TABLE_QUEUE_JOBS),
        sql.SQL(
            "CREATE INDEX IF NOT EXISTS idx_queue_jobs_run_at ON {} (queue_name, run_at) "
            "WHERE state = 'delayed'"
        ).format(TABLE_QUEUE_JOBS),
        # One live job per dedupe key; terminal rows release the reservation
        sql.SQL(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_queue_jobs_dedupe ON {} (queue_name, dedupe_key) "
            "WHERE dedupe_key IS NOT NULL AND state IN ('waiting', 'active', 'delayed')"
        ).format(TABLE_QUEUE_JOBS),
    ]


async def ensure_schema(pool: AsyncConnectionPool) -> int:
    """
    Create schema objects that do not exist yet.

    Returns:
        Number of statements executed
    """
    statements = build_statements()
    async with pool.connection() as conn:
        for statement in statements:
            await conn.execute(statement)
    logger.info(f"Schema '{SCHEMA}' ensured ({len(statements)} statements)")
    return len(statements)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "build_statements",
    "ensure_schema",
]
