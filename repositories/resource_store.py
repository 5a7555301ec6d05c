# ============================================================================
# RESOURCE STORE
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - Generated-resource persistence
# PURPOSE: Read a user's generated set, record new resources
# CREATED: 16 OCT 2026
# ============================================================================
"""
Resource Store

The validator and the context cache only need two things from storage:
the ordered list of resources a user has generated, and a way to record
a new one. ResourceStore is that seam; two implementations are provided.

    InMemoryResourceStore   - tests and single-process runs
    PostgresResourceStore   - generated_resources table
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Union, runtime_checkable

from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Json
from psycopg_pool import AsyncConnectionPool

from core.models import GeneratedResourceRecord
from .database import TABLE_GENERATED

logger = logging.getLogger(__name__)

Summary = Optional[Union[str, Dict[str, Any]]]


class ResourceStoreError(Exception):
    """Raised when the Resource Store cannot be read or written."""
    pass


@runtime_checkable
class ResourceStore(Protocol):
    """Storage seam consumed by the validator and the context cache."""

    async def list_generated(self, user_id: str) -> List[GeneratedResourceRecord]:
        """User's generated resources, oldest first."""
        ...

    async def list_generated_ids(self, user_id: str) -> List[str]:
        """User's generated resource ids, oldest first."""
        ...

    async def record_generated(
        self,
        user_id: str,
        resource_id: str,
        summary: Summary = None,
    ) -> GeneratedResourceRecord:
        """Insert or refresh a generated resource."""
        ...


# ============================================================================
# IN-MEMORY
# ============================================================================

class InMemoryResourceStore:
    """Dict-backed store; state is lost on restart."""

    def __init__(self):
        self._records: Dict[str, Dict[str, GeneratedResourceRecord]] = {}
        self._lock = asyncio.Lock()

    async def list_generated(self, user_id: str) -> List[GeneratedResourceRecord]:
        records = self._records.get(user_id, {})
        return sorted(records.values(), key=lambda r: r.generated_at)

    async def list_generated_ids(self, user_id: str) -> List[str]:
        return [r.resource_id for r in await self.list_generated(user_id)]

    async def record_generated(
        self,
        user_id: str,
        resource_id: str,
        summary: Summary = None,
    ) -> GeneratedResourceRecord:
        record = GeneratedResourceRecord(
            user_id=user_id,
            resource_id=resource_id,
            generated_at=datetime.now(timezone.utc),
            summary=summary,
        )
        async with self._lock:
            self._records.setdefault(user_id, {})[resource_id] = record
        logger.debug(f"Recorded {resource_id} for user {user_id}")
        return record

    async def seed(self, user_id: str, resource_ids: List[str]) -> None:
        """Mark resources (typically onboarding inputs) as present."""
        for resource_id in resource_ids:
            await self.record_generated(user_id, resource_id)


# ============================================================================
# POSTGRES
# ============================================================================

class PostgresResourceStore:
    """Repository for the generated_resources table."""

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    async def list_generated(self, user_id: str) -> List[GeneratedResourceRecord]:
        try:
            async with self.pool.connection() as conn:
                conn.row_factory = dict_row
                result = await conn.execute(
                    sql.SQL("""
                    SELECT user_id, resource_id, generated_at, summary
                    FROM {}
                    WHERE user_id = %s
                    ORDER BY generated_at, resource_id
                    """).format(TABLE_GENERATED),
                    (user_id,),
                )
                rows = await result.fetchall()
        except Exception as e:
            raise ResourceStoreError(f"Failed to read generated resources for {user_id}: {e}") from e

        return [self._row_to_record(row) for row in rows]

    async def list_generated_ids(self, user_id: str) -> List[str]:
        return [r.resource_id for r in await self.list_generated(user_id)]

    async def record_generated(
        self,
        user_id: str,
        resource_id: str,
        summary: Summary = None,
    ) -> GeneratedResourceRecord:
        record = GeneratedResourceRecord(
            user_id=user_id,
            resource_id=resource_id,
            generated_at=datetime.now(timezone.utc),
            summary=summary,
        )
        try:
            async with self.pool.connection() as conn:
                await conn.execute(
                    sql.SQL("""
                    INSERT INTO {} (user_id, resource_id, generated_at, summary)
                    VALUES (%(user_id)s, %(resource_id)s, %(generated_at)s, %(summary)s)
                    ON CONFLICT (user_id, resource_id) DO UPDATE SET
                        generated_at = EXCLUDED.generated_at,
                        summary = EXCLUDED.summary
                    """).format(TABLE_GENERATED),
                    {
                        "user_id": user_id,
                        "resource_id": resource_id,
                        "generated_at": record.generated_at,
                        "summary": Json(summary) if summary is not None else None,
                    },
                )
        except Exception as e:
            raise ResourceStoreError(f"Failed to record {resource_id} for {user_id}: {e}") from e

        logger.info(f"Recorded generated resource {resource_id} for user {user_id}")
        return record

    def _row_to_record(self, row: Dict[str, Any]) -> GeneratedResourceRecord:
        return GeneratedResourceRecord(
            user_id=row["user_id"],
            resource_id=row["resource_id"],
            generated_at=row["generated_at"],
            summary=row.get("summary"),
        )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ResourceStore",
    "ResourceStoreError",
    "InMemoryResourceStore",
    "PostgresResourceStore",
]
