# ============================================================================
# CONTEXT CACHE REPOSITORY
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - Cache entry persistence
# PURPOSE: CRUD for context_cache entries (in-memory and PostgreSQL)
# CREATED: 16 OCT 2026
# ============================================================================
"""
Context Cache Repository

Storage for CacheEntry rows keyed by (user_id, target_resource_id,
resource_version). Expiry checks live in services.context_cache; this
layer only reads, upserts and deletes.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Json
from psycopg_pool import AsyncConnectionPool

from core.models import CacheEntry
from .database import TABLE_CACHE

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str, str]


@runtime_checkable
class CacheStore(Protocol):
    """Storage seam consumed by ContextCache."""

    async def get(self, user_id: str, target_resource_id: str, resource_version: str) -> Optional[CacheEntry]: ...

    async def upsert(self, entry: CacheEntry) -> None: ...

    async def delete(
        self, user_id: str, target_resource_id: str, resource_version: Optional[str] = None
    ) -> bool: ...

    async def delete_for_user(self, user_id: str) -> int: ...

    async def delete_older_than(self, cutoff: datetime) -> int: ...

    async def list_for_user(self, user_id: str) -> List[CacheEntry]: ...


class InMemoryCacheStore:
    """Dict-backed cache store keyed by (user_id, target_resource_id, resource_version)."""

    def __init__(self):
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._lock = asyncio.Lock()

    async def get(self, user_id: str, target_resource_id: str, resource_version: str) -> Optional[CacheEntry]:
        return self._entries.get((user_id, target_resource_id, resource_version))

    async def upsert(self, entry: CacheEntry) -> None:
        async with self._lock:
            self._entries[(entry.user_id, entry.target_resource_id, entry.resource_version)] = entry

    async def delete(
        self, user_id: str, target_resource_id: str, resource_version: Optional[str] = None
    ) -> bool:
        """Delete one version, or every version of the target when resource_version is None."""
        async with self._lock:
            keys = [
                key for key in self._entries
                if key[:2] == (user_id, target_resource_id)
                and (resource_version is None or key[2] == resource_version)
            ]
            for key in keys:
                del self._entries[key]
            return bool(keys)

    async def delete_for_user(self, user_id: str) -> int:
        async with self._lock:
            keys = [key for key in self._entries if key[0] == user_id]
            for key in keys:
                del self._entries[key]
            return len(keys)

    async def delete_older_than(self, cutoff: datetime) -> int:
        async with self._lock:
            keys = [key for key, entry in self._entries.items() if entry.cached_at < cutoff]
            for key in keys:
                del self._entries[key]
            return len(keys)

    async def list_for_user(self, user_id: str) -> List[CacheEntry]:
        return [entry for key, entry in self._entries.items() if key[0] == user_id]


class PostgresCacheStore:
    """Repository for the context_cache table."""

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    async def get(self, user_id: str, target_resource_id: str, resource_version: str) -> Optional[CacheEntry]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT * FROM {}
                WHERE user_id = %s AND target_resource_id = %s AND resource_version = %s
                """).format(TABLE_CACHE),
                (user_id, target_resource_id, resource_version),
            )
            row = await result.fetchone()

            if row is None:
                return None

            return self._row_to_entry(row)

    async def upsert(self, entry: CacheEntry) -> None:
        async with self.pool.connection() as conn:
            await conn.execute(
                sql.SQL("""
                INSERT INTO {} (
                    user_id, target_resource_id, resource_version,
                    payload, metadata, cached_at
                ) VALUES (
                    %(user_id)s, %(target_resource_id)s, %(resource_version)s,
                    %(payload)s, %(metadata)s, %(cached_at)s
                )
                ON CONFLICT (user_id, target_resource_id, resource_version) DO UPDATE SET
                    payload = EXCLUDED.payload,
                    metadata = EXCLUDED.metadata,
                    cached_at = EXCLUDED.cached_at
                """).format(TABLE_CACHE),
                {
                    "user_id": entry.user_id,
                    "target_resource_id": entry.target_resource_id,
                    "resource_version": entry.resource_version,
                    "payload": Json(entry.payload),
                    "metadata": Json(entry.metadata),
                    "cached_at": entry.cached_at,
                },
            )

    async def delete(
        self, user_id: str, target_resource_id: str, resource_version: Optional[str] = None
    ) -> bool:
        query = sql.SQL("DELETE FROM {} WHERE user_id = %s AND target_resource_id = %s").format(TABLE_CACHE)
        params: Tuple[str, ...] = (user_id, target_resource_id)
        if resource_version is not None:
            query = query + sql.SQL(" AND resource_version = %s")
            params = params + (resource_version,)

        async with self.pool.connection() as conn:
            result = await conn.execute(query, params)
            return result.rowcount > 0

    async def delete_for_user(self, user_id: str) -> int:
        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("DELETE FROM {} WHERE user_id = %s").format(TABLE_CACHE),
                (user_id,),
            )
            return result.rowcount

    async def delete_older_than(self, cutoff: datetime) -> int:
        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("DELETE FROM {} WHERE cached_at < %s").format(TABLE_CACHE),
                (cutoff,),
            )
            return result.rowcount

    async def list_for_user(self, user_id: str) -> List[CacheEntry]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL(
                    "SELECT * FROM {} WHERE user_id = %s ORDER BY cached_at DESC"
                ).format(TABLE_CACHE),
                (user_id,),
            )
            rows = await result.fetchall()
            return [self._row_to_entry(row) for row in rows]

    def _row_to_entry(self, row: Dict[str, Any]) -> CacheEntry:
        return CacheEntry(
            user_id=row["user_id"],
            target_resource_id=row["target_resource_id"],
            resource_version=row["resource_version"],
            payload=row["payload"] or {},
            metadata=row["metadata"] or {},
            cached_at=row["cached_at"],
        )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "CacheStore",
    "InMemoryCacheStore",
    "PostgresCacheStore",
]
