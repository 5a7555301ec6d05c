# ============================================================================
# CONTEXT CACHE
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - Version-keyed cache for aggregated context
# PURPOSE: Avoid re-aggregating generation context for unchanged users
# CREATED: 16 OCT 2026
# ============================================================================
"""
Context Cache

Caches the aggregated context for (user, target resource). Each entry
carries the resource_version it was built against:

    resource_version(user) = sha256(",".join(sorted(generated_ids)))

Entries are keyed by (user, target, version). A read at a version with
no entry is a miss, so recording a new resource implicitly invalidates
everything cached for that user. invalidate_for_user() also deletes the
rows so they do not linger.

Expiry:
    max_age_seconds   hard limit; an entry this old or older is deleted
                      on read (only that version)
    soft_ttl_seconds  hits older than this are served with
                      refresh_recommended=True, and warm_cache()
                      rebuilds them

Failures of the backing store never propagate: reads become misses,
writes are logged and reported as False.
"""

import hashlib
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from core.config import CacheDefaults
from core.logging import log_checkpoint, log_context
from core.models import CacheEntry, CachedContext
from repositories.cache_repo import CacheStore
from repositories.resource_store import ResourceStore

logger = logging.getLogger(__name__)

UNKNOWN_VERSION = "unknown"

AggregateFn = Callable[[str, str], Awaitable[Dict[str, Any]]]

# Payload keys copied into entry metadata when present
_METADATA_KEYS = ("total_tokens", "token_breakdown", "aggregation_time_ms")


def compute_resource_version(resource_ids: Iterable[str]) -> str:
    """Deterministic hash of a generated-id set (order-insensitive)."""
    joined = ",".join(sorted(set(resource_ids)))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContextCache:
    """Version-keyed cache over a CacheStore."""

    def __init__(
        self,
        store: CacheStore,
        resource_store: ResourceStore,
        defaults: Optional[CacheDefaults] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.resource_store = resource_store
        self.defaults = defaults or CacheDefaults()
        self._clock = clock

        # Performance counters
        self._hits = 0
        self._misses = 0
        self._expired = 0
        self._write_failures = 0

    @property
    def max_age(self) -> timedelta:
        return timedelta(seconds=self.defaults.max_age_seconds)

    # =========================================================================
    # VERSIONING
    # =========================================================================

    async def resource_version(self, user_id: str) -> str:
        """
        Current resource version for a user.

        Returns UNKNOWN_VERSION if the Resource Store cannot be read;
        set() refuses to write under that version.
        """
        try:
            resource_ids = await self.resource_store.list_generated_ids(user_id)
        except Exception as e:
            logger.warning(f"Could not compute resource version for {user_id}: {e}")
            return UNKNOWN_VERSION
        return compute_resource_version(resource_ids)

    # =========================================================================
    # READ / WRITE
    # =========================================================================

    async def get(self, user_id: str, target_id: str, version: str) -> Optional[CachedContext]:
        """
        Cached context for (user, target) built against version.

        Returns:
            CachedContext on hit, None on miss
        """
        start = time.perf_counter()
        try:
            entry = await self.store.get(user_id, target_id, version)
        except Exception as e:
            logger.warning(f"Cache read failed for {user_id}/{target_id}: {e}")
            self._misses += 1
            return None

        if entry is None:
            self._misses += 1
            return None

        now = self._clock()
        age = entry.age_seconds(now)

        if age >= self.defaults.max_age_seconds:
            self._expired += 1
            self._misses += 1
            logger.info(f"Cache entry expired for {user_id}/{target_id} (age {age:.0f}s)")
            await self._delete_quietly(user_id, target_id, version)
            return None

        self._hits += 1
        return CachedContext(
            payload=entry.payload,
            metadata=entry.metadata,
            cached_at=entry.cached_at,
            age_seconds=age,
            refresh_recommended=age >= self.defaults.soft_ttl_seconds,
            retrieval_time_ms=round((time.perf_counter() - start) * 1000, 3),
        )

    async def set(
        self,
        user_id: str,
        target_id: str,
        version: str,
        payload: Dict[str, Any],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Upsert the entry for (user, target, version).

        Returns:
            True if stored, False if skipped or the write failed
        """
        if version == UNKNOWN_VERSION:
            logger.warning(f"Not caching {user_id}/{target_id}: resource version unknown")
            return False

        enriched = dict(metadata or {})
        for key in _METADATA_KEYS:
            if key in payload and key not in enriched:
                enriched[key] = payload[key]

        entry = CacheEntry(
            user_id=user_id,
            target_resource_id=target_id,
            resource_version=version,
            payload=payload,
            metadata=enriched,
            cached_at=self._clock(),
        )
        try:
            await self.store.upsert(entry)
        except Exception as e:
            self._write_failures += 1
            logger.warning(f"Cache write failed for {user_id}/{target_id}: {e}")
            return False

        logger.debug(f"Cached context for {user_id}/{target_id}")
        return True

    async def get_or_compute(
        self,
        user_id: str,
        target_id: str,
        aggregate_fn: AggregateFn,
        use_cache: bool = True,
    ) -> CachedContext:
        """
        Serve from cache or aggregate and store.

        Aggregation errors propagate to the caller (the job handler),
        where they drive the queue's retry policy.
        """
        version = await self.resource_version(user_id)

        if use_cache:
            cached = await self.get(user_id, target_id, version)
            if cached is not None:
                log_checkpoint("context_cache_hit", {"age_seconds": round(cached.age_seconds)})
                return cached

        start = time.perf_counter()
        payload = await aggregate_fn(user_id, target_id)
        elapsed_ms = round((time.perf_counter() - start) * 1000, 3)
        payload.setdefault("aggregation_time_ms", elapsed_ms)

        if use_cache:
            await self.set(user_id, target_id, version, payload)

        return CachedContext(
            payload=payload,
            metadata={"cached": False},
            cached_at=self._clock(),
            age_seconds=0.0,
        )

    # =========================================================================
    # INVALIDATION
    # =========================================================================

    async def invalidate_for_user(self, user_id: str) -> int:
        """
        Delete every entry for a user.

        Call whenever a resource is recorded as generated.

        Returns:
            Number of entries deleted (0 if the store failed)
        """
        try:
            count = await self.store.delete_for_user(user_id)
        except Exception as e:
            logger.error(f"Cache invalidation failed for {user_id}: {e}")
            return 0
        logger.info(f"Invalidated {count} cache entries for user {user_id}")
        return count

    async def invalidate_entry(self, user_id: str, target_id: str, version: Optional[str] = None) -> bool:
        """Delete one version of an entry, or all versions of it."""
        try:
            return await self.store.delete(user_id, target_id, version)
        except Exception as e:
            logger.error(f"Cache entry invalidation failed for {user_id}/{target_id}: {e}")
            return False

    async def cleanup_expired(self, max_age_seconds: Optional[int] = None) -> int:
        """
        Global sweep of entries older than max_age_seconds.

        Intended for periodic background execution.
        """
        max_age_seconds = max_age_seconds if max_age_seconds is not None else self.defaults.max_age_seconds
        cutoff = self._clock() - timedelta(seconds=max_age_seconds)
        try:
            count = await self.store.delete_older_than(cutoff)
        except Exception as e:
            logger.error(f"Cache cleanup failed: {e}")
            return 0
        if count:
            logger.info(f"Cache cleanup removed {count} entries older than {max_age_seconds}s")
        return count

    async def _delete_quietly(self, user_id: str, target_id: str, version: str) -> None:
        try:
            await self.store.delete(user_id, target_id, version)
        except Exception as e:
            logger.warning(f"Failed to delete expired cache entry {user_id}/{target_id}: {e}")

    # =========================================================================
    # WARMING
    # =========================================================================

    async def warm_cache(
        self,
        user_id: str,
        predicted_ids: Iterable[str],
        aggregate_fn: AggregateFn,
        version: Optional[str] = None,
    ) -> int:
        """
        Pre-populate entries for resources the user is likely to generate.

        Fresh entries are skipped; entries past the soft TTL are rebuilt.
        A failure for one id is logged and the rest still run.

        Returns:
            Number of entries written
        """
        if version is None:
            version = await self.resource_version(user_id)

        warmed = 0
        with log_context(user_id=user_id, operation="warm_cache"):
            for target_id in predicted_ids:
                existing = await self.get(user_id, target_id, version)
                if existing is not None and not existing.refresh_recommended:
                    continue
                try:
                    payload = await aggregate_fn(user_id, target_id)
                except Exception as e:
                    logger.warning(f"Cache warming failed for {target_id}: {e}")
                    continue
                if await self.set(user_id, target_id, version, payload, {"warmed": True}):
                    warmed += 1

        logger.info(f"Warmed {warmed} cache entries for user {user_id}")
        return warmed

    # =========================================================================
    # STATS
    # =========================================================================

    async def get_stats(self, user_id: str) -> Dict[str, Any]:
        """Entry count and ages for one user."""
        entries = await self.store.list_for_user(user_id)
        now = self._clock()
        ages = [entry.age_seconds(now) for entry in entries]

        return {
            "user_id": user_id,
            "total_entries": len(entries),
            "entries": [
                {
                    "target_resource_id": entry.target_resource_id,
                    "resource_version": entry.resource_version,
                    "cached_at": entry.cached_at,
                    "age_seconds": round(age),
                    "total_tokens": entry.metadata.get("total_tokens"),
                    "expired": age >= self.defaults.max_age_seconds,
                }
                for entry, age in zip(entries, ages)
            ],
            "average_age_seconds": round(sum(ages) / len(ages)) if ages else 0,
            "oldest_age_seconds": round(max(ages)) if ages else 0,
            "newest_age_seconds": round(min(ages)) if ages else 0,
        }

    def performance_metrics(self) -> Dict[str, Any]:
        """Process-local hit/miss counters."""
        lookups = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "expired": self._expired,
            "write_failures": self._write_failures,
            "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
        }


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ContextCache",
    "AggregateFn",
    "UNKNOWN_VERSION",
    "compute_resource_version",
]
