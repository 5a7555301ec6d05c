# ============================================================================
# CONTEXT CACHE MODELS
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core model - Cached aggregated context
# PURPOSE: Version-keyed cache entries and cache hits
# CREATED: 16 OCT 2026
# ============================================================================
"""
Context Cache Models

Maps to: orchestrator.context_cache table
Primary Key: (user_id, target_resource_id, resource_version)

Entries for different versions of the same (user, target) coexist until
invalidated or aged out, so a read at the current version never sees an
entry built against an older generated-set.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class CacheEntry(BaseModel):
    """Stored aggregated context for one (user, target, version)."""
    user_id: str
    target_resource_id: str
    resource_version: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    cached_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        """Seconds since the entry was written."""
        now = now or datetime.now(timezone.utc)
        return (now - self.cached_at).total_seconds()


class CachedContext(BaseModel):
    """A cache hit as returned to callers."""
    payload: Dict[str, Any]
    metadata: Dict[str, Any] = Field(default_factory=dict)
    cached_at: datetime
    age_seconds: float
    refresh_recommended: bool = False
    retrieval_time_ms: float = 0.0


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "CacheEntry",
    "CachedContext",
]
