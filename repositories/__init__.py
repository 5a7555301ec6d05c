# ============================================================================
# REPOSITORIES MODULE
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Data access layer
# PURPOSE: Export storage seams and their implementations
# CREATED: 16 OCT 2026
# ============================================================================
"""
Repositories Module

Data access layer for the resource orchestrator.
Each storage concern has an in-memory and a PostgreSQL implementation.
"""

from .database import init_pool, close_pool, get_connection_string
from .schema import ensure_schema
from .resource_store import (
    ResourceStore,
    ResourceStoreError,
    InMemoryResourceStore,
    PostgresResourceStore,
)
from .cache_repo import CacheStore, InMemoryCacheStore, PostgresCacheStore

__all__ = [
    "init_pool",
    "close_pool",
    "get_connection_string",
    "ensure_schema",
    "ResourceStore",
    "ResourceStoreError",
    "InMemoryResourceStore",
    "PostgresResourceStore",
    "CacheStore",
    "InMemoryCacheStore",
    "PostgresCacheStore",
]
