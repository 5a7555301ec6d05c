# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - Default configuration values
# PURPOSE: Centralized defaults for queues, cache, workers and backend choice
# CREATED: 16 OCT 2026
# ============================================================================
"""
Configuration Defaults

Provides defaults for the queue tuning table, the context cache and
worker polling. All of them can be overridden via environment variables.

Design:
- Immutable dataclasses for defaults
- Environment variable overrides
- Type-safe access
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from core.contracts import BackoffType, QueueBackend


HOUR_SECONDS = 60 * 60
DAY_SECONDS = 24 * HOUR_SECONDS


class QueueName:
    """Names of the queues this system runs."""
    RESOURCE_GENERATION = "resource-generation"
    CONTEXT_WARMING = "context-warming"
    BATCH_GENERATION = "batch-generation"


@dataclass(frozen=True)
class QueueTuning:
    """
    Default job options for one queue.

    Call-site options passed to JobQueue.add() override these per job.
    """
    name: str
    prefix: str
    attempts: int = 3
    backoff_type: BackoffType = BackoffType.EXPONENTIAL
    backoff_delay_ms: int = 2000
    complete_retention_seconds: int = DAY_SECONDS
    complete_retention_count: Optional[int] = 100
    fail_retention_seconds: int = 7 * DAY_SECONDS
    fail_retention_count: Optional[int] = None


@dataclass(frozen=True)
class QueueDefaults:
    """
    Per-queue tuning table.

    - AI-backed generation: 2 attempts, 5s exponential backoff base
    - Default (cache warming): 3 attempts, 2s base
    - Batch: 1 attempt (items tracked individually), longer retention
    """
    generation: QueueTuning = field(default_factory=lambda: QueueTuning(
        name=QueueName.RESOURCE_GENERATION,
        prefix="generation",
        attempts=2,
        backoff_delay_ms=5000,
    ))
    warming: QueueTuning = field(default_factory=lambda: QueueTuning(
        name=QueueName.CONTEXT_WARMING,
        prefix="warm",
        attempts=3,
        backoff_delay_ms=2000,
    ))
    batch: QueueTuning = field(default_factory=lambda: QueueTuning(
        name=QueueName.BATCH_GENERATION,
        prefix="batch",
        attempts=1,
        backoff_delay_ms=0,
        complete_retention_seconds=2 * DAY_SECONDS,
        complete_retention_count=50,
    ))

    def all(self) -> Dict[str, QueueTuning]:
        """Tuning keyed by queue name."""
        return {t.name: t for t in (self.generation, self.warming, self.batch)}

    @classmethod
    def from_env(cls) -> "QueueDefaults":
        """Create from environment variables."""
        return cls(
            generation=QueueTuning(
                name=QueueName.RESOURCE_GENERATION,
                prefix="generation",
                attempts=int(os.getenv("GENERATION_QUEUE_ATTEMPTS", 2)),
                backoff_delay_ms=int(os.getenv("GENERATION_QUEUE_BACKOFF_MS", 5000)),
            ),
            warming=QueueTuning(
                name=QueueName.CONTEXT_WARMING,
                prefix="warm",
                attempts=int(os.getenv("WARMING_QUEUE_ATTEMPTS", 3)),
                backoff_delay_ms=int(os.getenv("WARMING_QUEUE_BACKOFF_MS", 2000)),
            ),
            batch=QueueTuning(
                name=QueueName.BATCH_GENERATION,
                prefix="batch",
                attempts=1,
                backoff_delay_ms=0,
                complete_retention_seconds=2 * DAY_SECONDS,
                complete_retention_count=50,
            ),
        )


@dataclass(frozen=True)
class CacheDefaults:
    """
    Defaults for the context cache.

    max_age_seconds is the hard expiry. Entries older than
    soft_ttl_seconds are still served but flagged for refresh.
    """
    max_age_seconds: int = DAY_SECONDS
    soft_ttl_seconds: int = HOUR_SECONDS
    optional_summary_chars: int = 500

    @classmethod
    def from_env(cls) -> "CacheDefaults":
        """Create from environment variables."""
        return cls(
            max_age_seconds=int(os.getenv("CACHE_MAX_AGE_SECONDS", DAY_SECONDS)),
            soft_ttl_seconds=int(os.getenv("CACHE_SOFT_TTL_SECONDS", HOUR_SECONDS)),
            optional_summary_chars=int(os.getenv("CACHE_OPTIONAL_SUMMARY_CHARS", 500)),
        )


@dataclass(frozen=True)
class WorkerDefaults:
    """
    Defaults for worker processes.

    Polling and stall detection only apply to the durable backend.
    """
    concurrency: int = 1
    poll_interval_seconds: float = 1.0
    heartbeat_interval_seconds: float = 15.0
    stall_seconds: int = 120
    retention_sweep_seconds: float = 300.0
    shutdown_timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> "WorkerDefaults":
        """Create from environment variables."""
        return cls(
            concurrency=int(os.getenv("WORKER_CONCURRENCY", 1)),
            poll_interval_seconds=float(os.getenv("QUEUE_POLL_INTERVAL", 1.0)),
            heartbeat_interval_seconds=float(os.getenv("QUEUE_HEARTBEAT_INTERVAL", 15.0)),
            stall_seconds=int(os.getenv("QUEUE_STALL_SECONDS", 120)),
            retention_sweep_seconds=float(os.getenv("QUEUE_RETENTION_SWEEP_SECONDS", 300.0)),
            shutdown_timeout_seconds=float(os.getenv("WORKER_SHUTDOWN_TIMEOUT", 30.0)),
        )


def _default_definitions_path() -> str:
    return str(Path(__file__).resolve().parent.parent.parent / "definitions" / "resources.yaml")


@dataclass(frozen=True)
class OrchestratorConfig:
    """
    Process-level configuration.

    The queue backend is chosen here once and never mixed within
    a running process.
    """
    backend: QueueBackend = QueueBackend.MEMORY
    definitions_path: str = field(default_factory=_default_definitions_path)
    db_pool_min: int = 2
    db_pool_max: int = 10
    auto_bootstrap_schema: bool = False
    start_workers: bool = True

    @classmethod
    def from_env(cls) -> "OrchestratorConfig":
        """Create from environment variables."""
        backend_name = os.getenv("ORCHESTRATOR_BACKEND", QueueBackend.MEMORY.value).lower()
        try:
            backend = QueueBackend(backend_name)
        except ValueError:
            raise ValueError(
                f"ORCHESTRATOR_BACKEND must be one of "
                f"{[b.value for b in QueueBackend]}, got {backend_name!r}"
            )
        return cls(
            backend=backend,
            definitions_path=os.getenv("RESOURCE_DEFINITIONS_PATH", _default_definitions_path()),
            db_pool_min=int(os.getenv("DB_POOL_MIN", 2)),
            db_pool_max=int(os.getenv("DB_POOL_MAX", 10)),
            auto_bootstrap_schema=os.getenv("AUTO_BOOTSTRAP_SCHEMA", "false").lower() == "true",
            start_workers=os.getenv("RUN_WORKERS_IN_PROCESS", "true").lower() == "true",
        )


# ============================================================================
# GLOBAL DEFAULTS INSTANCE
# ============================================================================

@dataclass
class Defaults:
    """Container for all default configurations."""
    queues: QueueDefaults = field(default_factory=QueueDefaults)
    cache: CacheDefaults = field(default_factory=CacheDefaults)
    worker: WorkerDefaults = field(default_factory=WorkerDefaults)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)

    @classmethod
    def from_env(cls) -> "Defaults":
        """Create all defaults from environment variables."""
        return cls(
            queues=QueueDefaults.from_env(),
            cache=CacheDefaults.from_env(),
            worker=WorkerDefaults.from_env(),
            orchestrator=OrchestratorConfig.from_env(),
        )


_defaults: Optional[Defaults] = None


def get_defaults() -> Defaults:
    """Get global defaults instance."""
    global _defaults
    if _defaults is None:
        _defaults = Defaults.from_env()
    return _defaults


def reset_defaults() -> None:
    """Reset defaults (for testing)."""
    global _defaults
    _defaults = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "HOUR_SECONDS",
    "DAY_SECONDS",
    "QueueName",
    "QueueTuning",
    "QueueDefaults",
    "CacheDefaults",
    "WorkerDefaults",
    "OrchestratorConfig",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
