# ============================================================================
# QUEUE FACTORY
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - Backend selection
# PURPOSE: Build the named queues for the configured backend
# CREATED: 16 OCT 2026
# ============================================================================
"""
Queue Factory

Turns the per-queue tuning table into JobQueue instances for one backend.
QueueSet groups them so callers can find a queue by name or by the prefix
of one of its job ids.
"""

import logging
from typing import Dict, Iterator, Optional

from core.config import QueueDefaults, QueueTuning, WorkerDefaults
from core.contracts import QueueBackend
from core.models import BackoffPolicy, JobOptions, RetentionPolicy
from .base import JobQueue
from .memory import InMemoryJobQueue
from .postgres import PostgresJobQueue

logger = logging.getLogger(__name__)


def options_from_tuning(tuning: QueueTuning) -> JobOptions:
    """Default job options for a queue."""
    return JobOptions(
        attempts=tuning.attempts,
        backoff=BackoffPolicy(type=tuning.backoff_type, delay_ms=tuning.backoff_delay_ms),
        remove_on_complete=RetentionPolicy(
            age_seconds=tuning.complete_retention_seconds,
            count=tuning.complete_retention_count,
        ),
        remove_on_fail=RetentionPolicy(
            age_seconds=tuning.fail_retention_seconds,
            count=tuning.fail_retention_count,
        ),
    )


def build_queue(
    tuning: QueueTuning,
    backend: QueueBackend,
    pool=None,
    worker_defaults: Optional[WorkerDefaults] = None,
    worker_id: Optional[str] = None,
) -> JobQueue:
    """
    Build one queue.

    Raises:
        ValueError: postgres backend requested without a pool
    """
    options = options_from_tuning(tuning)

    if backend == QueueBackend.MEMORY:
        return InMemoryJobQueue(tuning.name, options, prefix=tuning.prefix)

    if pool is None:
        raise ValueError("postgres queue backend requires a connection pool")

    return PostgresJobQueue(
        tuning.name,
        options,
        pool,
        prefix=tuning.prefix,
        worker_defaults=worker_defaults,
        worker_id=worker_id,
    )


class QueueSet:
    """The named queues of one process, all on the same backend."""

    def __init__(self, queues: Dict[str, JobQueue], backend: QueueBackend):
        self._queues = dict(queues)
        self.backend = backend

    @classmethod
    def build(
        cls,
        backend: QueueBackend,
        queue_defaults: Optional[QueueDefaults] = None,
        pool=None,
        worker_defaults: Optional[WorkerDefaults] = None,
        worker_id: Optional[str] = None,
    ) -> "QueueSet":
        queue_defaults = queue_defaults or QueueDefaults()
        queues = {
            name: build_queue(tuning, backend, pool, worker_defaults, worker_id)
            for name, tuning in queue_defaults.all().items()
        }
        logger.info(f"Built {len(queues)} queues on {backend.value} backend: {sorted(queues)}")
        return cls(queues, backend)

    def get(self, name: str) -> JobQueue:
        """
        Raises:
            KeyError: unknown queue name
        """
        if name not in self._queues:
            raise KeyError(f"Unknown queue: {name}")
        return self._queues[name]

    def for_job_id(self, job_id: str) -> Optional[JobQueue]:
        """Queue whose prefix starts job_id, or None."""
        for queue in self._queues.values():
            if job_id.startswith(f"{queue.prefix}-"):
                return queue
        return None

    def names(self):
        return list(self._queues)

    def __iter__(self) -> Iterator[JobQueue]:
        return iter(self._queues.values())

    def __len__(self) -> int:
        return len(self._queues)

    async def close(self) -> None:
        for queue in self._queues.values():
            try:
                await queue.close()
            except Exception as e:
                logger.warning(f"Error closing queue {queue.name}: {e}")


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "options_from_tuning",
    "build_queue",
    "QueueSet",
]
