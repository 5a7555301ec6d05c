# ============================================================================
# WORKER HARNESS
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - Handler wrapper and worker lifecycle
# PURPOSE: Bind one task handler to one queue with logging and progress
# CREATED: 16 OCT 2026
# ============================================================================
"""
Worker Harness

A Worker binds one task handler to one queue. The handler receives a
JobContext rather than the raw Job:

    async def handler(ctx: JobContext) -> Any:
        await ctx.report_progress(50)
        return {"done": True}

Handler exceptions are not caught here; they propagate into the queue,
which records the attempt and applies the retry policy.

A handler that processes several items may return a list of
BatchItemResult. The list is converted to
{items, total, succeeded, failed} so one failed item never discards the
items that completed.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel

from core.contracts import QueueEvent
from core.logging import ComponentType, log_context
from core.models import Job
from queues import JobQueue
from queues.postgres import default_worker_id

logger = logging.getLogger(__name__)


# ============================================================================
# HANDLER TYPES
# ============================================================================

ProgressFn = Callable[[str, int], Awaitable[Optional[int]]]


@dataclass
class JobContext:
    """
    Context passed to task handlers.

    Contains everything needed to execute one attempt of one job.
    """
    job_id: str
    queue_name: str
    job_type: str
    payload: Dict[str, Any]
    attempt: int
    max_attempts: int
    worker_id: Optional[str] = None

    # Progress callback (queue.update_progress)
    progress_fn: Optional[ProgressFn] = None

    @classmethod
    def from_job(cls, job: Job, queue: JobQueue, worker_id: Optional[str] = None) -> "JobContext":
        return cls(
            job_id=job.job_id,
            queue_name=queue.name,
            job_type=job.job_type,
            payload=dict(job.payload),
            attempt=job.attempts_made,
            max_attempts=job.max_attempts,
            worker_id=worker_id,
            progress_fn=queue.update_progress,
        )

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt >= self.max_attempts

    async def report_progress(self, percent: int) -> None:
        """Report progress (0-100) if a callback is available."""
        if self.progress_fn is None:
            return
        try:
            await self.progress_fn(self.job_id, percent)
        except Exception as e:
            # Progress is advisory; the attempt continues
            logger.warning(f"Progress update failed for job {self.job_id}: {e}")


@dataclass
class BatchItemResult:
    """Outcome of one item inside a batch job."""
    item_id: str
    success: bool
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, item_id: str, result: Optional[Dict[str, Any]] = None) -> "BatchItemResult":
        return cls(item_id=item_id, success=True, result=result)

    @classmethod
    def failed(cls, item_id: str, error: str) -> "BatchItemResult":
        return cls(item_id=item_id, success=False, error=error[:2000])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "success": self.success,
            "result": self.result,
            "error": self.error,
        }


TaskHandler = Callable[[JobContext], Awaitable[Any]]


def summarize_batch(items: List[BatchItemResult]) -> Dict[str, Any]:
    """Aggregate per-item outcomes into a job result."""
    succeeded = sum(1 for item in items if item.success)
    return {
        "items": [item.to_dict() for item in items],
        "total": len(items),
        "succeeded": succeeded,
        "failed": len(items) - succeeded,
    }


def normalize_result(result: Any) -> Any:
    """Convert handler return values into JSON-safe job results."""
    if isinstance(result, list) and result and all(isinstance(r, BatchItemResult) for r in result):
        return summarize_batch(result)
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    return result


# ============================================================================
# WORKER
# ============================================================================

@dataclass
class WorkerStats:
    """Counters for one worker."""
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    progress_updates: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "retried": self.retried,
            "progress_updates": self.progress_updates,
        }


class Worker:
    """
    Runs a task handler against one queue.

    Usage:
        worker = Worker(queue, handler, concurrency=2)
        await worker.run()
        ...
        await worker.close()
    """

    def __init__(
        self,
        queue: JobQueue,
        handler: TaskHandler,
        concurrency: int = 1,
        worker_id: Optional[str] = None,
    ):
        self.queue = queue
        self.handler = handler
        self.concurrency = max(1, concurrency)
        self.worker_id = worker_id or default_worker_id()
        self.stats = WorkerStats()

        self._registered = False
        self._running = False
        self._listeners = {
            QueueEvent.ACTIVE: self._on_active,
            QueueEvent.PROGRESS: self._on_progress,
            QueueEvent.COMPLETED: self._on_completed,
            QueueEvent.FAILED: self._on_failed,
            QueueEvent.RETRYING: self._on_retrying,
        }

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def run(self) -> None:
        """
        Register the handler and start consuming.

        Raises:
            HandlerAlreadyRegisteredError: another handler owns the queue
        """
        if self._running:
            logger.warning(f"Worker {self.worker_id} already running on {self.queue.name}")
            return

        if not self._registered:
            self.queue.process(self._execute)
            self._registered = True

        for event, listener in self._listeners.items():
            self.queue.on(event, listener)

        await self.queue.start_consuming(self.concurrency)
        self._running = True
        logger.info(
            f"Worker {self.worker_id} running on {self.queue.name} "
            f"({self.queue.backend.value}, concurrency={self.concurrency})"
        )

    async def close(self) -> None:
        """Stop consuming and detach listeners."""
        if not self._running:
            return
        await self.queue.stop_consuming()
        for event, listener in self._listeners.items():
            self.queue.off(event, listener)
        self._running = False
        logger.info(f"Worker {self.worker_id} stopped on {self.queue.name}: {self.stats.to_dict()}")

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def _execute(self, job: Job) -> Any:
        ctx = JobContext.from_job(job, self.queue, self.worker_id)
        with log_context(
            job_id=job.job_id,
            queue_name=self.queue.name,
            worker_id=self.worker_id,
            component=ComponentType.WORKER.value,
            operation=job.job_type,
        ):
            logger.info(f"Processing {job.job_type} job {job.job_id} (attempt {ctx.attempt}/{ctx.max_attempts})")
            result = await self.handler(ctx)
        return normalize_result(result)

    # =========================================================================
    # EVENT LISTENERS
    # =========================================================================

    def _on_active(self, job: Job, **details: Any) -> None:
        self.stats.processed += 1

    def _on_progress(self, job: Job, progress: int = 0, **details: Any) -> None:
        self.stats.progress_updates += 1
        logger.debug(f"Job {job.job_id} progress {progress}%")

    def _on_completed(self, job: Job, **details: Any) -> None:
        self.stats.succeeded += 1
        logger.info(f"Job {job.job_id} completed")

    def _on_failed(self, job: Job, reason: Optional[str] = None, **details: Any) -> None:
        self.stats.failed += 1
        logger.error(f"Job {job.job_id} failed: {reason}")

    def _on_retrying(self, job: Job, reason: Optional[str] = None, delay_ms: int = 0, **details: Any) -> None:
        self.stats.retried += 1
        logger.info(f"Job {job.job_id} retrying in {delay_ms}ms after: {reason}")

    def get_status(self) -> Dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "queue_name": self.queue.name,
            "running": self._running,
            "concurrency": self.concurrency,
            "stats": self.stats.to_dict(),
        }


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "JobContext",
    "BatchItemResult",
    "TaskHandler",
    "summarize_batch",
    "normalize_result",
    "WorkerStats",
    "Worker",
]
