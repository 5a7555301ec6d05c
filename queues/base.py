# ============================================================================
# JOB QUEUE INTERFACE
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - Backend-independent queue contract
# PURPOSE: One enqueue/inspect/process interface over two backends
# CREATED: 16 OCT 2026
# ============================================================================
"""
Job Queue Interface

JobQueue is the contract shared by InMemoryJobQueue and PostgresJobQueue.
The composition root picks one backend at startup; nothing else in the
system knows which one it is talking to.

Contract:
    add(job_type, payload, options)   enqueue (defaults merged with overrides)
    process(handler)                  register the single handler
    get_job / get_state / counts      introspection
    update_progress(job_id, percent)  progress reporting
    wait_until_finished(job_id)       polling helper for sequential callers
    on / off                          process-local event listeners
    start_consuming / stop_consuming  worker lifecycle
    close()

Retry policy lives in core.models.Job (mark_failed / prepare_retry); the
backends only persist the transitions and schedule the delay.
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from core.contracts import JobState, QueueBackend, QueueEvent
from core.logging import log_context
from core.models import Job, JobOptions

logger = logging.getLogger(__name__)

JobHandler = Callable[[Job], Awaitable[Any]]
QueueListener = Callable[..., Any]


class HandlerAlreadyRegisteredError(Exception):
    """Raised when process() is called twice on one queue."""

    def __init__(self, queue_name: str):
        self.queue_name = queue_name
        super().__init__(f"Queue '{queue_name}' already has a handler registered")


class JobNotFoundError(Exception):
    """Raised when a job id is not present in the queue."""

    def __init__(self, job_id: str, queue_name: str):
        self.job_id = job_id
        self.queue_name = queue_name
        super().__init__(f"Job '{job_id}' not found in queue '{queue_name}'")


class JobQueue(ABC):
    """Abstract base for job queue backends."""

    backend: QueueBackend

    def __init__(self, name: str, default_options: JobOptions, prefix: Optional[str] = None):
        """
        Args:
            name: Queue name
            default_options: Per-queue defaults, overridden per job in add()
            prefix: Job-id prefix callers use for this queue
        """
        self.name = name
        self.prefix = prefix or name
        self.default_options = default_options
        self._handler: Optional[JobHandler] = None
        self._listeners: Dict[QueueEvent, List[QueueListener]] = {event: [] for event in QueueEvent}

    # =========================================================================
    # HANDLER & EVENTS
    # =========================================================================

    @property
    def handler(self) -> Optional[JobHandler]:
        return self._handler

    def process(self, handler: JobHandler) -> None:
        """
        Register the handler for this queue.

        Raises:
            HandlerAlreadyRegisteredError: a handler is already registered
        """
        if self._handler is not None:
            raise HandlerAlreadyRegisteredError(self.name)
        self._handler = handler
        logger.info(f"Handler registered for queue {self.name}")
        self._on_handler_registered()

    def _on_handler_registered(self) -> None:
        """Hook for backends that start work as soon as a handler exists."""
        pass

    def on(self, event: QueueEvent, listener: QueueListener) -> None:
        """Attach a listener called as listener(job, **details)."""
        self._listeners[QueueEvent(event)].append(listener)

    def off(self, event: QueueEvent, listener: QueueListener) -> None:
        """Detach a listener; unknown listeners are ignored."""
        listeners = self._listeners[QueueEvent(event)]
        if listener in listeners:
            listeners.remove(listener)

    def _emit(self, event: QueueEvent, job: Job, **details: Any) -> None:
        for listener in list(self._listeners[event]):
            try:
                outcome = listener(job, **details)
                if inspect.isawaitable(outcome):
                    asyncio.ensure_future(outcome)
            except Exception as e:
                logger.warning(f"Listener for {event.value} on queue {self.name} raised: {e}")

    # =========================================================================
    # OPTIONS & EXECUTION
    # =========================================================================

    def resolve_options(self, overrides: Optional[JobOptions] = None) -> JobOptions:
        """Queue defaults with call-site overrides applied."""
        return self.default_options.merge(overrides)

    async def _invoke_handler(self, job: Job) -> Tuple[bool, Any]:
        """
        Run the registered handler for one attempt.

        Returns:
            (True, result) on success, (False, failed_reason) if it raised
        """
        with log_context(job_id=job.job_id, queue_name=self.name):
            try:
                result = await self._handler(job)
            except Exception as e:
                reason = str(e) or e.__class__.__name__
                logger.warning(
                    f"Job {job.job_id} attempt {job.attempts_made}/{job.max_attempts} failed: {reason}"
                )
                return False, reason
        return True, result

    def _apply_outcome(self, job: Job, succeeded: bool, value: Any) -> Optional[int]:
        """
        Apply a handler outcome to an ACTIVE job.

        Returns:
            Retry delay in ms if the job was requeued, otherwise None
        """
        if succeeded:
            job.mark_completed(value)
            self._emit(QueueEvent.COMPLETED, job, result=value)
            return None

        job.mark_failed(value)
        delay_ms = job.prepare_retry()
        if delay_ms is None:
            logger.error(f"Job {job.job_id} failed permanently after {job.attempts_made} attempts: {value}")
            self._emit(QueueEvent.FAILED, job, reason=job.failed_reason)
        else:
            logger.info(f"Job {job.job_id} will retry in {delay_ms}ms (attempt {job.attempts_made}/{job.max_attempts})")
            self._emit(QueueEvent.RETRYING, job, reason=job.failed_reason, delay_ms=delay_ms)
        return delay_ms

    # =========================================================================
    # ABSTRACT OPERATIONS
    # =========================================================================

    @abstractmethod
    async def add(
        self,
        job_type: str,
        payload: Dict[str, Any],
        options: Optional[JobOptions] = None,
    ) -> Job:
        """
        Enqueue a job.

        If options.job_id names an existing job, or options.dedupe_key is
        held by a non-terminal job, that job is returned unchanged.
        """
        pass

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[Job]:
        """Snapshot of a job, or None if unknown or purged."""
        pass

    @abstractmethod
    async def get_counts(self) -> Dict[JobState, int]:
        """Number of jobs per state."""
        pass

    @abstractmethod
    async def update_progress(self, job_id: str, percent: int) -> Optional[int]:
        """Record progress (clamped to 0..100); None if the job is unknown."""
        pass

    @abstractmethod
    async def start_consuming(self, concurrency: int = 1) -> None:
        pass

    @abstractmethod
    async def stop_consuming(self) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    # =========================================================================
    # DERIVED INTROSPECTION
    # =========================================================================

    async def get_state(self, job_id: str) -> Optional[JobState]:
        job = await self.get_job(job_id)
        return job.state if job else None

    async def _count(self, state: JobState) -> int:
        counts = await self.get_counts()
        return counts.get(state, 0)

    async def get_waiting_count(self) -> int:
        return await self._count(JobState.WAITING)

    async def get_active_count(self) -> int:
        return await self._count(JobState.ACTIVE)

    async def get_completed_count(self) -> int:
        return await self._count(JobState.COMPLETED)

    async def get_failed_count(self) -> int:
        return await self._count(JobState.FAILED)

    async def get_delayed_count(self) -> int:
        return await self._count(JobState.DELAYED)

    async def get_stats(self) -> Dict[str, Any]:
        """Per-state counts plus total, for health checks."""
        counts = await self.get_counts()
        stats: Dict[str, Any] = {state.value: counts.get(state, 0) for state in JobState}
        stats["total"] = sum(counts.values())
        stats["queue_name"] = self.name
        stats["backend"] = self.backend.value
        return stats

    async def wait_until_finished(
        self,
        job_id: str,
        timeout: Optional[float] = None,
        poll_interval: float = 0.1,
    ) -> Job:
        """
        Poll until a job reaches a terminal state.

        Raises:
            JobNotFoundError: job unknown (or purged while waiting)
            asyncio.TimeoutError: timeout elapsed first
        """
        async def _poll() -> Job:
            while True:
                job = await self.get_job(job_id)
                if job is None:
                    raise JobNotFoundError(job_id, self.name)
                if job.is_terminal:
                    return job
                await asyncio.sleep(poll_interval)

        return await asyncio.wait_for(_poll(), timeout=timeout)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "JobQueue",
    "JobHandler",
    "QueueListener",
    "HandlerAlreadyRegisteredError",
    "JobNotFoundError",
]
