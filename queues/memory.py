# ============================================================================
# IN-MEMORY JOB QUEUE
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - Single-process queue backend
# PURPOSE: Run jobs without external infrastructure
# CREATED: 16 OCT 2026
# ============================================================================
"""
In-Memory Job Queue

Single-process backend. All state lives in this object and is lost on
restart. Jobs run one at a time per queue: adding a job schedules a drain
pass with loop.call_soon, and the drain pass awaits each handler before
taking the next job. Retry delays use loop.call_later.

Because the queue drives its own execution once a handler is registered,
start_consuming() is bookkeeping only; stop_consuming() pauses draining.
"""

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Optional

from core.contracts import JobState, QueueBackend, QueueEvent
from core.models import Job, JobOptions
from .base import JobQueue

logger = logging.getLogger(__name__)


class InMemoryJobQueue(JobQueue):
    """Queue backend that keeps every job in process memory."""

    backend = QueueBackend.MEMORY

    def __init__(self, name: str, default_options: JobOptions, prefix: Optional[str] = None):
        super().__init__(name, default_options, prefix)
        self._jobs: Dict[str, Job] = {}
        self._waiting: Deque[str] = deque()
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._dedupe: Dict[str, str] = {}

        self._scheduled = False
        self._draining = False
        self._paused = False
        self._closed = False
        self._consuming = False
        self._drain_task: Optional[asyncio.Task] = None

    @property
    def is_consuming(self) -> bool:
        return self._consuming

    # =========================================================================
    # ENQUEUE
    # =========================================================================

    async def add(
        self,
        job_type: str,
        payload: Dict[str, Any],
        options: Optional[JobOptions] = None,
    ) -> Job:
        if self._closed:
            raise RuntimeError(f"Queue '{self.name}' is closed")

        opts = self.resolve_options(options)

        if opts.job_id and opts.job_id in self._jobs:
            logger.debug(f"Job {opts.job_id} already exists in {self.name}")
            return self._jobs[opts.job_id].model_copy(deep=True)

        if opts.dedupe_key:
            holder = self._jobs.get(self._dedupe.get(opts.dedupe_key, ""))
            if holder is not None and not holder.is_terminal:
                logger.info(f"Dedupe key {opts.dedupe_key} held by {holder.job_id}, not enqueuing")
                return holder.model_copy(deep=True)

        job = Job.create(self.name, job_type, payload, opts)
        self._jobs[job.job_id] = job
        if job.dedupe_key:
            self._dedupe[job.dedupe_key] = job.job_id

        if job.state == JobState.DELAYED:
            self._schedule_promotion(job.job_id, opts.delay_ms or 0)
        else:
            self._waiting.append(job.job_id)
            self._emit(QueueEvent.WAITING, job)
            self._schedule_drain()

        logger.debug(f"Added job {job.job_id} ({job_type}) to {self.name}")
        return job.model_copy(deep=True)

    # =========================================================================
    # SCHEDULING
    # =========================================================================

    def _on_handler_registered(self) -> None:
        self._schedule_drain()

    def _schedule_drain(self) -> None:
        if self._scheduled or self._draining or self._paused or self._closed:
            return
        if self._handler is None or not self._waiting:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; the next add() or start_consuming() schedules it
            return
        self._scheduled = True
        loop.call_soon(self._start_drain)

    def _start_drain(self) -> None:
        self._scheduled = False
        if self._draining or self._closed:
            return
        self._drain_task = asyncio.ensure_future(self._drain())

    async def _drain(self) -> None:
        self._draining = True
        try:
            while self._waiting and self._handler is not None and not self._paused and not self._closed:
                job = self._jobs.get(self._waiting.popleft())
                if job is None or job.state != JobState.WAITING:
                    continue
                await self._process_job(job)
                # Yield between jobs so producers and pollers get a turn
                await asyncio.sleep(0)
        finally:
            self._draining = False

    def _schedule_promotion(self, job_id: str, delay_ms: int) -> None:
        loop = asyncio.get_running_loop()
        self._timers[job_id] = loop.call_later(delay_ms / 1000, self._promote, job_id)

    def _promote(self, job_id: str) -> None:
        self._timers.pop(job_id, None)
        job = self._jobs.get(job_id)
        if job is None or job.state != JobState.DELAYED or self._closed:
            return
        job.promote()
        self._waiting.append(job_id)
        self._emit(QueueEvent.WAITING, job)
        self._schedule_drain()

    async def _process_job(self, job: Job) -> None:
        job.mark_active()
        self._emit(QueueEvent.ACTIVE, job)

        succeeded, value = await self._invoke_handler(job)
        delay_ms = self._apply_outcome(job, succeeded, value)

        if delay_ms is None:
            self._apply_retention()
        elif delay_ms > 0:
            self._schedule_promotion(job.job_id, delay_ms)
        else:
            self._waiting.append(job.job_id)

    # =========================================================================
    # RETENTION
    # =========================================================================

    def _apply_retention(self) -> int:
        """
        Purge terminal jobs past their retention window.

        Age comes from each job's own policy; the count limit is the
        queue default and keeps the newest jobs.
        """
        now = datetime.now(timezone.utc)
        removed = 0
        for state, queue_policy in (
            (JobState.COMPLETED, self.default_options.remove_on_complete),
            (JobState.FAILED, self.default_options.remove_on_fail),
        ):
            limit = queue_policy.count if queue_policy else None
            finished = sorted(
                (j for j in self._jobs.values() if j.state == state and j.is_terminal),
                key=lambda j: j.finished_at or j.created_at,
                reverse=True,
            )
            for index, job in enumerate(finished):
                policy = job.remove_on_complete if state == JobState.COMPLETED else job.remove_on_fail
                too_many = limit is not None and index >= limit
                finished_at = job.finished_at or job.created_at
                too_old = (
                    policy.age_seconds is not None
                    and (now - finished_at).total_seconds() > policy.age_seconds
                )
                if too_many or too_old:
                    self._remove(job)
                    removed += 1
        if removed:
            logger.debug(f"Purged {removed} finished jobs from {self.name}")
        return removed

    def clean(self) -> int:
        """Run a retention pass now."""
        return self._apply_retention()

    def _remove(self, job: Job) -> None:
        self._jobs.pop(job.job_id, None)
        if job.dedupe_key and self._dedupe.get(job.dedupe_key) == job.job_id:
            del self._dedupe[job.dedupe_key]

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    async def get_job(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def get_counts(self) -> Dict[JobState, int]:
        counts = {state: 0 for state in JobState}
        for job in self._jobs.values():
            counts[job.state] += 1
        return counts

    async def update_progress(self, job_id: str, percent: int) -> Optional[int]:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        progress = job.set_progress(percent)
        self._emit(QueueEvent.PROGRESS, job, progress=progress)
        return progress

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start_consuming(self, concurrency: int = 1) -> None:
        if concurrency != 1:
            logger.debug(f"In-memory queue {self.name} runs jobs serially; concurrency={concurrency} ignored")
        self._consuming = True
        self._paused = False
        self._schedule_drain()

    async def stop_consuming(self) -> None:
        self._consuming = False
        self._paused = True

    async def close(self, timeout: float = 5.0) -> None:
        """Stop scheduling, cancel retry timers, wait briefly for the current job."""
        self._closed = True
        self._consuming = False
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

        if self._drain_task is not None and not self._drain_task.done():
            try:
                await asyncio.wait_for(asyncio.shield(self._drain_task), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Queue {self.name} close timed out, cancelling running job")
                self._drain_task.cancel()
        logger.info(f"Queue {self.name} closed")


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "InMemoryJobQueue",
]
