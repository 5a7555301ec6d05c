# ============================================================================
# POSTGRES JOB QUEUE
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - Durable multi-worker queue backend
# PURPOSE: Persist jobs and dequeue them atomically across processes
# CREATED: 16 OCT 2026
# ============================================================================
"""
Postgres Job Queue

Durable backend on the queue_jobs table. Any number of worker processes
may consume the same queue; each dequeue is a single

    WITH next AS (... FOR UPDATE SKIP LOCKED) UPDATE ... RETURNING

so a job is handed to exactly one consumer.

While a handler runs, a heartbeat task refreshes heartbeat_at. A
maintenance task periodically:
- re-queues ACTIVE jobs whose heartbeat is older than stall_seconds
  (or fails them with 'job stalled' once attempts are exhausted)
- purges finished jobs per retention policy

Delayed jobs are promoted to WAITING by every consumer poll once run_at
has passed.

The dedupe reservation is a partial unique index on
(queue_name, dedupe_key) over non-terminal states.
"""

import asyncio
import logging
import os
import socket
from typing import Any, Dict, List, Optional

from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Json
from psycopg_pool import AsyncConnectionPool

from core.config import WorkerDefaults
from core.contracts import JobState, QueueBackend, QueueEvent
from core.models import Job, JobOptions
from repositories.database import TABLE_QUEUE_JOBS
from .base import JobQueue

logger = logging.getLogger(__name__)

STALLED_REASON = "job stalled"


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class PostgresJobQueue(JobQueue):
    """Queue backend persisted in PostgreSQL."""

    backend = QueueBackend.POSTGRES

    def __init__(
        self,
        name: str,
        default_options: JobOptions,
        pool: AsyncConnectionPool,
        prefix: Optional[str] = None,
        worker_defaults: Optional[WorkerDefaults] = None,
        worker_id: Optional[str] = None,
    ):
        super().__init__(name, default_options, prefix)
        self.pool = pool
        self.worker_defaults = worker_defaults or WorkerDefaults()
        self.worker_id = worker_id or default_worker_id()

        self._stop_event = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    # =========================================================================
    # ENQUEUE
    # =========================================================================

    async def add(
        self,
        job_type: str,
        payload: Dict[str, Any],
        options: Optional[JobOptions] = None,
    ) -> Job:
        opts = self.resolve_options(options)

        if opts.job_id:
            existing = await self.get_job(opts.job_id)
            if existing is not None:
                logger.debug(f"Job {opts.job_id} already exists in {self.name}")
                return existing

        job = Job.create(self.name, job_type, payload, opts)

        # One retry covers a reservation released between the conflict and the lookup
        for _ in range(2):
            if await self._insert(job):
                self._emit(QueueEvent.WAITING, job)
                logger.debug(f"Added job {job.job_id} ({job_type}) to {self.name}")
                return job

            if job.dedupe_key:
                holder = await self._get_by_dedupe_key(job.dedupe_key)
                if holder is not None:
                    logger.info(f"Dedupe key {job.dedupe_key} held by {holder.job_id}, not enqueuing")
                    return holder

            existing = await self.get_job(job.job_id)
            if existing is not None:
                return existing

        raise RuntimeError(f"Could not enqueue job {job.job_id} on {self.name}")

    async def _insert(self, job: Job) -> bool:
        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("""
                INSERT INTO {} (
                    job_id, queue_name, job_type, payload, state, progress,
                    attempts_made, max_attempts, backoff, remove_on_complete,
                    remove_on_fail, dedupe_key, created_at, run_at, updated_at
                ) VALUES (
                    %(job_id)s, %(queue_name)s, %(job_type)s, %(payload)s, %(state)s, %(progress)s,
                    %(attempts_made)s, %(max_attempts)s, %(backoff)s, %(remove_on_complete)s,
                    %(remove_on_fail)s, %(dedupe_key)s, %(created_at)s, %(run_at)s, %(updated_at)s
                )
                ON CONFLICT DO NOTHING
                """).format(TABLE_QUEUE_JOBS),
                {
                    "job_id": job.job_id,
                    "queue_name": job.queue_name,
                    "job_type": job.job_type,
                    "payload": Json(job.payload),
                    "state": job.state.value,
                    "progress": job.progress,
                    "attempts_made": job.attempts_made,
                    "max_attempts": job.max_attempts,
                    "backoff": Json(job.backoff.model_dump(mode="json")),
                    "remove_on_complete": Json(job.remove_on_complete.model_dump(mode="json")),
                    "remove_on_fail": Json(job.remove_on_fail.model_dump(mode="json")),
                    "dedupe_key": job.dedupe_key,
                    "created_at": job.created_at,
                    "run_at": job.run_at,
                    "updated_at": job.updated_at,
                },
            )
            return result.rowcount > 0

    async def _get_by_dedupe_key(self, dedupe_key: str) -> Optional[Job]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT * FROM {}
                WHERE queue_name = %s
                  AND dedupe_key = %s
                  AND state IN ('waiting', 'active', 'delayed')
                LIMIT 1
                """).format(TABLE_QUEUE_JOBS),
                (self.name, dedupe_key),
            )
            row = await result.fetchone()
            return self._row_to_job(row) if row else None

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    async def get_job(self, job_id: str) -> Optional[Job]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("SELECT * FROM {} WHERE job_id = %s AND queue_name = %s").format(TABLE_QUEUE_JOBS),
                (job_id, self.name),
            )
            row = await result.fetchone()

            if row is None:
                return None

            return self._row_to_job(row)

    async def get_counts(self) -> Dict[JobState, int]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT state, COUNT(*) AS count
                FROM {}
                WHERE queue_name = %s
                GROUP BY state
                """).format(TABLE_QUEUE_JOBS),
                (self.name,),
            )
            rows = await result.fetchall()

        counts = {state: 0 for state in JobState}
        for row in rows:
            counts[JobState(row["state"])] = row["count"]
        return counts

    async def update_progress(self, job_id: str, percent: int) -> Optional[int]:
        progress = max(0, min(100, int(percent)))
        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("""
                UPDATE {}
                SET progress = %s, heartbeat_at = NOW(), updated_at = NOW()
                WHERE job_id = %s AND queue_name = %s
                """).format(TABLE_QUEUE_JOBS),
                (progress, job_id, self.name),
            )
            if result.rowcount == 0:
                return None
        return progress

    # =========================================================================
    # DEQUEUE & EXECUTION
    # =========================================================================

    async def promote_delayed(self) -> int:
        """Move delayed jobs whose run_at has passed back to WAITING."""
        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("""
                UPDATE {}
                SET state = 'waiting', run_at = NULL, updated_at = NOW()
                WHERE queue_name = %s
                  AND state = 'delayed'
                  AND run_at <= NOW()
                """).format(TABLE_QUEUE_JOBS),
                (self.name,),
            )
            return result.rowcount

    async def dequeue(self) -> Optional[Job]:
        """
        Claim the oldest waiting job for this worker.

        Uses FOR UPDATE SKIP LOCKED so concurrent consumers never
        claim the same row.
        """
        await self.promote_delayed()

        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                WITH next_job AS (
                    SELECT job_id FROM {}
                    WHERE queue_name = %s
                      AND state = 'waiting'
                    ORDER BY created_at, job_id
                    LIMIT 1
                    FOR UPDATE SKIP LOCKED
                )
                UPDATE {} AS j
                SET state = 'active',
                    attempts_made = j.attempts_made + 1,
                    locked_by = %s,
                    heartbeat_at = NOW(),
                    processed_at = NOW(),
                    finished_at = NULL,
                    run_at = NULL,
                    updated_at = NOW()
                FROM next_job
                WHERE j.job_id = next_job.job_id
                RETURNING j.*
                """).format(TABLE_QUEUE_JOBS, TABLE_QUEUE_JOBS),
                (self.name, self.worker_id),
            )
            row = await result.fetchone()

        return self._row_to_job(row) if row else None

    async def _process(self, job: Job) -> None:
        self._emit(QueueEvent.ACTIVE, job)
        heartbeat = asyncio.create_task(self._heartbeat_loop(job.job_id))
        try:
            succeeded, value = await self._invoke_handler(job)
        finally:
            heartbeat.cancel()

        self._apply_outcome(job, succeeded, value)
        await self._persist_outcome(job)

    async def _persist_outcome(self, job: Job) -> None:
        """Write the post-attempt state, guarded on this worker's lock."""
        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("""
                UPDATE {}
                SET state = %(state)s,
                    progress = %(progress)s,
                    result = %(result)s,
                    failed_reason = %(failed_reason)s,
                    locked_by = NULL,
                    run_at = %(run_at)s,
                    finished_at = %(finished_at)s,
                    updated_at = NOW()
                WHERE job_id = %(job_id)s
                  AND state = 'active'
                  AND locked_by = %(worker_id)s
                """).format(TABLE_QUEUE_JOBS),
                {
                    "state": job.state.value,
                    "progress": job.progress,
                    "result": Json(job.result) if job.result is not None else None,
                    "failed_reason": job.failed_reason,
                    "run_at": job.run_at,
                    "finished_at": job.finished_at,
                    "job_id": job.job_id,
                    "worker_id": self.worker_id,
                },
            )
            if result.rowcount == 0:
                logger.warning(
                    f"Job {job.job_id} was reclaimed before worker {self.worker_id} "
                    f"could record its outcome ({job.state.value})"
                )

    async def _heartbeat_loop(self, job_id: str) -> None:
        interval = self.worker_defaults.heartbeat_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                async with self.pool.connection() as conn:
                    await conn.execute(
                        sql.SQL("""
                        UPDATE {} SET heartbeat_at = NOW()
                        WHERE job_id = %s AND locked_by = %s AND state = 'active'
                        """).format(TABLE_QUEUE_JOBS),
                        (job_id, self.worker_id),
                    )
            except Exception as e:
                logger.warning(f"Heartbeat failed for job {job_id}: {e}")

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    async def reclaim_stalled(self) -> Dict[str, List[str]]:
        """
        Handle ACTIVE jobs whose heartbeat is older than stall_seconds.

        Returns:
            {"requeued": [...], "failed": [...]}
        """
        stall_seconds = self.worker_defaults.stall_seconds
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            requeued = await conn.execute(
                sql.SQL("""
                UPDATE {}
                SET state = 'waiting',
                    locked_by = NULL,
                    failed_reason = %s,
                    updated_at = NOW()
                WHERE queue_name = %s
                  AND state = 'active'
                  AND heartbeat_at < NOW() - make_interval(secs => %s)
                  AND attempts_made < max_attempts
                RETURNING job_id
                """).format(TABLE_QUEUE_JOBS),
                (STALLED_REASON, self.name, stall_seconds),
            )
            requeued_ids = [row["job_id"] for row in await requeued.fetchall()]

            failed = await conn.execute(
                sql.SQL("""
                UPDATE {}
                SET state = 'failed',
                    locked_by = NULL,
                    failed_reason = %s,
                    finished_at = NOW(),
                    updated_at = NOW()
                WHERE queue_name = %s
                  AND state = 'active'
                  AND heartbeat_at < NOW() - make_interval(secs => %s)
                  AND attempts_made >= max_attempts
                RETURNING job_id
                """).format(TABLE_QUEUE_JOBS),
                (STALLED_REASON, self.name, stall_seconds),
            )
            failed_ids = [row["job_id"] for row in await failed.fetchall()]

        if requeued_ids or failed_ids:
            logger.warning(
                f"Stalled jobs on {self.name}: requeued={requeued_ids}, failed={failed_ids}"
            )
        return {"requeued": requeued_ids, "failed": failed_ids}

    async def purge_finished(self) -> int:
        """
        Delete finished jobs past their retention window.

        Age comes from each row's own policy; the count limit is the
        queue default and keeps the newest rows.
        """
        removed = 0
        async with self.pool.connection() as conn:
            for state, column, queue_policy in (
                ("completed", "remove_on_complete", self.default_options.remove_on_complete),
                ("failed", "remove_on_fail", self.default_options.remove_on_fail),
            ):
                result = await conn.execute(
                    sql.SQL("""
                    DELETE FROM {}
                    WHERE queue_name = %s
                      AND state = %s
                      AND {} ? 'age_seconds'
                      AND jsonb_typeof({} -> 'age_seconds') = 'number'
                      AND finished_at < NOW() - make_interval(secs => ({} ->> 'age_seconds')::int)
                    """).format(
                        TABLE_QUEUE_JOBS,
                        sql.Identifier(column),
                        sql.Identifier(column),
                        sql.Identifier(column),
                    ),
                    (self.name, state),
                )
                removed += result.rowcount

                if queue_policy is not None and queue_policy.count is not None:
                    result = await conn.execute(
                        sql.SQL("""
                        DELETE FROM {}
                        WHERE job_id IN (
                            SELECT job_id FROM {}
                            WHERE queue_name = %s AND state = %s
                            ORDER BY finished_at DESC NULLS LAST
                            OFFSET %s
                        )
                        """).format(TABLE_QUEUE_JOBS, TABLE_QUEUE_JOBS),
                        (self.name, state, queue_policy.count),
                    )
                    removed += result.rowcount

        if removed:
            logger.info(f"Purged {removed} finished jobs from {self.name}")
        return removed

    async def _maintenance_loop(self) -> None:
        interval = self.worker_defaults.retention_sweep_seconds
        while not self._stop_event.is_set():
            try:
                await self.reclaim_stalled()
                await self.purge_finished()
            except Exception as e:
                logger.exception(f"Queue maintenance failed for {self.name}: {e}")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    # =========================================================================
    # CONSUMER LOOP
    # =========================================================================

    async def _consume_loop(self, slot: int) -> None:
        poll_interval = self.worker_defaults.poll_interval_seconds
        logger.info(f"Consumer {self.worker_id}/{slot} polling {self.name}")
        while not self._stop_event.is_set():
            try:
                job = await self.dequeue()
            except Exception as e:
                logger.exception(f"Dequeue failed on {self.name}: {e}")
                job = None

            if job is None:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=poll_interval)
                except asyncio.TimeoutError:
                    pass
                continue

            try:
                await self._process(job)
            except Exception as e:
                logger.exception(f"Failed to record outcome of job {job.job_id}: {e}")

    async def start_consuming(self, concurrency: int = 1) -> None:
        if self._handler is None:
            raise RuntimeError(f"Queue '{self.name}' has no handler registered")
        if self._tasks:
            logger.warning(f"Queue {self.name} already consuming")
            return

        self._stop_event.clear()
        self._tasks = [
            asyncio.create_task(self._consume_loop(slot))
            for slot in range(max(1, concurrency))
        ]
        self._tasks.append(asyncio.create_task(self._maintenance_loop()))
        logger.info(f"Started {concurrency} consumer(s) on {self.name} as {self.worker_id}")

    async def stop_consuming(self) -> None:
        if not self._tasks:
            return
        self._stop_event.set()
        done, pending = await asyncio.wait(
            self._tasks,
            timeout=self.worker_defaults.shutdown_timeout_seconds,
        )
        for task in pending:
            logger.warning(f"Cancelling consumer task on {self.name} after shutdown timeout")
            task.cancel()
        self._tasks = []
        logger.info(f"Stopped consumers on {self.name}")

    async def close(self) -> None:
        """Stop consumers. The pool is owned by the caller."""
        await self.stop_consuming()

    def _row_to_job(self, row: Dict[str, Any]) -> Job:
        return Job.model_validate(row)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "PostgresJobQueue",
    "STALLED_REASON",
    "default_worker_id",
]
