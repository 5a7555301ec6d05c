# ============================================================================
# POSTGRES QUEUE TESTS
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Tests - Durable backend against a scripted connection pool
# PURPOSE: Verify SQL flow of enqueue, dequeue, outcome and maintenance
# CREATED: 16 OCT 2026
# ============================================================================
"""
Postgres Queue Tests

No database is required: FakePool hands out a FakeConnection that records
every statement and replays scripted results in order.

Covers:
1. add() inserts, and returns the dedupe holder on conflict
2. dequeue() claims with FOR UPDATE SKIP LOCKED
3. _process() persists COMPLETED / DELAYED guarded on the worker lock
4. reclaim_stalled() splits requeued and failed jobs
5. get_counts() / update_progress()

Run with:
    pytest tests/test_postgres_queue.py -v
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import pytest

from core.config import WorkerDefaults
from core.contracts import BackoffType, JobState
from core.models import BackoffPolicy, Job, JobOptions, RetentionPolicy
from queues import PostgresJobQueue
from queues.postgres import STALLED_REASON


class FakeResult:
    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None, rowcount: int = 0):
        self.rows = rows or []
        self.rowcount = rowcount

    async def fetchone(self):
        return self.rows[0] if self.rows else None

    async def fetchall(self):
        return list(self.rows)


class FakeConnection:
    def __init__(self, pool: "FakePool"):
        self.pool = pool
        self.row_factory = None

    async def execute(self, query, params=None):
        self.pool.executed.append((query.as_string(), params))
        if self.pool.results:
            return self.pool.results.pop(0)
        return FakeResult()


class FakePool:
    """Records statements; returns scripted results in order."""

    def __init__(self, results: Optional[List[FakeResult]] = None):
        self.results = list(results or [])
        self.executed: List[tuple] = []

    @asynccontextmanager
    async def connection(self):
        yield FakeConnection(self)


def _queue(pool: FakePool, attempts: int = 2) -> PostgresJobQueue:
    return PostgresJobQueue(
        "resource-generation",
        JobOptions(
            attempts=attempts,
            backoff=BackoffPolicy(type=BackoffType.FIXED, delay_ms=5000),
            remove_on_complete=RetentionPolicy(age_seconds=3600, count=100),
            remove_on_fail=RetentionPolicy(age_seconds=7200),
        ),
        pool,
        prefix="generation",
        worker_defaults=WorkerDefaults(heartbeat_interval_seconds=60),
        worker_id="worker-1",
    )


def _row(job_id: str = "generation-u1-1", state: JobState = JobState.WAITING, **fields) -> Dict[str, Any]:
    job = Job(
        job_id=job_id,
        queue_name="resource-generation",
        job_type="generate_resource",
        payload={"user_id": "u1", "resource_id": "c"},
        state=state,
        max_attempts=2,
        **fields,
    )
    return job.model_dump()


# ============================================================================
# ENQUEUE
# ============================================================================

class TestAdd:
    """Insert and dedupe."""

    def test_insert(self):
        pool = FakePool([FakeResult(rowcount=1)])
        queue = _queue(pool)

        job = asyncio.run(queue.add("generate_resource", {"user_id": "u1"}))

        assert job.state == JobState.WAITING
        assert job.max_attempts == 2
        statement, params = pool.executed[0]
        assert "ON CONFLICT DO NOTHING" in statement
        assert params["job_id"] == job.job_id
        assert params["payload"].obj == {"user_id": "u1"}
        assert params["backoff"].obj == {"type": "fixed", "delay_ms": 5000}

    def test_dedupe_conflict_returns_holder(self):
        holder = _row("generation-u1-0", dedupe_key="u1:c")
        pool = FakePool([FakeResult(rowcount=0), FakeResult(rows=[holder])])
        queue = _queue(pool)

        job = asyncio.run(queue.add("generate_resource", {}, JobOptions(dedupe_key="u1:c")))

        assert job.job_id == "generation-u1-0"
        assert len(pool.executed) == 2
        assert "dedupe_key = %s" in pool.executed[1][0]

    def test_existing_job_id_short_circuits(self):
        pool = FakePool([FakeResult(rows=[_row("generation-u1-5")])])
        queue = _queue(pool)

        job = asyncio.run(queue.add("generate_resource", {}, JobOptions(job_id="generation-u1-5")))

        assert job.job_id == "generation-u1-5"
        assert len(pool.executed) == 1

    def test_gives_up_after_repeated_conflicts(self):
        pool = FakePool([FakeResult(rowcount=0)] * 4)
        queue = _queue(pool)

        with pytest.raises(RuntimeError, match="Could not enqueue"):
            asyncio.run(queue.add("generate_resource", {}))


# ============================================================================
# DEQUEUE / PROCESS
# ============================================================================

class TestDequeueAndProcess:
    """Claiming and outcome persistence."""

    def test_dequeue_claims_with_skip_locked(self):
        active = _row(state=JobState.ACTIVE, attempts_made=1, locked_by="worker-1")
        pool = FakePool([FakeResult(rowcount=0), FakeResult(rows=[active])])
        queue = _queue(pool)

        job = asyncio.run(queue.dequeue())

        assert job.state == JobState.ACTIVE
        assert job.attempts_made == 1
        assert "state = 'delayed'" in pool.executed[0][0]
        statement, params = pool.executed[1]
        assert "FOR UPDATE SKIP LOCKED" in statement
        assert params == ("resource-generation", "worker-1")

    def test_dequeue_empty(self):
        pool = FakePool([FakeResult(rowcount=0), FakeResult()])
        assert asyncio.run(_queue(pool).dequeue()) is None

    def test_process_success_persists_completed(self):
        pool = FakePool([FakeResult(rowcount=1)])
        queue = _queue(pool)

        async def handler(job):
            return {"output": "ok"}

        queue.process(handler)
        job = Job.model_validate(_row(state=JobState.ACTIVE, attempts_made=1, locked_by="worker-1"))
        asyncio.run(queue._process(job))

        statement, params = pool.executed[0]
        assert "locked_by = %(worker_id)s" in statement
        assert params["state"] == "completed"
        assert params["progress"] == 100
        assert params["result"].obj == {"output": "ok"}
        assert params["worker_id"] == "worker-1"

    def test_process_failure_persists_delayed_retry(self):
        pool = FakePool([FakeResult(rowcount=1)])
        queue = _queue(pool)

        async def handler(job):
            raise RuntimeError("model timeout")

        queue.process(handler)
        job = Job.model_validate(_row(state=JobState.ACTIVE, attempts_made=1, locked_by="worker-1"))
        asyncio.run(queue._process(job))

        params = pool.executed[0][1]
        assert params["state"] == "delayed"
        assert params["failed_reason"] == "model timeout"
        assert params["run_at"] is not None
        assert params["result"] is None

    def test_process_failure_on_last_attempt(self):
        pool = FakePool([FakeResult(rowcount=1)])
        queue = _queue(pool)

        async def handler(job):
            raise RuntimeError("still broken")

        queue.process(handler)
        job = Job.model_validate(_row(state=JobState.ACTIVE, attempts_made=2, locked_by="worker-1"))
        asyncio.run(queue._process(job))

        params = pool.executed[0][1]
        assert params["state"] == "failed"
        assert params["finished_at"] is not None

    def test_start_without_handler(self):
        queue = _queue(FakePool())
        with pytest.raises(RuntimeError, match="no handler"):
            asyncio.run(queue.start_consuming())


# ============================================================================
# MAINTENANCE / INTROSPECTION
# ============================================================================

class TestMaintenance:
    """Stall recovery, retention and counts."""

    def test_reclaim_stalled(self):
        pool = FakePool([
            FakeResult(rows=[{"job_id": "generation-u1-1"}]),
            FakeResult(rows=[{"job_id": "generation-u2-1"}]),
        ])
        queue = _queue(pool)

        reclaimed = asyncio.run(queue.reclaim_stalled())

        assert reclaimed == {"requeued": ["generation-u1-1"], "failed": ["generation-u2-1"]}
        assert pool.executed[0][1] == (STALLED_REASON, "resource-generation", 120)
        assert "attempts_made >= max_attempts" in pool.executed[1][0]

    def test_purge_finished(self):
        pool = FakePool([
            FakeResult(rowcount=3),  # completed by age
            FakeResult(rowcount=1),  # completed over count
            FakeResult(rowcount=2),  # failed by age
        ])
        queue = _queue(pool)

        assert asyncio.run(queue.purge_finished()) == 6
        assert len(pool.executed) == 3
        assert pool.executed[1][1] == ("resource-generation", "completed", 100)

    def test_get_counts(self):
        pool = FakePool([FakeResult(rows=[
            {"state": "waiting", "count": 2},
            {"state": "completed", "count": 5},
        ])])

        counts = asyncio.run(_queue(pool).get_counts())

        assert counts[JobState.WAITING] == 2
        assert counts[JobState.COMPLETED] == 5
        assert counts[JobState.DELAYED] == 0

    def test_update_progress(self):
        pool = FakePool([FakeResult(rowcount=1), FakeResult(rowcount=0)])
        queue = _queue(pool)

        assert asyncio.run(queue.update_progress("generation-u1-1", 140)) == 100
        assert asyncio.run(queue.update_progress("missing", 10)) is None
        assert pool.executed[0][1] == (100, "generation-u1-1", "resource-generation")
