# ============================================================================
# ORCHESTRATOR TESTS
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Tests - Composition root on the in-memory backend
# PURPOSE: Verify submission, plans, status lookup and health
# CREATED: 16 OCT 2026
# ============================================================================
"""
Orchestrator Tests

All tests use the in-memory backend with the A/B/C registry (or the
richer registry with raw inputs) and the echo generation backend.

Covers:
1. Invalid submissions and raw input targets are rejected with their validation result
2. Pending (user, resource) jobs are reused
3. A generation plan runs A, B, C in order once workers are started
4. Plans needing raw user inputs submit nothing
5. Job status lookup, retention sweep, record_generated, health

Run with:
    pytest tests/test_orchestrator.py -v
"""

import asyncio
from datetime import timedelta

import pytest

from core.config import Defaults
from core.contracts import JobState
from orchestrator import ResourceOrchestrator
from services import EchoGenerationBackend


def _orchestrator(registry, resource_store) -> ResourceOrchestrator:
    return ResourceOrchestrator.create(
        defaults=Defaults(),
        registry=registry,
        resource_store=resource_store,
        generation_backend=EchoGenerationBackend(),
    )


# ============================================================================
# SUBMISSION
# ============================================================================

class TestSubmitGeneration:
    """Single-resource submission without running workers."""

    def test_invalid_not_enqueued(self, abc_registry, resource_store):
        async def run():
            orch = _orchestrator(abc_registry, resource_store)
            submission = await orch.submit_generation("u1", "c")
            health = await orch.check_health()
            return submission, health

        submission, health = asyncio.run(run())
        assert submission.accepted is False
        assert submission.job_id is None
        assert submission.validation.missing_required_ids == ["a", "b"]
        assert health["queues"]["resource-generation"]["total"] == 0

    def test_unknown_resource(self, abc_registry, resource_store):
        submission = asyncio.run(_orchestrator(abc_registry, resource_store).submit_generation("u1", "zzz"))
        assert submission.accepted is False
        assert "not found" in submission.message

    def test_input_resource_not_enqueued(self, rich_registry, resource_store):
        async def run():
            orch = _orchestrator(rich_registry, resource_store)
            submission = await orch.submit_generation("u1", "product-name")
            health = await orch.check_health()
            generated = await resource_store.list_generated_ids("u1")
            return submission, health, generated

        submission, health, generated = asyncio.run(run())
        assert submission.accepted is False
        assert submission.job_id is None
        assert "user input" in submission.message
        assert submission.validation is not None
        assert health["queues"]["resource-generation"]["total"] == 0
        assert generated == []

    def test_pending_job_reused(self, abc_registry, resource_store):
        async def run():
            await resource_store.seed("u1", ["a"])
            orch = _orchestrator(abc_registry, resource_store)
            first = await orch.submit_generation("u1", "b")
            second = await orch.submit_generation("u1", "b")
            other_user = await orch.submit_generation("u2", "a")
            return first, second, other_user

        first, second, other_user = asyncio.run(run())
        assert first.accepted is True
        assert first.deduplicated is False
        assert first.job_id.startswith("generation-u1-")
        assert first.status == JobState.WAITING
        assert second.deduplicated is True
        assert second.job_id == first.job_id
        assert other_user.job_id != first.job_id

    def test_batch(self, abc_registry, resource_store):
        async def run():
            orch = _orchestrator(abc_registry, resource_store)
            return await orch.submit_batch("u1", []), await orch.submit_batch("u1", ["a", "b"])

        empty, batch = asyncio.run(run())
        assert empty.accepted is False
        assert batch.accepted is True
        assert batch.job_id.startswith("batch-u1-")
        assert batch.queue_name == "batch-generation"

    def test_cache_warming(self, abc_registry, resource_store):
        async def run():
            await resource_store.seed("u1", ["a"])
            orch = _orchestrator(abc_registry, resource_store)
            return await orch.submit_cache_warming("u1"), await orch.submit_cache_warming("u1")

        first, second = asyncio.run(run())
        assert first.accepted is True
        assert first.job_id.startswith("warm-u1-")
        assert second.deduplicated is True

    def test_job_ids_unique_within_millisecond(self, abc_registry, resource_store):
        orch = _orchestrator(abc_registry, resource_store)
        queue = orch.queues.get("resource-generation")
        ids = {orch._job_id(queue, "u1") for _ in range(50)}
        assert len(ids) == 50


# ============================================================================
# PLANS
# ============================================================================

class TestGenerationPlan:
    """Dependency-ordered submission."""

    def test_plan_runs_in_order(self, abc_registry, resource_store):
        async def run():
            orch = _orchestrator(abc_registry, resource_store)
            await orch.start()
            try:
                result = await orch.submit_generation_plan("u1", "c", timeout=5)
                generated = await resource_store.list_generated_ids("u1")
            finally:
                await orch.stop()
            return result, generated

        result, generated = asyncio.run(run())
        assert result["steps"] == ["a", "b", "c"]
        assert result["completed"] is True
        assert result["failed_at"] is None
        assert len(result["submissions"]) == 3
        assert generated == ["a", "b", "c"]

    def test_missing_inputs_block_plan(self, rich_registry, resource_store):
        result = asyncio.run(
            _orchestrator(rich_registry, resource_store).submit_generation_plan("u1", "icp")
        )
        assert result["missing_inputs"] == ["product-name"]
        assert result["submissions"] == []
        assert result["completed"] is False

    def test_plan_without_wait_enqueues_all(self, abc_registry, resource_store):
        async def run():
            orch = _orchestrator(abc_registry, resource_store)
            result = await orch.submit_generation_plan("u1", "c", wait=False)
            counts = await orch.queues.get("resource-generation").get_counts()
            return result, counts

        result, counts = asyncio.run(run())
        assert len(result["submissions"]) == 3
        assert result["completed"] is False
        assert counts[JobState.WAITING] == 3

    def test_plan_timeout(self, abc_registry, resource_store):
        async def run():
            orch = _orchestrator(abc_registry, resource_store)
            # Workers never started, so the first job cannot finish
            return await orch.submit_generation_plan("u1", "b", timeout=0.05)

        result = asyncio.run(run())
        assert result["failed_at"] == "a"
        assert "did not finish" in result["error"]


# ============================================================================
# STATUS / RECORDING / HEALTH
# ============================================================================

class TestStatusAndHealth:
    """Lookup and introspection."""

    def test_job_status(self, abc_registry, resource_store):
        async def run():
            orch = _orchestrator(abc_registry, resource_store)
            submission = await orch.submit_generation("u1", "a")
            return await orch.get_job_status(submission.job_id), await orch.get_job_status("nope")

        status, missing = asyncio.run(run())
        assert status["status"] == "waiting"
        assert status["data"] == {"user_id": "u1", "resource_id": "a"}
        assert missing is None

    def test_completed_job_status(self, abc_registry, resource_store):
        async def run():
            orch = _orchestrator(abc_registry, resource_store)
            await orch.start()
            try:
                submission = await orch.submit_generation("u1", "a")
                queue = orch.queues.get("resource-generation")
                await queue.wait_until_finished(submission.job_id, timeout=5, poll_interval=0.01)
                return await orch.get_job_status(submission.job_id)
            finally:
                await orch.stop()

        status = asyncio.run(run())
        assert status["status"] == "completed"
        assert status["progress"] == 100
        assert status["result"]["resource_id"] == "a"

    def test_sweep_purges_aged_jobs_on_idle_queue(self, abc_registry, resource_store):
        async def run():
            orch = _orchestrator(abc_registry, resource_store)
            await orch.start()
            try:
                submission = await orch.submit_generation("u1", "a")
                queue = orch.queues.get("resource-generation")
                await queue.wait_until_finished(submission.job_id, timeout=5, poll_interval=0.01)
            finally:
                await orch.stop()

            fresh = await orch.sweep_expired()
            queue._jobs[submission.job_id].finished_at -= timedelta(days=2)
            aged = await orch.sweep_expired()
            return fresh, aged, await orch.get_job_status(submission.job_id)

        fresh, aged, status = asyncio.run(run())
        assert fresh["jobs"] == 0
        assert aged["jobs"] == 1
        assert status is None

    def test_record_generated_invalidates_cache(self, abc_registry, resource_store):
        async def run():
            orch = _orchestrator(abc_registry, resource_store)
            await orch.cache.set("u1", "c", "v1", {"context": "x"})
            await orch.record_generated("u1", "a", "summary of a")
            return await orch.cache.store.list_for_user("u1"), await resource_store.list_generated_ids("u1")

        entries, generated = asyncio.run(run())
        assert entries == []
        assert generated == ["a"]

    def test_record_unknown_resource(self, abc_registry, resource_store):
        with pytest.raises(KeyError):
            asyncio.run(_orchestrator(abc_registry, resource_store).record_generated("u1", "zzz", None))

    def test_health(self, abc_registry, resource_store):
        async def run():
            orch = _orchestrator(abc_registry, resource_store)
            before = await orch.check_health()
            await orch.start()
            after = await orch.check_health()
            await orch.stop()
            return before, after

        before, after = asyncio.run(run())
        assert before["running"] is False
        assert before["uptime_seconds"] is None
        assert after["status"] == "healthy"
        assert after["running"] is True
        assert after["backend"] == "memory"
        assert after["registry_size"] == 3
        assert sorted(after["queues"]) == ["batch-generation", "context-warming", "resource-generation"]
        assert all(w["running"] for w in after["workers"])
