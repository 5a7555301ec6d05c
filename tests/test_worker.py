# ============================================================================
# WORKER TESTS
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Tests - Worker harness, task handlers and context aggregation
# PURPOSE: Verify handler wiring, progress reporting and batch results
# CREATED: 16 OCT 2026
# ============================================================================
"""
Worker Tests

Covers:
1. JobContext progress reporting (and tolerance of progress failures)
2. Batch item results summarized as {items, total, succeeded, failed}
3. Worker binds a handler to a queue and counts outcomes
4. GenerationHandler records the resource and invalidates the user cache
5. Unmet dependencies, raw input targets and bad payloads raise into the queue
6. CacheWarmingHandler and ContextAggregator output

Run with:
    pytest tests/test_worker.py -v
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from pydantic import BaseModel

from core.contracts import BackoffType, JobState
from core.models import BackoffPolicy, JobOptions
from queues import HandlerAlreadyRegisteredError, InMemoryJobQueue
from services import ContextAggregator, ContextCache, DependencyValidator, EchoGenerationBackend
from worker import (
    BatchGenerationHandler,
    BatchItemResult,
    CacheWarmingHandler,
    DependencyNotSatisfiedError,
    GenerationHandler,
    InvalidPayloadError,
    JobContext,
    NotGeneratableError,
    Worker,
    normalize_result,
)


def _ctx(payload, progress_fn=None) -> JobContext:
    return JobContext(
        job_id="generation-u1-1",
        queue_name="resource-generation",
        job_type="generate_resource",
        payload=payload,
        attempt=1,
        max_attempts=2,
        progress_fn=progress_fn,
    )


def _queue(attempts: int = 1) -> InMemoryJobQueue:
    return InMemoryJobQueue(
        "resource-generation",
        JobOptions(attempts=attempts, backoff=BackoffPolicy(type=BackoffType.FIXED, delay_ms=1)),
        prefix="generation",
    )


@pytest.fixture
def generation(abc_registry, resource_store, cache_store):
    validator = DependencyValidator(abc_registry, resource_store)
    cache = ContextCache(cache_store, resource_store)
    aggregator = ContextAggregator(abc_registry, resource_store)
    return GenerationHandler(validator, cache, aggregator, EchoGenerationBackend(), resource_store)


# ============================================================================
# HARNESS
# ============================================================================

class TestJobContext:
    """Progress callback handling."""

    def test_report_progress(self):
        progress_fn = AsyncMock(return_value=50)
        ctx = _ctx({}, progress_fn)

        asyncio.run(ctx.report_progress(50))

        progress_fn.assert_awaited_once_with("generation-u1-1", 50)

    def test_progress_failure_is_tolerated(self):
        ctx = _ctx({}, AsyncMock(side_effect=ConnectionError("db down")))
        asyncio.run(ctx.report_progress(10))

    def test_no_callback(self):
        asyncio.run(_ctx({}).report_progress(10))

    def test_last_attempt(self):
        ctx = _ctx({})
        assert ctx.is_last_attempt is False
        ctx.attempt = 2
        assert ctx.is_last_attempt is True


class TestResults:
    """Result normalization."""

    def test_batch_summary(self):
        summary = normalize_result([
            BatchItemResult.ok("a", {"content": "x"}),
            BatchItemResult.failed("b", "boom"),
        ])
        assert summary["total"] == 2
        assert summary["succeeded"] == 1
        assert summary["failed"] == 1
        assert summary["items"][1] == {"item_id": "b", "success": False, "result": None, "error": "boom"}

    def test_failed_item_error_truncated(self):
        assert len(BatchItemResult.failed("a", "e" * 3000).error) == 2000

    def test_pydantic_result_dumped(self):
        class Output(BaseModel):
            value: int

        assert normalize_result(Output(value=3)) == {"value": 3}

    def test_plain_values_untouched(self):
        assert normalize_result({"ok": True}) == {"ok": True}
        assert normalize_result([]) == []


class TestWorker:
    """Worker lifecycle against the in-memory queue."""

    def test_runs_handler_and_counts(self):
        async def handler(ctx: JobContext):
            await ctx.report_progress(50)
            return {"echo": ctx.payload["n"]}

        async def run():
            queue = _queue()
            worker = Worker(queue, handler, worker_id="w1")
            await worker.run()
            job = await queue.add("work", {"n": 7})
            finished = await queue.wait_until_finished(job.job_id, timeout=5, poll_interval=0.01)
            status = worker.get_status()
            await worker.close()
            await queue.close()
            return finished, status, worker

        finished, status, worker = asyncio.run(run())
        assert finished.result == {"echo": 7}
        assert status["running"] is True
        assert status["stats"]["processed"] == 1
        assert status["stats"]["succeeded"] == 1
        assert status["stats"]["progress_updates"] == 1
        assert worker.is_running is False

    def test_failing_handler_counts_retries(self):
        async def handler(ctx: JobContext):
            raise RuntimeError(f"attempt {ctx.attempt} failed")

        async def run():
            queue = _queue(attempts=2)
            worker = Worker(queue, handler)
            await worker.run()
            job = await queue.add("work", {})
            finished = await queue.wait_until_finished(job.job_id, timeout=5, poll_interval=0.01)
            await worker.close()
            await queue.close()
            return finished, worker.stats

        finished, stats = asyncio.run(run())
        assert finished.state == JobState.FAILED
        assert finished.failed_reason == "attempt 2 failed"
        assert stats.retried == 1
        assert stats.failed == 1

    def test_second_worker_on_same_queue_rejected(self):
        async def handler(ctx):
            return None

        async def run():
            queue = _queue()
            await Worker(queue, handler).run()
            await Worker(queue, handler).run()

        with pytest.raises(HandlerAlreadyRegisteredError):
            asyncio.run(run())


# ============================================================================
# HANDLERS
# ============================================================================

class TestGenerationHandler:
    """Single-resource generation."""

    def test_generates_and_records(self, generation, resource_store, cache_store):
        progress = []

        async def report(percent):
            progress.append(percent)

        async def run():
            await resource_store.seed("u1", ["a"])
            result = await generation.generate("u1", "b", report)
            return result, await resource_store.list_generated_ids("u1"), await cache_store.list_for_user("u1")

        result, generated, cached = asyncio.run(run())
        assert result["resource_id"] == "b"
        assert result["output"]["sources"] == ["a"]
        assert result["context_from_cache"] is False
        assert progress == [10, 40, 90, 100]
        assert "b" in generated
        assert cached == []

    def test_missing_dependency_raises(self, generation):
        with pytest.raises(DependencyNotSatisfiedError) as exc_info:
            asyncio.run(generation.generate("u1", "c"))
        assert exc_info.value.missing == ["a", "b"]

    def test_unknown_resource_raises(self, generation):
        with pytest.raises(RuntimeError, match="not found"):
            asyncio.run(generation.generate("u1", "zzz"))

    def test_input_resource_raises(self, rich_registry, resource_store, cache_store):
        backend = AsyncMock()
        handler = GenerationHandler(
            DependencyValidator(rich_registry, resource_store),
            ContextCache(cache_store, resource_store),
            ContextAggregator(rich_registry, resource_store),
            backend,
            resource_store,
        )

        async def run():
            with pytest.raises(NotGeneratableError) as exc_info:
                await handler.generate("u1", "product-name")
            return exc_info.value, await resource_store.list_generated_ids("u1")

        error, generated = asyncio.run(run())
        assert error.resource_id == "product-name"
        assert generated == []
        backend.generate.assert_not_called()

    def test_payload_requires_fields(self, generation):
        with pytest.raises(InvalidPayloadError, match="resource_id"):
            asyncio.run(generation(_ctx({"user_id": "u1"})))


class TestBatchAndWarming:
    """Batch and cache-warming handlers."""

    def test_batch_continues_after_item_failure(self, generation, resource_store):
        progress_fn = AsyncMock(return_value=None)

        async def run():
            handler = BatchGenerationHandler(generation)
            return await handler(_ctx({"user_id": "u1", "resource_ids": ["c", "a", "b"]}, progress_fn))

        results = asyncio.run(run())
        assert [r.success for r in results] == [False, True, True]
        assert "missing required dependencies" in results[0].error
        assert [c.args[1] for c in progress_fn.await_args_list] == [33, 66, 100]

    def test_warming(self, abc_registry, resource_store, cache_store):
        cache = ContextCache(cache_store, resource_store)
        handler = CacheWarmingHandler(cache, ContextAggregator(abc_registry, resource_store))

        async def run():
            await resource_store.seed("u1", ["a"])
            first = await handler(_ctx({"user_id": "u1", "resource_ids": ["b", "c"]}))
            second = await handler(_ctx({"user_id": "u1", "resource_ids": ["b", "c"]}))
            return first, second

        first, second = asyncio.run(run())
        assert first == {"user_id": "u1", "requested": 2, "warmed": 2}
        assert second["warmed"] == 0


class TestContextAggregator:
    """Context sections and token budgets."""

    def test_sections_by_dependency_kind(self, rich_registry, resource_store):
        aggregator = ContextAggregator(rich_registry, resource_store, optional_summary_chars=10)

        async def run():
            await resource_store.record_generated("u1", "product-name", "Acme")
            await resource_store.record_generated("u1", "icp", "Mid-market finance teams")
            await resource_store.record_generated("u1", "pains", "Manual reconciliation takes days")
            return await aggregator.aggregate("u1", "positioning")

        context = asyncio.run(run())
        assert [s["resource_id"] for s in context["required"]] == ["icp"]
        assert [s["resource_id"] for s in context["optional"]] == ["pains"]
        assert context["optional"][0]["content"].endswith("...")
        assert context["total_tokens"] == sum(context["token_breakdown"].values())
        assert "## Ideal Customer Profile" in context["formatted_context"]

    def test_input_dependencies_are_critical(self, rich_registry, resource_store):
        aggregator = ContextAggregator(rich_registry, resource_store)

        async def run():
            await resource_store.record_generated("u1", "product-name", "Acme")
            return await aggregator.aggregate("u1", "icp")

        context = asyncio.run(run())
        assert [s["resource_id"] for s in context["critical"]] == ["product-name"]
        assert context["required"] == []

    def test_unknown_target(self, rich_registry, resource_store):
        with pytest.raises(KeyError):
            asyncio.run(ContextAggregator(rich_registry, resource_store).aggregate("u1", "zzz"))
