# ============================================================================
# TASK HANDLERS
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - Generation, batch and cache-warming handlers
# PURPOSE: The work each queue performs
# CREATED: 16 OCT 2026
# ============================================================================
"""
Task Handlers

One handler per queue:

    resource-generation  GenerationHandler       {user_id, resource_id}
    batch-generation     BatchGenerationHandler  {user_id, resource_ids}
    context-warming      CacheWarmingHandler     {user_id, resource_ids}

Handlers are idempotent: generating a resource twice overwrites the
stored record, and warming skips fresh cache entries.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.logging import log_checkpoint, log_context
from repositories.resource_store import ResourceStore
from services.context_aggregator import ContextAggregator
from services.context_cache import ContextCache
from services.dependency_service import DependencyValidator
from services.generation_backend import GenerationBackend
from .harness import BatchItemResult, JobContext

logger = logging.getLogger(__name__)


JOB_TYPE_GENERATE = "generate_resource"
JOB_TYPE_BATCH = "generate_batch"
JOB_TYPE_WARM = "warm_cache"


class DependencyNotSatisfiedError(Exception):
    """Raised when a job's target still has missing required dependencies."""

    def __init__(self, resource_id: str, missing: List[str]):
        self.resource_id = resource_id
        self.missing = missing
        super().__init__(f"Cannot generate {resource_id}: missing required dependencies {missing}")


class NotGeneratableError(Exception):
    """Raised when a job targets a raw user input resource."""

    def __init__(self, resource_id: str):
        self.resource_id = resource_id
        super().__init__(f"Resource '{resource_id}' is a user input and cannot be generated")


class InvalidPayloadError(Exception):
    """Raised when a job payload lacks a required field."""

    def __init__(self, job_type: str, field_name: str):
        self.job_type = job_type
        self.field_name = field_name
        super().__init__(f"{job_type} payload requires '{field_name}'")


def _require(payload: Dict[str, Any], job_type: str, field_name: str) -> Any:
    value = payload.get(field_name)
    if not value:
        raise InvalidPayloadError(job_type, field_name)
    return value


# ============================================================================
# GENERATION
# ============================================================================

class GenerationHandler:
    """
    Generate one resource for one user.

    Steps (progress):
        validate required dependencies    (10)
        aggregate context via the cache   (40)
        call the generation backend       (90)
        record and invalidate user cache  (100)
    """

    job_type = JOB_TYPE_GENERATE

    def __init__(
        self,
        validator: DependencyValidator,
        cache: ContextCache,
        aggregator: ContextAggregator,
        backend: GenerationBackend,
        store: ResourceStore,
    ):
        self.validator = validator
        self.cache = cache
        self.aggregator = aggregator
        self.backend = backend
        self.store = store

    async def __call__(self, ctx: JobContext) -> Dict[str, Any]:
        user_id = _require(ctx.payload, self.job_type, "user_id")
        resource_id = _require(ctx.payload, self.job_type, "resource_id")
        return await self.generate(user_id, resource_id, ctx.report_progress)

    async def generate(
        self,
        user_id: str,
        resource_id: str,
        report_progress: Optional[Callable[[int], Awaitable[None]]] = None,
    ) -> Dict[str, Any]:
        async def progress(percent: int) -> None:
            if report_progress is not None:
                await report_progress(percent)

        with log_context(user_id=user_id, resource_id=resource_id):
            definition = self.validator.registry.lookup(resource_id)
            if definition is not None and definition.is_input:
                raise NotGeneratableError(resource_id)

            validation = await self.validator.validate(user_id, resource_id)
            if validation.error:
                raise RuntimeError(validation.error)
            if not validation.valid:
                raise DependencyNotSatisfiedError(resource_id, validation.missing_required_ids)
            await progress(10)

            context = await self.cache.get_or_compute(user_id, resource_id, self.aggregator.aggregate)
            from_cache = context.metadata.get("cached", True)
            await progress(40)

            output = await self.backend.generate(resource_id, context.payload)
            await progress(90)

            await self.store.record_generated(user_id, resource_id, output)
            await self.cache.invalidate_for_user(user_id)
            await progress(100)

            log_checkpoint("resource_generated", {"context_from_cache": from_cache})

        return {
            "user_id": user_id,
            "resource_id": resource_id,
            "output": output,
            "context_tokens": context.payload.get("total_tokens", 0),
            "context_from_cache": from_cache,
            "missing_optional": validation.missing_optional_ids,
        }


class BatchGenerationHandler:
    """
    Generate several resources for one user, in the order given.

    Each item is independent: a failure is recorded in its
    BatchItemResult and the next item still runs.
    """

    job_type = JOB_TYPE_BATCH

    def __init__(self, generation: GenerationHandler):
        self.generation = generation

    async def __call__(self, ctx: JobContext) -> List[BatchItemResult]:
        user_id = _require(ctx.payload, self.job_type, "user_id")
        resource_ids = _require(ctx.payload, self.job_type, "resource_ids")

        results: List[BatchItemResult] = []
        total = len(resource_ids)
        for index, resource_id in enumerate(resource_ids):
            try:
                output = await self.generation.generate(user_id, resource_id)
                results.append(BatchItemResult.ok(resource_id, output))
            except Exception as e:
                logger.warning(f"Batch item {resource_id} failed for {user_id}: {e}")
                results.append(BatchItemResult.failed(resource_id, str(e) or e.__class__.__name__))
            await ctx.report_progress(int((index + 1) * 100 / total))

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Batch for {user_id}: {succeeded}/{total} resources generated")
        return results


# ============================================================================
# CACHE WARMING
# ============================================================================

class CacheWarmingHandler:
    """Pre-aggregate context for resources a user is likely to generate next."""

    job_type = JOB_TYPE_WARM

    def __init__(self, cache: ContextCache, aggregator: ContextAggregator):
        self.cache = cache
        self.aggregator = aggregator

    async def __call__(self, ctx: JobContext) -> Dict[str, Any]:
        user_id = _require(ctx.payload, self.job_type, "user_id")
        resource_ids = list(ctx.payload.get("resource_ids") or [])

        warmed = await self.cache.warm_cache(user_id, resource_ids, self.aggregator.aggregate)
        return {
            "user_id": user_id,
            "requested": len(resource_ids),
            "warmed": warmed,
        }


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "JOB_TYPE_GENERATE",
    "JOB_TYPE_BATCH",
    "JOB_TYPE_WARM",
    "DependencyNotSatisfiedError",
    "InvalidPayloadError",
    "NotGeneratableError",
    "GenerationHandler",
    "BatchGenerationHandler",
    "CacheWarmingHandler",
]
