# ============================================================================
# RESOURCE ORCHESTRATOR
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - Composition root
# PURPOSE: Own one instance of every component and expose the submit API
# CREATED: 16 OCT 2026
# ============================================================================
"""
Resource Orchestrator

Composition root. One ResourceOrchestrator owns:

    ResourceRegistry       loaded once from YAML
    ResourceStore          generated resources per user
    DependencyValidator    validation, ordering, cost, recommendations
    ContextCache           version-keyed aggregated context
    ContextAggregator      builds context from generated resources
    QueueSet               resource-generation, context-warming, batch-generation
    Worker per queue       GenerationHandler, CacheWarmingHandler, BatchGenerationHandler

Components are passed by reference; nothing here is a module-level
singleton. The queue backend is chosen once at construction:

    orchestrator = ResourceOrchestrator.create()                  # memory
    orchestrator = await ResourceOrchestrator.create_postgres(pool)

Usage:
    await orchestrator.start()
    submission = await orchestrator.submit_generation("user-1", "ideal-customer-profile")
    status = await orchestrator.get_job_status(submission.job_id)
    await orchestrator.stop()
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from psycopg_pool import AsyncConnectionPool

from core.config import Defaults, OrchestratorConfig, QueueName, get_defaults
from core.contracts import JobState, QueueBackend
from core.logging import log_context
from core.models import GeneratedResourceRecord, JobOptions, JobSubmission
from queues import InMemoryJobQueue, JobNotFoundError, JobQueue, QueueSet
from repositories import (
    InMemoryCacheStore,
    InMemoryResourceStore,
    PostgresCacheStore,
    PostgresResourceStore,
    ResourceStore,
    ensure_schema,
)
from repositories.cache_repo import CacheStore
from services.context_aggregator import ContextAggregator
from services.context_cache import ContextCache
from services.dependency_service import DependencyValidator
from services.generation_backend import GenerationBackend, create_generation_backend
from services.registry_service import ResourceRegistry
from worker.handlers import (
    JOB_TYPE_BATCH,
    JOB_TYPE_GENERATE,
    JOB_TYPE_WARM,
    BatchGenerationHandler,
    CacheWarmingHandler,
    GenerationHandler,
)
from worker.harness import Worker

logger = logging.getLogger(__name__)


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class ResourceOrchestrator:
    """Owns the orchestration components and the workers that drive them."""

    def __init__(
        self,
        registry: ResourceRegistry,
        resource_store: ResourceStore,
        cache_store: CacheStore,
        queues: QueueSet,
        generation_backend: Optional[GenerationBackend] = None,
        defaults: Optional[Defaults] = None,
        worker_id: Optional[str] = None,
    ):
        self.defaults = defaults or get_defaults()
        self.registry = registry
        self.resource_store = resource_store
        self.queues = queues
        self.validator = DependencyValidator(registry, resource_store)
        self.cache = ContextCache(cache_store, resource_store, self.defaults.cache)
        self.aggregator = ContextAggregator(
            registry,
            resource_store,
            optional_summary_chars=self.defaults.cache.optional_summary_chars,
        )
        self.generation_backend = generation_backend or create_generation_backend()

        self.generation_handler = GenerationHandler(
            self.validator,
            self.cache,
            self.aggregator,
            self.generation_backend,
            resource_store,
        )
        handlers = {
            QueueName.RESOURCE_GENERATION: self.generation_handler,
            QueueName.CONTEXT_WARMING: CacheWarmingHandler(self.cache, self.aggregator),
            QueueName.BATCH_GENERATION: BatchGenerationHandler(self.generation_handler),
        }
        self.workers: List[Worker] = [
            Worker(
                queues.get(name),
                handler,
                concurrency=self.defaults.worker.concurrency,
                worker_id=worker_id,
            )
            for name, handler in handlers.items()
        ]

        self._running = False
        self._started_at: Optional[datetime] = None
        self._stop_event = asyncio.Event()
        self._cleanup_task: Optional[asyncio.Task] = None
        self._last_id_ms = 0

    # =========================================================================
    # CONSTRUCTION
    # =========================================================================

    @staticmethod
    def load_registry(config: OrchestratorConfig) -> ResourceRegistry:
        return ResourceRegistry.from_yaml(config.definitions_path)

    @classmethod
    def create(
        cls,
        defaults: Optional[Defaults] = None,
        registry: Optional[ResourceRegistry] = None,
        resource_store: Optional[ResourceStore] = None,
        generation_backend: Optional[GenerationBackend] = None,
    ) -> "ResourceOrchestrator":
        """Build an orchestrator on the in-memory backend."""
        defaults = defaults or get_defaults()
        registry = registry or cls.load_registry(defaults.orchestrator)
        queues = QueueSet.build(QueueBackend.MEMORY, defaults.queues)
        return cls(
            registry=registry,
            resource_store=resource_store or InMemoryResourceStore(),
            cache_store=InMemoryCacheStore(),
            queues=queues,
            generation_backend=generation_backend,
            defaults=defaults,
        )

    @classmethod
    async def create_postgres(
        cls,
        pool: AsyncConnectionPool,
        defaults: Optional[Defaults] = None,
        registry: Optional[ResourceRegistry] = None,
        generation_backend: Optional[GenerationBackend] = None,
        worker_id: Optional[str] = None,
    ) -> "ResourceOrchestrator":
        """Build an orchestrator on the PostgreSQL backend."""
        defaults = defaults or get_defaults()
        if defaults.orchestrator.auto_bootstrap_schema:
            logger.info("Auto-bootstrap enabled, deploying schema...")
            await ensure_schema(pool)

        registry = registry or cls.load_registry(defaults.orchestrator)
        queues = QueueSet.build(
            QueueBackend.POSTGRES,
            defaults.queues,
            pool=pool,
            worker_defaults=defaults.worker,
            worker_id=worker_id,
        )
        return cls(
            registry=registry,
            resource_store=PostgresResourceStore(pool),
            cache_store=PostgresCacheStore(pool),
            queues=queues,
            generation_backend=generation_backend,
            defaults=defaults,
            worker_id=worker_id,
        )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self, run_workers: bool = True) -> None:
        """
        Start workers and the retention sweep loop.

        With run_workers=False this process only submits and inspects
        jobs; separate worker processes consume them (postgres backend).
        """
        if self._running:
            logger.warning("Orchestrator already running")
            return

        self._running = True
        self._started_at = datetime.now(timezone.utc)
        self._stop_event.clear()

        if run_workers:
            for worker in self.workers:
                await worker.run()

        self._cleanup_task = asyncio.create_task(
            self._retention_loop(),
            name="orchestrator-retention",
        )
        logger.info(
            f"Orchestrator started ({self.queues.backend.value} backend, "
            f"{len(self.registry)} resources, workers={'on' if run_workers else 'off'})"
        )

    async def stop(self) -> None:
        """Stop workers, close queues and the generation backend."""
        if not self._running:
            return

        self._running = False
        self._stop_event.set()

        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        for worker in self.workers:
            await worker.close()
        await self.queues.close()
        await self.generation_backend.close()
        logger.info("Orchestrator stopped")

    async def sweep_expired(self) -> Dict[str, int]:
        """
        Remove aged-out cache entries and finished in-memory jobs.

        Postgres queues purge in their own maintenance loop; in-memory
        queues otherwise only purge when another job finishes.
        """
        removed = {"cache_entries": await self.cache.cleanup_expired(), "jobs": 0}
        for queue in self.queues:
            if isinstance(queue, InMemoryJobQueue):
                removed["jobs"] += queue.clean()
        if removed["jobs"]:
            logger.info(f"Retention sweep removed {removed['jobs']} finished jobs")
        return removed

    async def _retention_loop(self) -> None:
        interval = self.defaults.worker.retention_sweep_seconds
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            if self._stop_event.is_set():
                break
            await self.sweep_expired()

    @property
    def is_running(self) -> bool:
        return self._running

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    def _queue(self, name: str) -> JobQueue:
        return self.queues.get(name)

    def _job_id(self, queue: JobQueue, user_id: str) -> str:
        """{prefix}-{user_id}-{epoch_ms}, with ms kept strictly increasing in this process."""
        now_ms = max(_epoch_ms(), self._last_id_ms + 1)
        self._last_id_ms = now_ms
        return f"{queue.prefix}-{user_id}-{now_ms}"

    async def submit_generation(self, user_id: str, resource_id: str) -> JobSubmission:
        """
        Validate and enqueue generation of one resource.

        Returns accepted=False with the validation result when validation
        fails or the target is a raw user input. While a job for the
        same (user, resource) is pending, that job is returned instead of
        a new one.
        """
        with log_context(user_id=user_id, resource_id=resource_id, operation="submit_generation"):
            validation = await self.validator.validate(user_id, resource_id)
            definition = self.registry.lookup(resource_id)
            if definition is not None and definition.is_input:
                logger.info(f"Not enqueuing {resource_id} for {user_id}: user input resource")
                return JobSubmission(
                    accepted=False,
                    validation=validation,
                    message=f"Resource '{resource_id}' is a user input and cannot be generated",
                )
            if not validation.valid:
                logger.info(
                    f"Not enqueuing {resource_id} for {user_id}: "
                    f"{validation.error or validation.missing_required_ids}"
                )
                return JobSubmission(
                    accepted=False,
                    validation=validation,
                    message=validation.error or "Missing required dependencies",
                )

            submission = await self._enqueue_generation(user_id, resource_id)
            submission.validation = validation
            return submission

    async def _enqueue_generation(self, user_id: str, resource_id: str) -> JobSubmission:
        queue = self._queue(QueueName.RESOURCE_GENERATION)
        requested_id = self._job_id(queue, user_id)
        job = await queue.add(
            JOB_TYPE_GENERATE,
            {"user_id": user_id, "resource_id": resource_id},
            JobOptions(job_id=requested_id, dedupe_key=f"{user_id}:{resource_id}"),
        )
        deduplicated = job.job_id != requested_id
        logger.info(
            f"{'Reused' if deduplicated else 'Enqueued'} generation job {job.job_id} "
            f"for {user_id}/{resource_id}"
        )
        return JobSubmission(
            accepted=True,
            job_id=job.job_id,
            queue_name=queue.name,
            status=job.state,
            deduplicated=deduplicated,
        )

    async def submit_generation_plan(
        self,
        user_id: str,
        resource_id: str,
        wait: bool = True,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Submit the suggested order for resource_id.

        With wait=True each step is submitted only after the previous job
        finished, and submission stops at the first failure. With
        wait=False every step is enqueued at once and ordering is left to
        the handlers' own validation and retries.

        Steps that are raw inputs cannot be generated; if any are missing
        nothing is submitted.
        """
        plan = await self.validator.get_generation_plan(user_id, resource_id)
        result: Dict[str, Any] = {
            "user_id": user_id,
            "resource_id": resource_id,
            "steps": [step.resource_id for step in plan.steps],
            "submissions": [],
            "completed": False,
            "failed_at": None,
            "error": plan.validation.error,
        }
        if plan.validation.error:
            return result

        missing_inputs = [
            step.resource_id
            for step in plan.steps
            if step.resource_id in self.registry and self.registry.get_or_raise(step.resource_id).is_input
        ]
        if missing_inputs:
            result["error"] = f"Missing user inputs: {missing_inputs}"
            result["missing_inputs"] = missing_inputs
            return result

        queue = self._queue(QueueName.RESOURCE_GENERATION)
        for step in plan.steps:
            if wait:
                submission = await self.submit_generation(user_id, step.resource_id)
            else:
                submission = await self._enqueue_generation(user_id, step.resource_id)
            result["submissions"].append(submission.model_dump(mode="json", exclude={"validation"}))

            if not submission.accepted:
                result["failed_at"] = step.resource_id
                result["error"] = submission.message
                return result
            if not wait:
                continue

            try:
                job = await queue.wait_until_finished(submission.job_id, timeout=timeout)
            except (asyncio.TimeoutError, JobNotFoundError) as e:
                result["failed_at"] = step.resource_id
                result["error"] = f"Job {submission.job_id} did not finish: {str(e) or 'timeout'}"
                return result
            if job.state != JobState.COMPLETED:
                result["failed_at"] = step.resource_id
                result["error"] = job.failed_reason
                return result

        result["completed"] = wait
        return result

    async def submit_batch(self, user_id: str, resource_ids: List[str]) -> JobSubmission:
        """Enqueue one batch job generating resource_ids in order."""
        if not resource_ids:
            return JobSubmission(accepted=False, message="No resources requested")

        queue = self._queue(QueueName.BATCH_GENERATION)
        job = await queue.add(
            JOB_TYPE_BATCH,
            {"user_id": user_id, "resource_ids": list(resource_ids)},
            JobOptions(job_id=self._job_id(queue, user_id)),
        )
        logger.info(f"Enqueued batch job {job.job_id} for {user_id} ({len(resource_ids)} resources)")
        return JobSubmission(accepted=True, job_id=job.job_id, queue_name=queue.name, status=job.state)

    async def submit_cache_warming(self, user_id: str, limit: int = 5) -> JobSubmission:
        """Enqueue warming of the user's recommended next resources."""
        recommended = await self.validator.get_recommended_next(user_id, limit)
        if not recommended:
            return JobSubmission(accepted=False, message="Nothing to warm")

        queue = self._queue(QueueName.CONTEXT_WARMING)
        requested_id = self._job_id(queue, user_id)
        job = await queue.add(
            JOB_TYPE_WARM,
            {"user_id": user_id, "resource_ids": [r.resource_id for r in recommended]},
            JobOptions(job_id=requested_id, dedupe_key=f"{user_id}:warm"),
        )
        return JobSubmission(
            accepted=True,
            job_id=job.job_id,
            queue_name=queue.name,
            status=job.state,
            deduplicated=job.job_id != requested_id,
        )

    # =========================================================================
    # STATUS
    # =========================================================================

    async def get_job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Status of a job on any queue, or None if unknown."""
        owner = self.queues.for_job_id(job_id)
        candidates = [owner] if owner is not None else list(self.queues)
        for queue in candidates:
            job = await queue.get_job(job_id)
            if job is not None:
                return job.to_status()
        return None

    async def record_generated(
        self,
        user_id: str,
        resource_id: str,
        summary: Any,
    ) -> GeneratedResourceRecord:
        """
        Record a resource generated outside the queue.

        The user's cache entries are invalidated so the next read sees
        the new resource version.

        Raises:
            KeyError: resource_id is not registered
        """
        self.registry.get_or_raise(resource_id)
        record = await self.resource_store.record_generated(user_id, resource_id, summary)
        await self.cache.invalidate_for_user(user_id)
        return record

    async def check_health(self) -> Dict[str, Any]:
        """Backend, registry size, per-queue stats and worker counters."""
        queues: Dict[str, Any] = {}
        healthy = True
        for queue in self.queues:
            try:
                queues[queue.name] = await queue.get_stats()
            except Exception as e:
                healthy = False
                queues[queue.name] = {"error": str(e)}
                logger.error(f"Health check failed for queue {queue.name}: {e}")

        uptime = None
        if self._started_at is not None:
            uptime = (datetime.now(timezone.utc) - self._started_at).total_seconds()

        return {
            "status": "healthy" if healthy else "degraded",
            "running": self._running,
            "backend": self.queues.backend.value,
            "registry_size": len(self.registry),
            "uptime_seconds": uptime,
            "queues": queues,
            "workers": [worker.get_status() for worker in self.workers],
            "cache": self.cache.performance_metrics(),
        }


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ResourceOrchestrator",
]
