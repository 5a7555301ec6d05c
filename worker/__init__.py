# ============================================================================
# WORKER MODULE
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - Worker execution components
# PURPOSE: Handler harness and task handlers
# CREATED: 16 OCT 2026
# ============================================================================
"""
Worker Module

Components for job execution:
- harness: Worker, JobContext, BatchItemResult
- handlers: generation, batch generation and cache warming handlers
- main: standalone worker entry point (postgres backend)
"""

from worker.harness import (
    Worker,
    WorkerStats,
    JobContext,
    BatchItemResult,
    TaskHandler,
    summarize_batch,
    normalize_result,
)
from worker.handlers import (
    GenerationHandler,
    BatchGenerationHandler,
    CacheWarmingHandler,
    DependencyNotSatisfiedError,
    InvalidPayloadError,
    NotGeneratableError,
)

__all__ = [
    "Worker",
    "WorkerStats",
    "JobContext",
    "BatchItemResult",
    "TaskHandler",
    "summarize_batch",
    "normalize_result",
    "GenerationHandler",
    "BatchGenerationHandler",
    "CacheWarmingHandler",
    "DependencyNotSatisfiedError",
    "InvalidPayloadError",
    "NotGeneratableError",
]
