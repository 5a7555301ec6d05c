# ============================================================================
# MODELS MODULE
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Model exports
# PURPOSE: Central export point for all Pydantic models
# CREATED: 16 OCT 2026
# ============================================================================
"""
Models Module - Central Export Point

All Pydantic models for the resource orchestration core.
"""

from core.models.resource import ResourceDefinition, GeneratedResourceRecord
from core.models.validation import (
    MissingDependency,
    DependencyCost,
    CostEstimate,
    ValidationResult,
    BatchSummary,
    BatchValidationResult,
    AvailableResource,
    GenerationPlan,
)
from core.models.cache import CacheEntry, CachedContext
from core.models.job import Job, JobOptions, JobSubmission, BackoffPolicy, RetentionPolicy, generate_job_id

__all__ = [
    # Registry
    "ResourceDefinition",
    "GeneratedResourceRecord",
    # Validation
    "MissingDependency",
    "DependencyCost",
    "CostEstimate",
    "ValidationResult",
    "BatchSummary",
    "BatchValidationResult",
    "AvailableResource",
    "GenerationPlan",
    # Cache
    "CacheEntry",
    "CachedContext",
    # Queue
    "Job",
    "JobOptions",
    "JobSubmission",
    "BackoffPolicy",
    "RetentionPolicy",
    "generate_job_id",
]
