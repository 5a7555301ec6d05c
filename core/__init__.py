# ============================================================================
# CORE MODULE
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core module initialization
# PURPOSE: Export core contracts and models
# CREATED: 16 OCT 2026
# ============================================================================

from core.contracts import JobState, QueueBackend, ResourceCategory, BackoffType, QueueEvent
from core.models import (
    ResourceDefinition,
    GeneratedResourceRecord,
    ValidationResult,
    CacheEntry,
    Job,
    JobOptions,
)

__all__ = [
    # Enums
    "JobState",
    "QueueBackend",
    "ResourceCategory",
    "BackoffType",
    "QueueEvent",
    # Models
    "ResourceDefinition",
    "GeneratedResourceRecord",
    "ValidationResult",
    "CacheEntry",
    "Job",
    "JobOptions",
]
