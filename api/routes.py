# ============================================================================
# API ROUTES
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - FastAPI route definitions
# PURPOSE: HTTP endpoints over the resource orchestrator
# CREATED: 16 OCT 2026
# ============================================================================
"""
API Routes

Thin FastAPI router. Every route delegates to the ResourceOrchestrator
set at startup via set_services().
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse

from core.models import BatchValidationResult, ResourceDefinition, ValidationResult
from .schemas import (
    AvailableResourcesResponse,
    BatchGenerateRequest,
    ErrorResponse,
    JobStatusResponse,
    ResourceListResponse,
    SubmissionResponse,
    ValidateBatchRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# DEPENDENCY INJECTION
# ============================================================================
# Set by the main app at startup

_orchestrator = None


def set_services(orchestrator):
    """Set service instances for dependency injection."""
    global _orchestrator
    _orchestrator = orchestrator


def get_orchestrator():
    if _orchestrator is None:
        raise HTTPException(500, "Orchestrator not initialized")
    return _orchestrator


# ============================================================================
# RESOURCES
# ============================================================================

@router.get("/resources", response_model=ResourceListResponse, tags=["Resources"])
async def list_resources(
    tier: Optional[int] = Query(None, ge=0, description="Filter by tier"),
    category: Optional[str] = Query(None, description="Filter by category"),
):
    """
    List resource definitions.

    Optionally filter by tier or category.
    """
    registry = get_orchestrator().registry

    if tier is not None:
        resources = registry.list_by_tier(tier)
    elif category:
        try:
            resources = registry.list_by_category(category)
        except ValueError:
            raise HTTPException(400, f"Unknown category: {category}")
    else:
        resources = registry.list_all()

    return ResourceListResponse(resources=resources, total=len(resources))


@router.get(
    "/resources/{resource_id}",
    response_model=ResourceDefinition,
    tags=["Resources"],
    responses={404: {"model": ErrorResponse}},
)
async def get_resource(resource_id: str):
    """Get one resource definition."""
    definition = get_orchestrator().registry.lookup(resource_id)

    if definition is None:
        raise HTTPException(404, f"Resource not found: {resource_id}")

    return definition


# ============================================================================
# VALIDATION
# ============================================================================

@router.get(
    "/users/{user_id}/validate/{resource_id}",
    response_model=ValidationResult,
    tags=["Validation"],
)
async def validate_resource(user_id: str, resource_id: str):
    """
    Validate whether a user can generate a resource.

    Always 200: unknown resources and store failures are reported in the
    result's error field.
    """
    return await get_orchestrator().validator.validate(user_id, resource_id)


@router.post(
    "/users/{user_id}/validate-batch",
    response_model=BatchValidationResult,
    tags=["Validation"],
)
async def validate_batch(user_id: str, request: ValidateBatchRequest):
    """Validate several resources for one user."""
    return await get_orchestrator().validator.validate_batch(user_id, request.resource_ids)


@router.get(
    "/users/{user_id}/available",
    response_model=AvailableResourcesResponse,
    tags=["Validation"],
)
async def get_available(user_id: str):
    """Resources the user can generate now."""
    try:
        resources = await get_orchestrator().validator.get_available_resources(user_id)
    except Exception as e:
        logger.exception(f"Error listing available resources for {user_id}: {e}")
        raise HTTPException(503, f"Resource store unavailable: {e}")

    return AvailableResourcesResponse(user_id=user_id, resources=resources, total=len(resources))


@router.get(
    "/users/{user_id}/recommended",
    response_model=AvailableResourcesResponse,
    tags=["Validation"],
)
async def get_recommended(
    user_id: str,
    limit: int = Query(5, ge=1, le=50),
):
    """Highest-priority resources to generate next."""
    try:
        resources = await get_orchestrator().validator.get_recommended_next(user_id, limit)
    except Exception as e:
        logger.exception(f"Error computing recommendations for {user_id}: {e}")
        raise HTTPException(503, f"Resource store unavailable: {e}")

    return AvailableResourcesResponse(user_id=user_id, resources=resources, total=len(resources))


# ============================================================================
# GENERATION
# ============================================================================

@router.post(
    "/users/{user_id}/generate/{resource_id}",
    response_model=SubmissionResponse,
    status_code=202,
    tags=["Generation"],
    responses={
        202: {"description": "Generation job queued"},
        409: {"description": "Required dependencies missing"},
    },
)
async def generate_resource(user_id: str, resource_id: str):
    """
    Queue generation of a resource.

    Returns 409 with the validation result if required dependencies are
    missing. Poll GET /jobs/{job_id} to monitor progress.
    """
    submission = await get_orchestrator().submit_generation(user_id, resource_id)

    if not submission.accepted:
        return JSONResponse(
            status_code=409,
            content={
                "error": submission.message,
                "validation": submission.validation.model_dump(mode="json"),
            },
        )

    return SubmissionResponse(
        job_id=submission.job_id,
        queue_name=submission.queue_name,
        status=submission.status,
        deduplicated=submission.deduplicated,
        validation=submission.validation,
    )


@router.post(
    "/users/{user_id}/generate-batch",
    response_model=SubmissionResponse,
    status_code=202,
    tags=["Generation"],
)
async def generate_batch(user_id: str, request: BatchGenerateRequest):
    """Queue one batch job for several resources."""
    submission = await get_orchestrator().submit_batch(user_id, request.resource_ids)

    if not submission.accepted:
        raise HTTPException(400, submission.message)

    return SubmissionResponse(
        job_id=submission.job_id,
        queue_name=submission.queue_name,
        status=submission.status,
    )


# ============================================================================
# JOBS & QUEUES
# ============================================================================

@router.get(
    "/jobs/{job_id}",
    response_model=JobStatusResponse,
    tags=["Jobs"],
    responses={404: {"model": ErrorResponse}},
)
async def get_job(job_id: str):
    """Get job status, progress and result."""
    status = await get_orchestrator().get_job_status(job_id)

    if status is None:
        raise HTTPException(404, f"Job not found: {job_id}")

    return JobStatusResponse(**status)


@router.get("/queues/stats", tags=["Jobs"])
async def get_queue_stats():
    """Per-queue job counts."""
    orchestrator = get_orchestrator()
    stats = {}
    for queue in orchestrator.queues:
        stats[queue.name] = await queue.get_stats()
    return {"backend": orchestrator.queues.backend.value, "queues": stats}
