# ============================================================================
# API SCHEMAS
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - Request/Response schemas
# PURPOSE: Pydantic models for API validation
# CREATED: 16 OCT 2026
# ============================================================================
"""
API Schemas

Request and response models for the API. Validator results are returned
as the core models themselves; only envelopes live here.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from core.contracts import JobState
from core.models import AvailableResource, ResourceDefinition, ValidationResult


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================

class ValidateBatchRequest(BaseModel):
    """Request to validate several resources for one user."""
    resource_ids: List[str] = Field(..., min_length=1, description="Resources to validate")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"resource_ids": ["ideal-customer-profile", "brand-voice"]}
            ]
        }
    }


class BatchGenerateRequest(BaseModel):
    """Request to generate several resources in one batch job."""
    resource_ids: List[str] = Field(..., min_length=1)


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

class ResourceListResponse(BaseModel):
    """Response for listing resource definitions."""
    resources: List[ResourceDefinition]
    total: int


class AvailableResourcesResponse(BaseModel):
    """Resources a user can generate now."""
    user_id: str
    resources: List[AvailableResource]
    total: int


class JobStatusResponse(BaseModel):
    """Status of a queued job."""
    job_id: str
    queue_name: str
    job_type: str
    status: JobState
    progress: int = Field(ge=0, le=100)
    data: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Any] = None
    failed_reason: Optional[str] = None
    attempts_made: int = 0
    max_attempts: int = 1
    created_at: datetime
    processed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class SubmissionResponse(BaseModel):
    """Response for an accepted generation request."""
    job_id: str
    queue_name: str
    status: JobState
    deduplicated: bool = False
    validation: Optional[ValidationResult] = None


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[Any] = None
