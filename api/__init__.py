# ============================================================================
# API MODULE
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - FastAPI routes
# PURPOSE: HTTP API over the resource orchestrator
# CREATED: 16 OCT 2026
# ============================================================================
"""
API Module

FastAPI routes for the resource orchestrator.
"""

from .routes import router, set_services
from .schemas import (
    ValidateBatchRequest,
    BatchGenerateRequest,
    JobStatusResponse,
    SubmissionResponse,
)

__all__ = [
    "router",
    "set_services",
    "ValidateBatchRequest",
    "BatchGenerateRequest",
    "JobStatusResponse",
    "SubmissionResponse",
]
