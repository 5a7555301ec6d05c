# ============================================================================
# DEPENDENCY VALIDATION MODELS
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core model - Validator result shapes
# PURPOSE: One return contract per validator operation
# CREATED: 16 OCT 2026
# ============================================================================
"""
Validation Result Models

Every validator operation returns one of these shapes, for expected
conditions (unknown id, unmet dependencies) as well as unexpected ones
(Resource Store unreachable). Callers branch on `valid` and `error`,
never on exceptions.
"""

from typing import List, Optional
from pydantic import BaseModel, Field, computed_field

from core.models.resource import ResourceDefinition


class MissingDependency(BaseModel):
    """A dependency the user has not generated yet, with its estimates."""
    resource_id: str
    display_name: str
    tier: int = 0
    category: str = ""
    estimated_cost: float = 0.0
    estimated_tokens: int = 0
    impact: str = ""

    @classmethod
    def from_definition(cls, definition: ResourceDefinition) -> "MissingDependency":
        return cls(
            resource_id=definition.resource_id,
            display_name=definition.display_name,
            tier=definition.tier,
            category=definition.category.value,
            estimated_cost=definition.estimated_cost,
            estimated_tokens=definition.estimated_tokens,
            impact=definition.impact,
        )


class DependencyCost(BaseModel):
    """Cost line for one resource in a CostEstimate."""
    resource_id: str
    display_name: str
    cost: float = 0.0
    tokens: int = 0


class CostEstimate(BaseModel):
    """
    Generation cost for a target plus its missing required dependencies.

    Optional dependencies are reported but excluded from the totals.
    """
    target: DependencyCost
    missing_dependency_costs: List[DependencyCost] = Field(default_factory=list)
    optional_dependency_costs: List[DependencyCost] = Field(default_factory=list)
    total_cost: float = 0.0
    total_tokens: int = 0
    resource_count: int = 1

    @computed_field
    @property
    def target_cost(self) -> float:
        return self.target.cost


class ValidationResult(BaseModel):
    """
    Result of validating one target resource for one user.

    valid is True exactly when missing_required is empty.
    """
    resource_id: str
    display_name: Optional[str] = None
    valid: bool = False
    missing_required: List[MissingDependency] = Field(default_factory=list)
    missing_optional: List[MissingDependency] = Field(default_factory=list)
    suggested_order: List[str] = Field(default_factory=list)
    total_cost: float = 0.0
    total_tokens: int = 0
    resource_count: int = 0
    can_proceed_with_warning: bool = False
    warning_message: Optional[str] = None
    error: Optional[str] = None
    validation_time_ms: float = 0.0

    @computed_field
    @property
    def missing_required_ids(self) -> List[str]:
        return [dep.resource_id for dep in self.missing_required]

    @computed_field
    @property
    def missing_optional_ids(self) -> List[str]:
        return [dep.resource_id for dep in self.missing_optional]

    @classmethod
    def failure(cls, resource_id: str, error: str, validation_time_ms: float = 0.0) -> "ValidationResult":
        """Invalid result carrying an error string instead of raising."""
        return cls(
            resource_id=resource_id,
            valid=False,
            error=error,
            validation_time_ms=validation_time_ms,
        )


class BatchSummary(BaseModel):
    """Aggregate totals over a batch of validations."""
    total: int = 0
    valid: int = 0
    invalid: int = 0
    total_cost: float = 0.0
    total_tokens: int = 0


class BatchValidationResult(BaseModel):
    """Per-id validations plus aggregate totals."""
    valid: bool = False
    validations: List[ValidationResult] = Field(default_factory=list)
    summary: BatchSummary = Field(default_factory=BatchSummary)
    error: Optional[str] = None
    validation_time_ms: float = 0.0


class AvailableResource(BaseModel):
    """A resource the user can generate right now."""
    resource_id: str
    display_name: str
    tier: int
    category: str
    estimated_cost: float = 0.0
    estimated_tokens: int = 0
    impact: str = ""
    has_optional_missing: bool = False
    optional_missing_count: int = 0
    priority_score: Optional[int] = None


class GenerationPlan(BaseModel):
    """Validation plus the suggested order projected to definitions."""
    validation: ValidationResult
    steps: List[MissingDependency] = Field(default_factory=list)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "MissingDependency",
    "DependencyCost",
    "CostEstimate",
    "ValidationResult",
    "BatchSummary",
    "BatchValidationResult",
    "AvailableResource",
    "GenerationPlan",
]
