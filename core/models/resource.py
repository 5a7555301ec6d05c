# ============================================================================
# RESOURCE DEFINITION MODELS
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core model - Registry entries and generated records
# PURPOSE: Define generatable resources loaded from YAML
# CREATED: 16 OCT 2026
# ============================================================================
"""
Resource Models

A ResourceDefinition is the TEMPLATE for a generatable artifact:
- Where it sits in the tier ranking
- Which resources must exist before it (required) or enrich it (optional)
- What generating it is expected to cost

A GeneratedResourceRecord is the INSTANCE: one user has generated
one resource at some point in time. Records are owned by the
Resource Store; the validator and cache only read the ids.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from core.contracts import ResourceCategory


class ResourceDefinition(BaseModel):
    """
    Static definition of one resource.

    Immutable once loaded; the registry hands out shared instances.
    """
    model_config = ConfigDict(frozen=True)

    resource_id: str = Field(..., min_length=1, max_length=128)
    display_name: str = Field(..., min_length=1)
    tier: int = Field(..., ge=0, description="Foundational-ness ranking (0 = raw input)")
    category: ResourceCategory = Field(default=ResourceCategory.CORE)
    required_dependencies: List[str] = Field(
        default_factory=list,
        description="Must exist before generation (blocking)",
    )
    optional_dependencies: List[str] = Field(
        default_factory=list,
        description="Enhance output but not required",
    )
    estimated_tokens: int = Field(default=0, ge=0)
    estimated_cost: float = Field(default=0.0, ge=0, description="Estimated API cost in USD")
    impact: str = Field(default="", description="One-sentence value description")

    @field_validator("required_dependencies", "optional_dependencies", mode="before")
    @classmethod
    def handle_string_input(cls, v):
        """Allow single string as shorthand for single-item list."""
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v

    @computed_field
    @property
    def is_input(self) -> bool:
        """Raw user input rather than a generated artifact."""
        return self.category == ResourceCategory.INPUT

    def all_dependencies(self) -> List[str]:
        """Required followed by optional dependency ids."""
        return [*self.required_dependencies, *self.optional_dependencies]


class GeneratedResourceRecord(BaseModel):
    """
    One resource generated by one user.

    Maps to: orchestrator.generated_resources table
    Primary Key: (user_id, resource_id)
    """
    user_id: str = Field(..., min_length=1, max_length=128)
    resource_id: str = Field(..., min_length=1, max_length=128)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    summary: Optional[Union[str, Dict[str, Any]]] = Field(
        default=None,
        description="Generated content or a summary of it",
    )

    def summary_text(self) -> str:
        """Summary rendered as text for context aggregation."""
        if self.summary is None:
            return ""
        if isinstance(self.summary, str):
            return self.summary
        return json.dumps(self.summary, default=str, sort_keys=True)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ResourceDefinition",
    "GeneratedResourceRecord",
]
