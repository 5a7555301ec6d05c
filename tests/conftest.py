# ============================================================================
# SHARED TEST FIXTURES
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Tests - Shared fixtures
# PURPOSE: Small registries and stores used across test modules
# CREATED: 16 OCT 2026
# ============================================================================
"""
Shared fixtures.

The "abc" registry is the canonical three-resource graph:

    A (no deps)  <-  B (requires A)  <-  C (requires A, B)
"""

import pytest

from core.contracts import ResourceCategory
from core.models import ResourceDefinition
from repositories import InMemoryCacheStore, InMemoryResourceStore
from services import ResourceRegistry


def make_definition(
    resource_id: str,
    tier: int = 1,
    required=None,
    optional=None,
    cost: float = 0.01,
    tokens: int = 1000,
    category: ResourceCategory = ResourceCategory.CORE,
    display_name: str = None,
) -> ResourceDefinition:
    return ResourceDefinition(
        resource_id=resource_id,
        display_name=display_name or resource_id.upper(),
        tier=tier,
        category=category,
        required_dependencies=required or [],
        optional_dependencies=optional or [],
        estimated_cost=cost,
        estimated_tokens=tokens,
    )


@pytest.fixture
def abc_registry():
    """A <- B <- C, with C also requiring A."""
    return ResourceRegistry([
        make_definition("a", tier=1, cost=0.01, tokens=1000),
        make_definition("b", tier=2, required=["a"], cost=0.02, tokens=2000),
        make_definition("c", tier=3, required=["a", "b"], cost=0.04, tokens=3000),
    ])


@pytest.fixture
def rich_registry():
    """Inputs, optional dependencies and mixed categories."""
    return ResourceRegistry([
        make_definition("product-name", tier=0, category=ResourceCategory.INPUT, cost=0.0, tokens=0),
        make_definition("icp", tier=1, required=["product-name"], display_name="Ideal Customer Profile"),
        make_definition("pains", tier=1, required=["product-name"], display_name="Pain Points"),
        make_definition(
            "positioning",
            tier=2,
            required=["icp"],
            optional=["pains"],
            category=ResourceCategory.ADVANCED,
            display_name="Positioning",
        ),
        make_definition(
            "messaging",
            tier=3,
            required=["positioning", "icp"],
            optional=["pains"],
            category=ResourceCategory.STRATEGIC,
            display_name="Messaging",
        ),
    ])


@pytest.fixture
def resource_store():
    return InMemoryResourceStore()


@pytest.fixture
def cache_store():
    return InMemoryCacheStore()
