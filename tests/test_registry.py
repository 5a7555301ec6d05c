# ============================================================================
# RESOURCE REGISTRY TESTS
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Tests - Registry loading and lookup
# PURPOSE: Verify lookups, ordering, YAML loading and load-time graph checks
# CREATED: 16 OCT 2026
# ============================================================================
"""
Resource Registry Tests

Run with:
    pytest tests/test_registry.py -v
"""

import pytest

from core.config import OrchestratorConfig
from core.contracts import ResourceCategory
from core.models import ResourceDefinition
from services import RegistryConfigurationError, ResourceRegistry

from conftest import make_definition


# ============================================================================
# LOOKUP
# ============================================================================

class TestLookup:
    """Lookups never raise for unknown ids."""

    def test_lookup_known(self, abc_registry):
        assert abc_registry.lookup("b").required_dependencies == ["a"]

    def test_lookup_unknown_returns_none(self, abc_registry):
        assert abc_registry.lookup("nope") is None

    def test_get_or_raise_unknown(self, abc_registry):
        with pytest.raises(KeyError):
            abc_registry.get_or_raise("nope")

    def test_contains_and_len(self, abc_registry):
        assert "a" in abc_registry
        assert "z" not in abc_registry
        assert len(abc_registry) == 3

    def test_list_by_tier_sorted_by_name(self):
        registry = ResourceRegistry([
            make_definition("z", tier=1, display_name="Zeta"),
            make_definition("a", tier=1, display_name="alpha"),
            make_definition("m", tier=2, display_name="Mid"),
        ])
        assert [d.resource_id for d in registry.list_by_tier(1)] == ["a", "z"]
        assert registry.list_by_tier(5) == []

    def test_list_by_category_sorted_by_tier_then_name(self, rich_registry):
        core = rich_registry.list_by_category("core")
        assert [d.resource_id for d in core] == ["icp", "pains"]
        assert [d.resource_id for d in rich_registry.list_by_category(ResourceCategory.INPUT)] == ["product-name"]

    def test_list_generatable_excludes_inputs(self, rich_registry):
        ids = [d.resource_id for d in rich_registry.list_generatable()]
        assert "product-name" not in ids
        assert len(ids) == 4

    def test_string_dependency_shorthand(self):
        definition = ResourceDefinition(
            resource_id="x",
            display_name="X",
            tier=1,
            required_dependencies="a",
        )
        assert definition.required_dependencies == ["a"]


# ============================================================================
# LOAD-TIME VALIDATION
# ============================================================================

class TestGraphValidation:
    """Invalid graphs fail at construction."""

    def test_unknown_dependency(self):
        with pytest.raises(RegistryConfigurationError) as exc_info:
            ResourceRegistry([make_definition("b", required=["missing"])])
        assert "missing" in str(exc_info.value)

    def test_self_dependency(self):
        with pytest.raises(RegistryConfigurationError):
            ResourceRegistry([make_definition("a", required=["a"])])

    def test_duplicate_id(self):
        with pytest.raises(RegistryConfigurationError):
            ResourceRegistry([make_definition("a"), make_definition("a")])

    def test_required_cycle(self):
        with pytest.raises(RegistryConfigurationError) as exc_info:
            ResourceRegistry([
                make_definition("a", required=["b"]),
                make_definition("b", required=["a"]),
            ])
        assert "cycle" in str(exc_info.value)

    def test_cycle_through_optional_edge(self):
        with pytest.raises(RegistryConfigurationError):
            ResourceRegistry([
                make_definition("a", optional=["b"]),
                make_definition("b", required=["a"]),
            ])

    def test_topological_order_dependencies_first(self, abc_registry):
        is_valid, order, error = abc_registry.topological_order()
        assert is_valid is True
        assert error is None
        assert order.index("a") < order.index("b") < order.index("c")


# ============================================================================
# YAML
# ============================================================================

class TestYamlLoading:
    """Registry files on disk."""

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "resources.yaml"
        path.write_text(
            "resources:\n"
            "  - resource_id: a\n"
            "    display_name: A\n"
            "    tier: 1\n"
            "  - resource_id: b\n"
            "    display_name: B\n"
            "    tier: 2\n"
            "    required_dependencies: [a]\n"
            "    estimated_cost: 0.05\n"
        )
        registry = ResourceRegistry.from_yaml(path)
        assert len(registry) == 2
        assert registry.lookup("b").estimated_cost == 0.05

    def test_missing_file(self, tmp_path):
        with pytest.raises(RegistryConfigurationError):
            ResourceRegistry.from_yaml(tmp_path / "absent.yaml")

    def test_invalid_entry(self, tmp_path):
        path = tmp_path / "resources.yaml"
        path.write_text("resources:\n  - resource_id: a\n    tier: -1\n")
        with pytest.raises(RegistryConfigurationError):
            ResourceRegistry.from_yaml(path)

    def test_shipped_definitions_load(self):
        """The bundled definitions form a closed, acyclic graph."""
        registry = ResourceRegistry.from_yaml(OrchestratorConfig().definitions_path)
        assert len(registry) > 20
        for definition in registry.list_all():
            for dep in definition.all_dependencies():
                assert dep in registry
        assert all(d.tier == 0 for d in registry.list_by_category("input"))
