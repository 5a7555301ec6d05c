# ============================================================================
# RESOURCE REGISTRY
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - Resource definition management
# PURPOSE: Load, validate and look up resource definitions
# CREATED: 16 OCT 2026
# ============================================================================
"""
Resource Registry

Loads resource definitions from YAML once at process start and provides
lookup capabilities. Read-only after load, so concurrent readers need no
synchronisation.

Load-time checks (fail fast with RegistryConfigurationError):
- duplicate resource ids
- dependency ids that are not registered
- self-dependencies
- dependency cycles over required + optional edges
"""

import logging
from collections import deque
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

import yaml
from pydantic import ValidationError

from core.contracts import ResourceCategory
from core.models import ResourceDefinition

logger = logging.getLogger(__name__)


class RegistryConfigurationError(Exception):
    """Raised when the resource definitions do not form a valid dependency graph."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__(f"Invalid resource registry: {'; '.join(errors)}")


class ResourceRegistry:
    """Static, read-only map of resource id to definition."""

    def __init__(self, definitions: Iterable[ResourceDefinition]):
        """
        Build a registry and validate its dependency graph.

        Args:
            definitions: Resource definitions

        Raises:
            RegistryConfigurationError: on duplicates, unknown ids or cycles
        """
        self._definitions: Dict[str, ResourceDefinition] = {}
        errors: List[str] = []

        for definition in definitions:
            if definition.resource_id in self._definitions:
                errors.append(f"Duplicate resource id: {definition.resource_id}")
                continue
            self._definitions[definition.resource_id] = definition

        errors.extend(self._validate_references())
        if not errors:
            is_valid, _, cycle_error = self.topological_order()
            if not is_valid:
                errors.append(cycle_error)

        if errors:
            raise RegistryConfigurationError(errors)

        logger.info(f"Resource registry loaded: {len(self._definitions)} resources")

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ResourceRegistry":
        """
        Load a registry from a YAML file.

        Expected layout:
            resources:
              - resource_id: icp-analysis
                display_name: ICP Analysis
                tier: 1
                ...

        Args:
            path: Path to YAML file

        Returns:
            ResourceRegistry
        """
        path = Path(path)
        if not path.exists():
            raise RegistryConfigurationError([f"Definitions file not found: {path}"])

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        raw_resources = data.get("resources", [])
        if not isinstance(raw_resources, list):
            raise RegistryConfigurationError([f"'resources' must be a list in {path}"])

        definitions = []
        errors = []
        for index, raw in enumerate(raw_resources):
            try:
                definitions.append(ResourceDefinition(**raw))
            except (TypeError, ValidationError) as e:
                errors.append(f"Entry {index} in {path.name}: {e}")

        if errors:
            raise RegistryConfigurationError(errors)

        logger.info(f"Loaded {len(definitions)} resource definitions from {path}")
        return cls(definitions)

    # =========================================================================
    # LOOKUP
    # =========================================================================

    def lookup(self, resource_id: str) -> Optional[ResourceDefinition]:
        """
        Get a resource definition by ID.

        Returns:
            ResourceDefinition or None if not registered
        """
        return self._definitions.get(resource_id)

    def get_or_raise(self, resource_id: str) -> ResourceDefinition:
        """
        Get a resource definition, raising if not found.

        Raises:
            KeyError if resource not registered
        """
        definition = self.lookup(resource_id)
        if definition is None:
            raise KeyError(f"Resource not found: {resource_id}")
        return definition

    def list_by_tier(self, tier: int) -> List[ResourceDefinition]:
        """Resources in a tier, sorted by display name."""
        return sorted(
            (d for d in self._definitions.values() if d.tier == tier),
            key=lambda d: d.display_name.lower(),
        )

    def list_by_category(self, category: Union[str, ResourceCategory]) -> List[ResourceDefinition]:
        """Resources in a category, sorted by tier then display name."""
        category = ResourceCategory(category)
        return sorted(
            (d for d in self._definitions.values() if d.category == category),
            key=lambda d: (d.tier, d.display_name.lower()),
        )

    def list_all(self) -> List[ResourceDefinition]:
        """All resources in load order."""
        return list(self._definitions.values())

    def list_generatable(self) -> List[ResourceDefinition]:
        """Resources a job can generate (everything except raw inputs)."""
        return [d for d in self._definitions.values() if not d.is_input]

    def __contains__(self, resource_id: str) -> bool:
        return resource_id in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)

    # =========================================================================
    # GRAPH VALIDATION
    # =========================================================================

    def _validate_references(self) -> List[str]:
        errors = []
        for definition in self._definitions.values():
            for dep in definition.all_dependencies():
                if dep == definition.resource_id:
                    errors.append(f"Resource '{dep}' depends on itself")
                elif dep not in self._definitions:
                    errors.append(
                        f"Resource '{definition.resource_id}' references unknown dependency '{dep}'"
                    )
        return errors

    def topological_order(self) -> Tuple[bool, List[str], Optional[str]]:
        """
        Order resources dependencies-first (Kahn's algorithm).

        Returns:
            Tuple of (is_valid, sorted_ids, error_message)
        """
        in_degree = {rid: 0 for rid in self._definitions}
        dependents: Dict[str, List[str]] = {rid: [] for rid in self._definitions}

        for rid, definition in self._definitions.items():
            for dep in set(definition.all_dependencies()):
                if dep in in_degree:
                    in_degree[rid] += 1
                    dependents[dep].append(rid)

        queue = deque([rid for rid, degree in in_degree.items() if degree == 0])
        sorted_ids = []

        while queue:
            rid = queue.popleft()
            sorted_ids.append(rid)
            for dependent in dependents[rid]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    queue.append(dependent)

        if len(sorted_ids) != len(self._definitions):
            remaining = sorted(rid for rid in self._definitions if rid not in set(sorted_ids))
            return False, sorted_ids, f"Dependency cycle detected involving resources: {remaining}"

        return True, sorted_ids, None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ResourceRegistry",
    "RegistryConfigurationError",
]
