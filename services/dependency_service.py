# ============================================================================
# DEPENDENCY VALIDATOR
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - Dependency checks, ordering and cost estimates
# PURPOSE: Decide whether a resource can be generated, and how
# CREATED: 16 OCT 2026
# ============================================================================
"""
Dependency Validator

Given the set of resources a user has generated, answers:
- Can target R be generated now? (validate)
- In what order must its missing prerequisites be produced? (suggest_order)
- What will that cost? (estimate_cost)
- What can the user generate next? (get_available_resources,
  get_recommended_next)

Error policy:
    Unknown ids and unmet dependencies are ordinary results. A Resource
    Store failure is caught here and returned as ValidationResult.error.
    Nothing in validate()/validate_batch() raises for domain conditions.

The graph helpers (suggest_order, estimate_cost, evaluate) are pure
functions of (target, generated set) and never touch the store.
"""

import asyncio
import logging
import time
from typing import Collection, List, Optional, Set

from core.contracts import ResourceCategory
from core.logging import log_context
from core.models import (
    AvailableResource,
    BatchSummary,
    BatchValidationResult,
    CostEstimate,
    DependencyCost,
    GenerationPlan,
    MissingDependency,
    ResourceDefinition,
    ValidationResult,
)
from repositories.resource_store import ResourceStore
from services.registry_service import ResourceRegistry

logger = logging.getLogger(__name__)

# Recommendation scoring weights
TIER_WEIGHT = 1000
MAX_TIER_SCORE = 10
OPTIONAL_SATISFIED_BONUS = 100
CORE_CATEGORY_BONUS = 50
DEFAULT_RECOMMENDATION_LIMIT = 5


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


class DependencyValidator:
    """Validates generation requests against the resource registry."""

    def __init__(self, registry: ResourceRegistry, store: ResourceStore):
        self.registry = registry
        self.store = store

    # =========================================================================
    # PURE GRAPH OPERATIONS
    # =========================================================================

    def _missing(self, dependency_ids: List[str], generated: Collection[str]) -> List[MissingDependency]:
        missing = []
        for dep_id in dependency_ids:
            if dep_id in generated:
                continue
            definition = self.registry.lookup(dep_id)
            if definition is None:
                missing.append(MissingDependency(resource_id=dep_id, display_name=dep_id))
            else:
                missing.append(MissingDependency.from_definition(definition))
        return missing

    def suggest_order(self, target_id: str, generated: Collection[str]) -> List[str]:
        """
        Dependency-first generation order ending with the target.

        Depth-first post-order over required dependencies in their listed
        order. Generated and already-emitted ids are skipped, and so is an
        id already on the recursion path; the registry rejects cycles at
        load, so that last guard never fires for a loaded registry.

        Args:
            target_id: Resource to generate
            generated: Ids the user already has

        Returns:
            Ordered ids (target last), or [] if the target is unknown
        """
        target = self.registry.lookup(target_id)
        if target is None:
            return []

        generated_set = set(generated)
        ordered: List[str] = []
        emitted: Set[str] = set()
        on_path: Set[str] = {target_id}

        def visit(resource_id: str) -> None:
            if resource_id in generated_set or resource_id in emitted or resource_id in on_path:
                return
            definition = self.registry.lookup(resource_id)
            if definition is None:
                return

            on_path.add(resource_id)
            for dep_id in definition.required_dependencies:
                visit(dep_id)
            on_path.discard(resource_id)

            emitted.add(resource_id)
            ordered.append(resource_id)

        for dep_id in target.required_dependencies:
            visit(dep_id)

        ordered.append(target_id)
        return ordered

    def estimate_cost(self, target_id: str, generated: Collection[str]) -> Optional[CostEstimate]:
        """
        Cost of generating the target plus its direct missing required deps.

        Optional dependencies are listed in optional_dependency_costs but
        excluded from total_cost and total_tokens.

        Returns:
            CostEstimate, or None if the target is unknown
        """
        target = self.registry.lookup(target_id)
        if target is None:
            return None

        def line(dep: MissingDependency) -> DependencyCost:
            return DependencyCost(
                resource_id=dep.resource_id,
                display_name=dep.display_name,
                cost=dep.estimated_cost,
                tokens=dep.estimated_tokens,
            )

        missing_required = [line(d) for d in self._missing(target.required_dependencies, generated)]
        missing_optional = [line(d) for d in self._missing(target.optional_dependencies, generated)]

        total_cost = target.estimated_cost + sum(d.cost for d in missing_required)
        total_tokens = target.estimated_tokens + sum(d.tokens for d in missing_required)

        return CostEstimate(
            target=DependencyCost(
                resource_id=target.resource_id,
                display_name=target.display_name,
                cost=target.estimated_cost,
                tokens=target.estimated_tokens,
            ),
            missing_dependency_costs=missing_required,
            optional_dependency_costs=missing_optional,
            total_cost=round(total_cost, 6),
            total_tokens=total_tokens,
            resource_count=1 + len(missing_required),
        )

    def evaluate(self, target_id: str, generated: Collection[str]) -> ValidationResult:
        """
        Validate a target against an already-read generated set.

        Never raises; an unknown target yields valid=False with an error.
        """
        start = time.perf_counter()
        target = self.registry.lookup(target_id)
        if target is None:
            return ValidationResult.failure(
                target_id,
                f"Resource '{target_id}' not found in registry",
                validation_time_ms=_elapsed_ms(start),
            )

        generated_set = set(generated)
        missing_required = self._missing(target.required_dependencies, generated_set)
        missing_optional = self._missing(target.optional_dependencies, generated_set)
        valid = not missing_required
        can_proceed_with_warning = valid and bool(missing_optional)

        warning_message = None
        if can_proceed_with_warning:
            names = ", ".join(d.display_name for d in missing_optional)
            warning_message = (
                f"{len(missing_optional)} optional dependencies missing ({names}). "
                f"Generation can proceed but output quality may be reduced."
            )

        estimate = self.estimate_cost(target_id, generated_set)

        return ValidationResult(
            resource_id=target_id,
            display_name=target.display_name,
            valid=valid,
            missing_required=missing_required,
            missing_optional=missing_optional,
            suggested_order=self.suggest_order(target_id, generated_set),
            total_cost=estimate.total_cost,
            total_tokens=estimate.total_tokens,
            resource_count=estimate.resource_count,
            can_proceed_with_warning=can_proceed_with_warning,
            warning_message=warning_message,
            validation_time_ms=_elapsed_ms(start),
        )

    # =========================================================================
    # STORE-BACKED OPERATIONS
    # =========================================================================

    async def validate(self, user_id: str, target_id: str) -> ValidationResult:
        """
        Check whether a user can generate a target resource.

        Args:
            user_id: User identifier
            target_id: Resource to generate

        Returns:
            ValidationResult (never raises)
        """
        start = time.perf_counter()
        with log_context(user_id=user_id, resource_id=target_id, operation="validate"):
            if self.registry.lookup(target_id) is None:
                logger.info(f"Validation requested for unknown resource {target_id}")
                return ValidationResult.failure(
                    target_id,
                    f"Resource '{target_id}' not found in registry",
                    validation_time_ms=_elapsed_ms(start),
                )

            try:
                generated = await self.store.list_generated_ids(user_id)
            except Exception as e:
                logger.error(f"Resource store read failed for user {user_id}: {e}")
                return ValidationResult.failure(
                    target_id,
                    f"Failed to read generated resources: {e}",
                    validation_time_ms=_elapsed_ms(start),
                )

            result = self.evaluate(target_id, generated)
            result.validation_time_ms = _elapsed_ms(start)

            logger.debug(
                f"Validated {target_id} for {user_id}: valid={result.valid}, "
                f"missing_required={result.missing_required_ids}, "
                f"missing_optional={result.missing_optional_ids}"
            )
            return result

    async def validate_batch(self, user_id: str, resource_ids: List[str]) -> BatchValidationResult:
        """
        Validate several targets independently.

        No de-duplication across ids: shared missing dependencies are
        counted once per target in the summary totals.
        """
        start = time.perf_counter()
        validations = list(await asyncio.gather(
            *(self.validate(user_id, rid) for rid in resource_ids)
        ))

        valid_count = sum(1 for v in validations if v.valid)
        errors = [v.error for v in validations if v.error]
        summary = BatchSummary(
            total=len(validations),
            valid=valid_count,
            invalid=len(validations) - valid_count,
            total_cost=round(sum(v.total_cost for v in validations), 6),
            total_tokens=sum(v.total_tokens for v in validations),
        )

        return BatchValidationResult(
            valid=valid_count == len(validations),
            validations=validations,
            summary=summary,
            error="; ".join(errors) if errors else None,
            validation_time_ms=_elapsed_ms(start),
        )

    async def get_available_resources(self, user_id: str) -> List[AvailableResource]:
        """
        Resources the user has not generated and can generate right now.

        Raw inputs are never listed. Sorted by tier then display name.
        """
        generated = set(await self.store.list_generated_ids(user_id))

        available = []
        for definition in self.registry.list_generatable():
            if definition.resource_id in generated:
                continue
            if any(dep not in generated for dep in definition.required_dependencies):
                continue
            optional_missing = [d for d in definition.optional_dependencies if d not in generated]
            available.append(self._to_available(definition, len(optional_missing)))

        available.sort(key=lambda a: (a.tier, a.display_name.lower()))
        return available

    async def get_recommended_next(
        self,
        user_id: str,
        limit: int = DEFAULT_RECOMMENDATION_LIMIT,
    ) -> List[AvailableResource]:
        """
        Top available resources by priority score.

        score = (10 - tier) * 1000
                + 100 if every optional dependency is present
                + 50 if the category is core

        Ties keep availability order (tier, then display name).
        """
        available = await self.get_available_resources(user_id)
        for resource in available:
            resource.priority_score = self.priority_score(resource)

        ranked = sorted(available, key=lambda r: r.priority_score, reverse=True)
        return ranked[:max(0, limit)]

    async def get_generation_plan(self, user_id: str, target_id: str) -> GenerationPlan:
        """Validation plus the suggested order as definitions."""
        validation = await self.validate(user_id, target_id)
        steps = []
        for resource_id in validation.suggested_order:
            definition = self.registry.lookup(resource_id)
            if definition is not None:
                steps.append(MissingDependency.from_definition(definition))
        return GenerationPlan(validation=validation, steps=steps)

    @staticmethod
    def priority_score(resource: AvailableResource) -> int:
        score = (MAX_TIER_SCORE - resource.tier) * TIER_WEIGHT
        if not resource.has_optional_missing:
            score += OPTIONAL_SATISFIED_BONUS
        if resource.category == ResourceCategory.CORE.value:
            score += CORE_CATEGORY_BONUS
        return score

    @staticmethod
    def _to_available(definition: ResourceDefinition, optional_missing_count: int) -> AvailableResource:
        return AvailableResource(
            resource_id=definition.resource_id,
            display_name=definition.display_name,
            tier=definition.tier,
            category=definition.category.value,
            estimated_cost=definition.estimated_cost,
            estimated_tokens=definition.estimated_tokens,
            impact=definition.impact,
            has_optional_missing=optional_missing_count > 0,
            optional_missing_count=optional_missing_count,
        )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "DependencyValidator",
    "DEFAULT_RECOMMENDATION_LIMIT",
]
