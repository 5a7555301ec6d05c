# ============================================================================
# CONTEXT AGGREGATOR
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Service - Builds generation context from a user's resources
# PURPOSE: The expensive computation the context cache sits in front of
# CREATED: 16 OCT 2026
# ============================================================================
"""
Context Aggregator

Assembles the context handed to the Generation Backend for one target:

    critical  - the user's raw inputs the target depends on (full)
    required  - generated required dependencies (full)
    optional  - generated optional dependencies (truncated summaries)

Each section is capped by a token budget. Tokens are estimated as
ceil(characters / 4).
"""

import logging
import math
import time
from typing import Any, Dict, List

from core.models import GeneratedResourceRecord
from repositories.resource_store import ResourceStore
from services.registry_service import ResourceRegistry

logger = logging.getLogger(__name__)

CRITICAL_TOKEN_BUDGET = 500
REQUIRED_TOKEN_BUDGET = 2000
OPTIONAL_TOKEN_BUDGET = 1000


def estimate_tokens(text: str) -> int:
    """Rough token count: four characters per token."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


class ContextAggregator:
    """Builds aggregated generation context for a (user, target) pair."""

    def __init__(
        self,
        registry: ResourceRegistry,
        store: ResourceStore,
        optional_summary_chars: int = 500,
    ):
        self.registry = registry
        self.store = store
        self.optional_summary_chars = optional_summary_chars

    async def aggregate(self, user_id: str, target_id: str) -> Dict[str, Any]:
        """
        Aggregate context for target_id from the user's generated resources.

        Raises:
            KeyError: target is not registered
        """
        start = time.perf_counter()
        target = self.registry.get_or_raise(target_id)
        records = {r.resource_id: r for r in await self.store.list_generated(user_id)}

        critical, required = [], []
        for dep_id in target.required_dependencies:
            record = records.get(dep_id)
            if record is None:
                continue
            definition = self.registry.lookup(dep_id)
            section = critical if definition is not None and definition.is_input else required
            section.append(self._section(record, truncate=False))

        optional = [
            self._section(records[dep_id], truncate=True)
            for dep_id in target.optional_dependencies
            if dep_id in records
        ]

        critical = self._enforce_budget(critical, CRITICAL_TOKEN_BUDGET)
        required = self._enforce_budget(required, REQUIRED_TOKEN_BUDGET)
        optional = self._enforce_budget(optional, OPTIONAL_TOKEN_BUDGET)

        token_breakdown = {
            "critical": sum(s["tokens"] for s in critical),
            "required": sum(s["tokens"] for s in required),
            "optional": sum(s["tokens"] for s in optional),
        }
        total_tokens = sum(token_breakdown.values())

        logger.info(
            f"Context aggregated for {target_id}: {total_tokens} tokens "
            f"(critical={token_breakdown['critical']}, required={token_breakdown['required']}, "
            f"optional={token_breakdown['optional']})"
        )

        return {
            "target_resource_id": target_id,
            "critical": critical,
            "required": required,
            "optional": optional,
            "formatted_context": self._format(critical, required, optional),
            "total_tokens": total_tokens,
            "token_breakdown": token_breakdown,
            "aggregation_time_ms": round((time.perf_counter() - start) * 1000, 3),
        }

    def _section(self, record: GeneratedResourceRecord, truncate: bool) -> Dict[str, Any]:
        definition = self.registry.lookup(record.resource_id)
        content = record.summary_text()
        if truncate and len(content) > self.optional_summary_chars:
            content = content[: self.optional_summary_chars].rstrip() + "..."
        return {
            "resource_id": record.resource_id,
            "display_name": definition.display_name if definition else record.resource_id,
            "content": content,
            "tokens": estimate_tokens(content),
        }

    @staticmethod
    def _enforce_budget(sections: List[Dict[str, Any]], budget: int) -> List[Dict[str, Any]]:
        """Keep sections in order until the budget is spent; truncate the last one."""
        kept = []
        remaining = budget
        for section in sections:
            if remaining <= 0:
                logger.debug(f"Token budget exhausted, dropping {section['resource_id']}")
                continue
            if section["tokens"] > remaining:
                content = section["content"][: remaining * 4]
                section = {**section, "content": content, "tokens": estimate_tokens(content)}
            kept.append(section)
            remaining -= section["tokens"]
        return kept

    @staticmethod
    def _format(*groups: List[Dict[str, Any]]) -> str:
        parts = []
        for title, sections in zip(("Foundation", "Required Context", "Additional Context"), groups):
            if not sections:
                continue
            parts.append(f"# {title}")
            for section in sections:
                parts.append(f"## {section['display_name']}\n{section['content']}")
        return "\n\n".join(parts)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ContextAggregator",
    "estimate_tokens",
]
