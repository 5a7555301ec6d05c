# ============================================================================
# SERVICES MODULE
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Service layer exports
# PURPOSE: Business logic over the registry, resource store and cache
# CREATED: 16 OCT 2026
# ============================================================================
"""
Services Module

Usage:
    from services import ResourceRegistry, DependencyValidator

    registry = ResourceRegistry.from_yaml("definitions/resources.yaml")
    validator = DependencyValidator(registry, store)
"""

from .registry_service import ResourceRegistry, RegistryConfigurationError
from .dependency_service import DependencyValidator
from .context_cache import ContextCache, compute_resource_version, UNKNOWN_VERSION
from .context_aggregator import ContextAggregator, estimate_tokens
from .generation_backend import (
    GenerationBackend,
    GenerationError,
    EchoGenerationBackend,
    HttpGenerationBackend,
    create_generation_backend,
)

__all__ = [
    "ResourceRegistry",
    "RegistryConfigurationError",
    "DependencyValidator",
    "ContextCache",
    "compute_resource_version",
    "UNKNOWN_VERSION",
    "ContextAggregator",
    "estimate_tokens",
    "GenerationBackend",
    "GenerationError",
    "EchoGenerationBackend",
    "HttpGenerationBackend",
    "create_generation_backend",
]
