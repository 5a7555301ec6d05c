# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# CREATED: 16 OCT 2026
# ============================================================================
"""
Configuration Module

Provides centralized configuration and defaults for the resource orchestrator.
"""

from core.config.defaults import (
    DAY_SECONDS,
    HOUR_SECONDS,
    QueueName,
    QueueTuning,
    QueueDefaults,
    CacheDefaults,
    WorkerDefaults,
    OrchestratorConfig,
    Defaults,
    get_defaults,
    reset_defaults,
)

__all__ = [
    "DAY_SECONDS",
    "HOUR_SECONDS",
    "QueueName",
    "QueueTuning",
    "QueueDefaults",
    "CacheDefaults",
    "WorkerDefaults",
    "OrchestratorConfig",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
