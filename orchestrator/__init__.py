# ============================================================================
# ORCHESTRATOR MODULE
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - Composition root
# PURPOSE: Wire registry, validator, cache, queues and workers together
# CREATED: 16 OCT 2026
# ============================================================================
"""
Orchestrator Module

Usage:
    from orchestrator import ResourceOrchestrator

    orchestrator = ResourceOrchestrator.create()
    await orchestrator.start()
"""

from .core import ResourceOrchestrator

__all__ = ["ResourceOrchestrator"]
