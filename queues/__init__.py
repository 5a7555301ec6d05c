# ============================================================================
# QUEUES MODULE
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core - Job queue backends
# PURPOSE: Asynchronous job execution over memory or PostgreSQL
# CREATED: 16 OCT 2026
# ============================================================================
"""
Queues Module

JobQueue is the backend-independent interface. InMemoryJobQueue serves
single-process deployments; PostgresJobQueue (queues.postgres) serves
multi-worker deployments.
"""

from .base import (
    JobQueue,
    JobHandler,
    QueueListener,
    HandlerAlreadyRegisteredError,
    JobNotFoundError,
)
from .memory import InMemoryJobQueue
from .postgres import PostgresJobQueue
from .factory import QueueSet, build_queue, options_from_tuning

__all__ = [
    "JobQueue",
    "JobHandler",
    "QueueListener",
    "HandlerAlreadyRegisteredError",
    "JobNotFoundError",
    "InMemoryJobQueue",
    "PostgresJobQueue",
    "QueueSet",
    "build_queue",
    "options_from_tuning",
]
