# ============================================================================
# BASE CONTRACTS & ENUMS
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Foundation - Core enums shared across components
# PURPOSE: Define job states, backend selection and resource categories
# CREATED: 16 OCT 2026
# ============================================================================
"""
Base contracts for the resource orchestration core.

These enums cross every boundary of the system:
- SQL (PostgreSQL queue_jobs.state column)
- Queue backends (in-memory and durable)
- HTTP status responses
"""

from enum import Enum


# ============================================================================
# STATUS ENUMS
# ============================================================================

class JobState(str, Enum):
    """
    Job lifecycle states.

    State transitions:
        WAITING -> ACTIVE -> COMPLETED
                          -> FAILED -> DELAYED -> WAITING (retry with backoff)
                                    -> WAITING (retry without delay)
    """
    WAITING = "waiting"          # Queued, not yet picked up
    ACTIVE = "active"            # Handler executing
    COMPLETED = "completed"      # Handler resolved
    FAILED = "failed"            # Handler raised (may still be retried)
    DELAYED = "delayed"          # Waiting for backoff to elapse

    def is_terminal(self) -> bool:
        """
        Check if this state can be terminal.

        FAILED is only final once attempts are exhausted; Job.is_terminal
        accounts for that.
        """
        return self in (JobState.COMPLETED, JobState.FAILED)

    def is_pending(self) -> bool:
        """Check if the job is still queued (not yet running)."""
        return self in (JobState.WAITING, JobState.DELAYED)


class QueueBackend(str, Enum):
    """Job queue backend, chosen once at process start."""
    MEMORY = "memory"            # Single process, state lost on restart
    POSTGRES = "postgres"        # Durable, multi-worker


class ResourceCategory(str, Enum):
    """Resource categories used for grouping and recommendation scoring."""
    INPUT = "input"              # Raw user-provided facts (never generated)
    CORE = "core"
    ADVANCED = "advanced"
    STRATEGIC = "strategic"


class BackoffType(str, Enum):
    """Retry delay strategy."""
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


class QueueEvent(str, Enum):
    """Events emitted by job queues to registered listeners."""
    WAITING = "waiting"
    ACTIVE = "active"
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "JobState",
    "QueueBackend",
    "ResourceCategory",
    "BackoffType",
    "QueueEvent",
]
