# ============================================================================
# JOB MODEL
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Core model - Queued unit of work
# PURPOSE: Job state machine, retry/backoff bookkeeping and job options
# CREATED: 16 OCT 2026
# ============================================================================
"""
Job Model

A Job is one unit of asynchronous work on a named queue.

Both queue backends mutate jobs exclusively through the mark_* methods
below, so the state machine is enforced in one place:

    WAITING -> ACTIVE -> COMPLETED
                      -> FAILED -> DELAYED -> WAITING   (retry with backoff)
                                -> WAITING              (retry, zero delay)

FAILED may only re-enter the queue while attempts_made < max_attempts.
attempts_made is incremented when a job becomes ACTIVE.
"""

import secrets
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, computed_field

from core.contracts import BackoffType, JobState
from core.models.validation import ValidationResult


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_job_id(prefix: str = "job") -> str:
    """Generate a job id of the form {prefix}-{epochMillis}-{random}."""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


# ============================================================================
# JOB OPTIONS
# ============================================================================

class BackoffPolicy(BaseModel):
    """Retry delay strategy."""
    type: BackoffType = BackoffType.EXPONENTIAL
    delay_ms: int = Field(default=2000, ge=0)


class RetentionPolicy(BaseModel):
    """How long terminal jobs are kept before purge."""
    age_seconds: Optional[int] = Field(default=None, ge=0)
    count: Optional[int] = Field(default=None, ge=0)


class JobOptions(BaseModel):
    """
    Options for one job.

    Every field is optional so the same model serves as queue defaults
    and as call-site overrides; merge() layers overrides on defaults.
    """
    attempts: Optional[int] = Field(default=None, ge=1)
    backoff: Optional[BackoffPolicy] = None
    remove_on_complete: Optional[RetentionPolicy] = None
    remove_on_fail: Optional[RetentionPolicy] = None
    job_id: Optional[str] = Field(default=None, max_length=256)
    dedupe_key: Optional[str] = Field(
        default=None,
        max_length=256,
        description="While a non-terminal job holds this key, add() returns it instead of enqueuing",
    )
    delay_ms: Optional[int] = Field(default=None, ge=0)

    def merge(self, overrides: Optional["JobOptions"]) -> "JobOptions":
        """Return a copy with the non-None fields of overrides applied."""
        if overrides is None:
            return self.model_copy()
        update = {
            key: getattr(overrides, key)
            for key in overrides.model_dump(exclude_none=True)
        }
        return self.model_copy(update=update)


# ============================================================================
# JOB
# ============================================================================

class Job(BaseModel):
    """
    A queued unit of work.

    Maps to: orchestrator.queue_jobs table
    Primary Key: job_id
    """
    job_id: str = Field(..., max_length=256)
    queue_name: str = Field(..., max_length=64)
    job_type: str = Field(..., max_length=64)
    payload: Dict[str, Any] = Field(default_factory=dict)

    state: JobState = Field(default=JobState.WAITING)
    progress: int = Field(default=0, ge=0, le=100)

    attempts_made: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=1, ge=1)
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
    remove_on_complete: RetentionPolicy = Field(default_factory=RetentionPolicy)
    remove_on_fail: RetentionPolicy = Field(default_factory=RetentionPolicy)
    dedupe_key: Optional[str] = Field(default=None, max_length=256)

    result: Optional[Any] = None
    failed_reason: Optional[str] = Field(default=None, max_length=2000)

    # Durable backend bookkeeping
    locked_by: Optional[str] = None
    heartbeat_at: Optional[datetime] = None

    # Timestamps
    created_at: datetime = Field(default_factory=_utcnow)
    run_at: Optional[datetime] = Field(default=None, description="Earliest dequeue time for delayed jobs")
    processed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def create(
        cls,
        queue_name: str,
        job_type: str,
        payload: Dict[str, Any],
        options: JobOptions,
    ) -> "Job":
        """Build a new job from fully merged options."""
        job = cls(
            job_id=options.job_id or generate_job_id(),
            queue_name=queue_name,
            job_type=job_type,
            payload=payload,
            max_attempts=options.attempts or 1,
            backoff=options.backoff or BackoffPolicy(),
            remove_on_complete=options.remove_on_complete or RetentionPolicy(),
            remove_on_fail=options.remove_on_fail or RetentionPolicy(),
            dedupe_key=options.dedupe_key,
        )
        if options.delay_ms:
            job.state = JobState.DELAYED
            job.run_at = job.created_at + timedelta(milliseconds=options.delay_ms)
        return job

    @computed_field
    @property
    def is_terminal(self) -> bool:
        """Completed, or failed with no attempts left."""
        if self.state == JobState.COMPLETED:
            return True
        return self.state == JobState.FAILED and not self.can_retry

    @property
    def can_retry(self) -> bool:
        return self.attempts_made < self.max_attempts

    def can_transition_to(self, new_state: JobState) -> bool:
        """
        Validate if a state transition is allowed.

        Valid transitions:
            WAITING -> ACTIVE
            ACTIVE -> COMPLETED, FAILED
            FAILED -> DELAYED, WAITING (only while attempts remain)
            DELAYED -> WAITING
            COMPLETED -> (none, terminal)
        """
        if self.state == new_state:
            return True

        allowed = {
            JobState.WAITING: {JobState.ACTIVE},
            JobState.ACTIVE: {JobState.COMPLETED, JobState.FAILED},
            JobState.FAILED: {JobState.DELAYED, JobState.WAITING} if self.can_retry else set(),
            JobState.DELAYED: {JobState.WAITING},
            JobState.COMPLETED: set(),
        }

        return new_state in allowed.get(self.state, set())

    def _require(self, new_state: JobState) -> None:
        if not self.can_transition_to(new_state):
            raise ValueError(f"Cannot transition job {self.job_id} from {self.state.value} to {new_state.value}")

    def mark_active(self, worker_id: Optional[str] = None) -> None:
        """Mark job as picked up by a worker; counts as one attempt."""
        self._require(JobState.ACTIVE)
        now = _utcnow()
        self.state = JobState.ACTIVE
        self.attempts_made += 1
        self.locked_by = worker_id
        self.heartbeat_at = now
        self.processed_at = now
        self.finished_at = None
        self.run_at = None
        self.updated_at = now

    def mark_completed(self, result: Any = None) -> None:
        """Mark job as completed successfully."""
        self._require(JobState.COMPLETED)
        now = _utcnow()
        self.state = JobState.COMPLETED
        self.result = result
        self.progress = 100
        self.failed_reason = None
        self.locked_by = None
        self.finished_at = now
        self.updated_at = now

    def mark_failed(self, reason: str) -> None:
        """Mark job as failed (the attempt is already counted)."""
        self._require(JobState.FAILED)
        now = _utcnow()
        self.state = JobState.FAILED
        self.failed_reason = (reason or "unknown error")[:2000]
        self.locked_by = None
        self.finished_at = now
        self.updated_at = now

    def retry_delay_ms(self) -> int:
        """
        Delay before the next attempt.

        Exponential: base * 2^(attempts_made - 1), so the first retry
        waits exactly the base delay.
        """
        base = self.backoff.delay_ms
        if self.backoff.type == BackoffType.FIXED or self.attempts_made <= 1:
            return base
        return base * (2 ** (self.attempts_made - 1))

    def prepare_retry(self) -> Optional[int]:
        """
        Requeue a failed job if attempts remain.

        Returns the delay in ms (0 means immediately WAITING), or None
        if the job is permanently failed.
        """
        if self.state != JobState.FAILED or not self.can_retry:
            return None

        delay_ms = self.retry_delay_ms()
        now = _utcnow()
        if delay_ms > 0:
            self.state = JobState.DELAYED
            self.run_at = now + timedelta(milliseconds=delay_ms)
        else:
            self.state = JobState.WAITING
            self.run_at = None
        self.finished_at = None
        self.updated_at = now
        return delay_ms

    def promote(self) -> None:
        """Move a delayed job back to WAITING once its delay elapsed."""
        self._require(JobState.WAITING)
        self.state = JobState.WAITING
        self.run_at = None
        self.updated_at = _utcnow()

    def set_progress(self, percent: int) -> int:
        """Clamp and record progress; returns the stored value."""
        self.progress = max(0, min(100, int(percent)))
        self.heartbeat_at = _utcnow()
        self.updated_at = self.heartbeat_at
        return self.progress

    def to_status(self) -> Dict[str, Any]:
        """Status projection returned to HTTP callers."""
        return {
            "job_id": self.job_id,
            "queue_name": self.queue_name,
            "job_type": self.job_type,
            "status": self.state.value,
            "progress": self.progress,
            "data": self.payload,
            "result": self.result,
            "failed_reason": self.failed_reason,
            "attempts_made": self.attempts_made,
            "max_attempts": self.max_attempts,
            "created_at": self.created_at,
            "processed_at": self.processed_at,
            "finished_at": self.finished_at,
        }


# ============================================================================
# SUBMISSION
# ============================================================================

class JobSubmission(BaseModel):
    """
    Outcome of asking the orchestrator to run a job.

    accepted=False means nothing was enqueued; validation says why.
    deduplicated=True means an existing non-terminal job was returned.
    """
    accepted: bool
    job_id: Optional[str] = None
    queue_name: Optional[str] = None
    status: Optional[JobState] = None
    deduplicated: bool = False
    validation: Optional[ValidationResult] = None
    message: Optional[str] = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "BackoffPolicy",
    "RetentionPolicy",
    "JobOptions",
    "Job",
    "JobSubmission",
    "generate_job_id",
]
