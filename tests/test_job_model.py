# ============================================================================
# JOB MODEL TESTS
# ============================================================================
# EPOCH: 1 - RESOURCE ORCHESTRATION
# STATUS: Tests - Job state machine and retry bookkeeping
# PURPOSE: Verify transitions, backoff delays and option merging
# CREATED: 16 OCT 2026
# ============================================================================
"""
Job Model Tests

Covers:
1. Allowed and rejected state transitions
2. attempts_made counted on ACTIVE
3. Exponential and fixed backoff delays
4. prepare_retry requeue vs permanent failure
5. JobOptions.merge layering
6. failed_reason truncation

Run with:
    pytest tests/test_job_model.py -v
"""

import pytest

from core.contracts import BackoffType, JobState
from core.models import BackoffPolicy, Job, JobOptions, RetentionPolicy


def _job(attempts: int = 3, backoff: BackoffPolicy = None, **kwargs) -> Job:
    options = JobOptions(attempts=attempts, backoff=backoff or BackoffPolicy(delay_ms=1000), **kwargs)
    return Job.create("resource-generation", "generate_resource", {"user_id": "u1"}, options)


class TestCreate:
    """Job construction from options."""

    def test_defaults(self):
        job = _job()
        assert job.state == JobState.WAITING
        assert job.attempts_made == 0
        assert job.max_attempts == 3
        assert job.job_id.startswith("job-")

    def test_explicit_id(self):
        job = _job(job_id="generation-u1-1")
        assert job.job_id == "generation-u1-1"

    def test_delayed_on_create(self):
        job = _job(delay_ms=500)
        assert job.state == JobState.DELAYED
        assert job.run_at > job.created_at


class TestTransitions:
    """State machine enforcement."""

    def test_happy_path(self):
        job = _job()
        job.mark_active("w1")
        assert job.attempts_made == 1
        assert job.locked_by == "w1"

        job.mark_completed({"ok": True})
        assert job.state == JobState.COMPLETED
        assert job.progress == 100
        assert job.is_terminal is True
        assert job.locked_by is None

    def test_cannot_complete_waiting_job(self):
        with pytest.raises(ValueError):
            _job().mark_completed()

    def test_completed_is_final(self):
        job = _job()
        job.mark_active()
        job.mark_completed()
        assert job.can_transition_to(JobState.WAITING) is False
        assert job.can_transition_to(JobState.ACTIVE) is False

    def test_failed_retryable_is_not_terminal(self):
        job = _job(attempts=2)
        job.mark_active()
        job.mark_failed("boom")
        assert job.is_terminal is False
        assert job.can_transition_to(JobState.DELAYED) is True

    def test_failed_exhausted_is_terminal(self):
        job = _job(attempts=1)
        job.mark_active()
        job.mark_failed("boom")
        assert job.is_terminal is True
        assert job.can_transition_to(JobState.WAITING) is False

    def test_failed_reason_truncated(self):
        job = _job()
        job.mark_active()
        job.mark_failed("x" * 5000)
        assert len(job.failed_reason) == 2000


class TestBackoff:
    """Retry delays."""

    def test_exponential_doubles(self):
        job = _job(attempts=5, backoff=BackoffPolicy(type=BackoffType.EXPONENTIAL, delay_ms=1000))
        delays = []
        for _ in range(4):
            job.mark_active()
            job.mark_failed("boom")
            delays.append(job.prepare_retry())
            job.promote()
        assert delays == [1000, 2000, 4000, 8000]

    def test_fixed_constant(self):
        job = _job(attempts=3, backoff=BackoffPolicy(type=BackoffType.FIXED, delay_ms=250))
        delays = []
        for _ in range(2):
            job.mark_active()
            job.mark_failed("boom")
            delays.append(job.prepare_retry())
            job.promote()
        assert delays == [250, 250]

    def test_zero_delay_goes_straight_to_waiting(self):
        job = _job(attempts=2, backoff=BackoffPolicy(delay_ms=0))
        job.mark_active()
        job.mark_failed("boom")
        assert job.prepare_retry() == 0
        assert job.state == JobState.WAITING

    def test_delayed_retry_sets_run_at(self):
        job = _job(attempts=2)
        job.mark_active()
        job.mark_failed("boom")
        assert job.prepare_retry() == 1000
        assert job.state == JobState.DELAYED
        assert job.run_at is not None
        assert job.finished_at is None

    def test_no_retry_when_exhausted(self):
        job = _job(attempts=1)
        job.mark_active()
        job.mark_failed("boom")
        assert job.prepare_retry() is None
        assert job.state == JobState.FAILED


class TestOptionsAndProgress:
    """Option merging and progress clamping."""

    def test_merge_overrides_only_set_fields(self):
        defaults = JobOptions(
            attempts=3,
            backoff=BackoffPolicy(delay_ms=2000),
            remove_on_complete=RetentionPolicy(age_seconds=60, count=10),
        )
        merged = defaults.merge(JobOptions(attempts=1, dedupe_key="u1:c"))

        assert merged.attempts == 1
        assert merged.dedupe_key == "u1:c"
        assert merged.backoff.delay_ms == 2000
        assert merged.remove_on_complete.count == 10

    def test_merge_none(self):
        defaults = JobOptions(attempts=2)
        assert defaults.merge(None).attempts == 2

    @pytest.mark.parametrize("value,expected", [(-5, 0), (42, 42), (250, 100)])
    def test_progress_clamped(self, value, expected):
        job = _job()
        assert job.set_progress(value) == expected

    def test_status_projection(self):
        job = _job()
        status = job.to_status()
        assert status["status"] == "waiting"
        assert status["data"] == {"user_id": "u1"}
        assert status["max_attempts"] == 3
