"""Tests for the retry/backoff controller."""

from datetime import timedelta

import pytest

from coursegen.core.context import as_utc
from coursegen.exceptions import LeaseLost
from coursegen.models import JobStatus
from coursegen.repositories import JobRepository
from coursegen.services.lease_manager import LeaseManager
from coursegen.services.retry_policy import MAX_ERROR_CHARS, RetryController
from tests.conftest import make_job

LEASE = 300


def _controller(ctx, **kwargs):
    leases = LeaseManager(ctx, LEASE)
    return leases, RetryController(ctx, leases, base_delay=5.0, max_delay=600.0, **kwargs)


def _claim_running(leases):
    job = leases.claim_next()
    leases.mark_running(job.id)
    return job


class TestDecide:

    def test_first_failure_reschedules_with_base_times_two(self, ctx):
        _, retry = _controller(ctx)
        decision = retry.decide(attempts=0, max_attempts=3)
        assert not decision.is_dead
        assert decision.attempts == 1
        assert decision.delay_seconds == 10.0

    def test_delay_doubles(self, ctx):
        _, retry = _controller(ctx)
        assert retry.decide(1, 5).delay_seconds == 20.0
        assert retry.decide(2, 5).delay_seconds == 40.0

    def test_delay_is_capped(self, ctx):
        _, retry = _controller(ctx)
        assert retry.decide(20, 30).delay_seconds == 600.0

    def test_jitter_is_added(self, ctx):
        _, retry = _controller(ctx, jitter=4.0, rng=lambda: 0.5)
        assert retry.decide(0, 3).delay_seconds == 12.0

    def test_last_attempt_is_dead(self, ctx):
        _, retry = _controller(ctx)
        decision = retry.decide(attempts=2, max_attempts=3)
        assert decision.is_dead
        assert decision.attempts == 3

    def test_single_attempt_budget_dies_immediately(self, ctx):
        _, retry = _controller(ctx)
        decision = retry.decide(attempts=0, max_attempts=1)
        assert decision.is_dead
        assert decision.attempts == 1


class TestOnFailure:

    def test_reschedules_and_releases_lease(self, db, clock, ctx):
        make_job(db, clock, max_attempts=3)
        leases, retry = _controller(ctx)
        job = _claim_running(leases)

        decision = retry.on_failure(job.id, "Stage 'extract' failed: exit code 2")

        db.expire_all()
        stored = JobRepository(db).get_by_id(job.id)
        assert not decision.is_dead
        assert stored.status == JobStatus.PENDING.value
        assert stored.attempts == 1
        assert stored.locked_by is None
        assert stored.lease_until is None
        assert as_utc(stored.run_at) == clock() + timedelta(seconds=10)
        assert "exit code 2" in stored.last_error

    def test_rescheduled_job_waits_for_run_at(self, db, clock, ctx):
        make_job(db, clock)
        leases, retry = _controller(ctx)
        retry.on_failure(_claim_running(leases).id, "boom")

        assert leases.claim_next() is None
        clock.advance(11)
        assert leases.claim_next() is not None

    def test_exhausted_budget_ends_dead(self, db, clock, ctx):
        make_job(db, clock, max_attempts=3)
        leases, retry = _controller(ctx)

        for _ in range(3):
            clock.advance(1000)
            job = _claim_running(leases)
            decision = retry.on_failure(job.id, "still broken")

        db.expire_all()
        stored = JobRepository(db).get_by_id(job.id)
        assert decision.is_dead
        assert stored.status == JobStatus.DEAD.value
        assert stored.attempts == stored.max_attempts == 3
        assert stored.completed_at is not None

        clock.advance(100_000)
        assert leases.claim_next() is None

    def test_long_error_is_truncated(self, db, clock, ctx):
        make_job(db, clock)
        leases, retry = _controller(ctx)
        job = _claim_running(leases)
        retry.on_failure(job.id, "x" * (MAX_ERROR_CHARS + 500))

        db.expire_all()
        assert len(JobRepository(db).get_by_id(job.id).last_error) == MAX_ERROR_CHARS

    def test_not_owner_raises_lease_lost_and_writes_nothing(self, db, clock, make_ctx):
        make_job(db, clock)
        leases_a, _ = _controller(make_ctx("worker-a"))
        _, retry_b = _controller(make_ctx("worker-b"))
        job = _claim_running(leases_a)

        with pytest.raises(LeaseLost):
            retry_b.on_failure(job.id, "not mine")

        db.expire_all()
        stored = JobRepository(db).get_by_id(job.id)
        assert stored.status == JobStatus.RUNNING.value
        assert stored.attempts == 0
