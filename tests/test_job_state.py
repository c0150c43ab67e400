"""Tests for the job state machine and compare-and-swap status writes."""

import pytest

from coursegen.exceptions import InvalidTransitionError
from coursegen.models import JobStatus
from coursegen.models.job_state import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATES,
    can_transition,
    illegal_sources,
    is_terminal,
)
from coursegen.repositories import JobRepository
from tests.conftest import make_job


class TestTransitions:

    @pytest.mark.parametrize("current,target", [
        (JobStatus.PENDING, JobStatus.CLAIMED),
        (JobStatus.CLAIMED, JobStatus.RUNNING),
        (JobStatus.RUNNING, JobStatus.COMPLETED),
        (JobStatus.RUNNING, JobStatus.FAILED),
        (JobStatus.FAILED, JobStatus.PENDING),
        (JobStatus.FAILED, JobStatus.DEAD),
    ])
    def test_happy_path_edges(self, current, target):
        assert can_transition(current, target)

    def test_every_non_terminal_state_can_be_canceled(self):
        for status in JobStatus:
            if status not in TERMINAL_STATES:
                assert can_transition(status, JobStatus.CANCELED)

    def test_terminal_states_have_no_exits(self):
        for status in TERMINAL_STATES:
            assert ALLOWED_TRANSITIONS[status] == frozenset()
            assert is_terminal(status)

    def test_pending_cannot_skip_to_running(self):
        assert not can_transition(JobStatus.PENDING, JobStatus.RUNNING)

    def test_completed_cannot_fail(self):
        assert not can_transition(JobStatus.COMPLETED, JobStatus.FAILED)

    def test_illegal_sources_lists_offenders(self):
        bad = illegal_sources([JobStatus.PENDING, JobStatus.FAILED], JobStatus.DEAD)
        assert bad == [JobStatus.PENDING]


class TestCompareAndSet:

    def test_moves_when_expected_matches(self, db, clock):
        job = make_job(db, clock, status=JobStatus.FAILED)
        repo = JobRepository(db)
        assert repo.compare_and_set(job.id, [JobStatus.FAILED], JobStatus.DEAD, clock()) is True
        db.commit()
        assert repo.get_by_id(job.id).status == JobStatus.DEAD.value

    def test_refuses_when_status_moved_on(self, db, clock):
        job = make_job(db, clock, status=JobStatus.PENDING)
        repo = JobRepository(db)
        assert repo.compare_and_set(job.id, [JobStatus.FAILED], JobStatus.PENDING, clock()) is False
        assert repo.get_by_id(job.id).status == JobStatus.PENDING.value

    def test_second_identical_transition_loses(self, db, clock):
        job = make_job(db, clock, status=JobStatus.FAILED)
        repo = JobRepository(db)
        assert repo.compare_and_set(job.id, [JobStatus.FAILED], JobStatus.PENDING, clock())
        assert not repo.compare_and_set(job.id, [JobStatus.FAILED], JobStatus.PENDING, clock())

    def test_owner_guard(self, db, clock):
        job = make_job(db, clock, status=JobStatus.CLAIMED, locked_by="worker-a",
                       lease_until=clock.advance(0))
        repo = JobRepository(db)
        assert not repo.compare_and_set(job.id, [JobStatus.CLAIMED], JobStatus.RUNNING, clock(), owner="worker-b")
        assert repo.compare_and_set(job.id, [JobStatus.CLAIMED], JobStatus.RUNNING, clock(), owner="worker-a")

    def test_illegal_edge_raises(self, db, clock):
        job = make_job(db, clock, status=JobStatus.COMPLETED)
        with pytest.raises(InvalidTransitionError):
            JobRepository(db).compare_and_set(job.id, [JobStatus.COMPLETED], JobStatus.PENDING, clock())
