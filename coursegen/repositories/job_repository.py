"""Job repository: queries and the atomic updates the queue is built on.

Every write that changes ``status`` or lease columns is a single conditional
UPDATE whose WHERE clause carries the expected prior state. The affected-row
count tells the caller whether it won; nothing here reads a row, decides in
Python, and writes it back.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func

from ..exceptions import ClaimConflict, InvalidTransitionError, JobNotFoundError
from ..models import GenerationJob, JobEvent, JobStatus
from ..models.job_state import LEASED_STATES, NON_TERMINAL_STATES, illegal_sources
from .base import BaseRepository

_UNSET = object()


def _values(statuses: Iterable[JobStatus]) -> List[str]:
    return [JobStatus(s).value for s in statuses]


class JobRepository(BaseRepository[GenerationJob]):
    """Repository for generation jobs and their progress events."""

    model_class = GenerationJob
    not_found_error = JobNotFoundError

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_active_for_repo(self, repo_url: str, branch: Optional[str] = None) -> List[GenerationJob]:
        """Non-terminal jobs for a repository (optionally one branch), oldest first."""
        query = self.db.query(GenerationJob).filter(
            GenerationJob.repo_url == repo_url,
            GenerationJob.status.in_(_values(NON_TERMINAL_STATES)),
        )
        if branch is not None:
            query = query.filter(GenerationJob.branch == branch)
        return query.order_by(GenerationJob.created_at.asc()).all()

    def list_jobs(
        self,
        repo_url: Optional[str] = None,
        status: Optional[JobStatus] = None,
        limit: int = 20,
    ) -> List[GenerationJob]:
        """Recent jobs, newest first."""
        query = self.db.query(GenerationJob)
        if repo_url:
            query = query.filter(GenerationJob.repo_url == repo_url)
        if status:
            query = query.filter(GenerationJob.status == JobStatus(status).value)
        return query.order_by(GenerationJob.created_at.desc()).limit(limit).all()

    def find_claimable_ids(self, now: datetime, limit: int = 5) -> List[str]:
        """IDs of pending jobs whose run_at has passed, oldest run_at first.

        On PostgreSQL the rows are locked with SKIP LOCKED so concurrent
        workers spread over different candidates; SQLite ignores the clause
        and relies on the conditional UPDATE in claim().
        """
        rows = (
            self.db.query(GenerationJob.id)
            .filter(
                GenerationJob.status == JobStatus.PENDING.value,
                GenerationJob.run_at <= now,
            )
            .order_by(GenerationJob.run_at.asc(), GenerationJob.created_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
            .all()
        )
        return [row[0] for row in rows]

    def count_by_status(self) -> Dict[str, int]:
        rows = (
            self.db.query(GenerationJob.status, func.count(GenerationJob.id))
            .group_by(GenerationJob.status)
            .all()
        )
        counts = {status.value: 0 for status in JobStatus}
        counts.update({status: count for status, count in rows})
        return counts

    def list_updated_since(self, since: datetime) -> List[GenerationJob]:
        return self.db.query(GenerationJob).filter(GenerationJob.updated_at >= since).all()

    # ------------------------------------------------------------------
    # Conditional writes
    # ------------------------------------------------------------------

    def compare_and_set(
        self,
        job_id: str,
        expected: Iterable[JobStatus],
        target: JobStatus,
        now: datetime,
        owner: Any = _UNSET,
        **values: Any,
    ) -> bool:
        """Move a job to ``target`` only if its status is one of ``expected``.

        Args:
            job_id: Job to update.
            expected: Acceptable prior statuses.
            target: New status.
            now: Timestamp written to updated_at.
            owner: When given, the row must also be locked by this worker.
            **values: Extra columns to set in the same statement.

        Returns:
            True if exactly this call performed the transition.

        Raises:
            InvalidTransitionError: If some expected status has no edge to target.
        """
        expected = [JobStatus(s) for s in expected]
        bad = illegal_sources(expected, target)
        if bad:
            raise InvalidTransitionError(job_id, ",".join(s.value for s in bad), JobStatus(target).value)

        criteria = [GenerationJob.id == job_id, GenerationJob.status.in_(_values(expected))]
        if owner is not _UNSET:
            criteria.append(GenerationJob.locked_by == owner)

        update = {"status": JobStatus(target).value, "updated_at": now}
        update.update(values)
        return self._conditional_update(*criteria, values=update) == 1

    def claim(self, job_id: str, worker_id: str, now: datetime, lease_until: datetime, run_id: str) -> None:
        """Claim a pending job for ``worker_id``.

        Raises:
            ClaimConflict: The job was no longer pending (another worker won).
        """
        won = self.compare_and_set(
            job_id,
            [JobStatus.PENDING],
            JobStatus.CLAIMED,
            now,
            locked_by=worker_id,
            lease_until=lease_until,
            run_id=run_id,
            started_at=now,
            current_step=0,
            progress_message="Claimed",
        )
        if not won:
            raise ClaimConflict(job_id)

    def renew(self, job_id: str, worker_id: str, now: datetime, lease_until: datetime) -> bool:
        """Extend a live lease held by ``worker_id``.

        Refused when the lease already expired, when another worker holds the
        job, or when the job left the leased states (e.g. canceled).
        """
        return self._conditional_update(
            GenerationJob.id == job_id,
            GenerationJob.locked_by == worker_id,
            GenerationJob.status.in_(_values(LEASED_STATES)),
            GenerationJob.lease_until >= now,
            values={"lease_until": lease_until, "updated_at": now},
        ) == 1

    def clear_canceled_lock(self, job_id: str, worker_id: str, now: datetime) -> bool:
        """Drop this worker's lock on a job that was canceled under it."""
        return self._conditional_update(
            GenerationJob.id == job_id,
            GenerationJob.locked_by == worker_id,
            GenerationJob.status == JobStatus.CANCELED.value,
            values={"locked_by": None, "lease_until": None, "updated_at": now},
        ) == 1

    def record_progress(
        self,
        job_id: str,
        worker_id: str,
        run_id: Optional[str],
        step: int,
        total_steps: int,
        message: str,
        now: datetime,
    ) -> bool:
        """Store progress on the job (owner only) and append it to the event log."""
        updated = self._conditional_update(
            GenerationJob.id == job_id,
            GenerationJob.locked_by == worker_id,
            GenerationJob.status.in_(_values(LEASED_STATES)),
            values={
                "current_step": step,
                "total_steps": total_steps,
                "progress_message": message,
                "updated_at": now,
            },
        )
        if updated != 1:
            return False
        self.db.add(JobEvent(
            job_id=job_id,
            run_id=run_id,
            step=step,
            total_steps=total_steps,
            message=message,
            created_at=now,
        ))
        self.db.flush()
        return True

    def reclaim_expired(self, now: datetime) -> int:
        """Return jobs whose lease ran out to pending.

        Also drops stale locks left on canceled jobs by workers that died
        before releasing them. Returns the number of jobs re-queued.
        """
        requeued = self._conditional_update(
            GenerationJob.status.in_(_values(LEASED_STATES)),
            GenerationJob.lease_until < now,
            values={
                "status": JobStatus.PENDING.value,
                "locked_by": None,
                "lease_until": None,
                "run_at": now,
                "last_error": "Lease expired - worker likely crashed",
                "updated_at": now,
            },
        )
        self._conditional_update(
            GenerationJob.status == JobStatus.CANCELED.value,
            GenerationJob.lease_until < now,
            values={"locked_by": None, "lease_until": None, "updated_at": now},
        )
        return requeued

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def list_events(self, job_id: str, after: int = 0, limit: int = 100) -> List[JobEvent]:
        return (
            self.db.query(JobEvent)
            .filter(JobEvent.job_id == job_id, JobEvent.id > after)
            .order_by(JobEvent.id.asc())
            .limit(limit)
            .all()
        )
