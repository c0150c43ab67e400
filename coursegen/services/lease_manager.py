"""Lease manager: claim, renew, release and the expired-lease sweep.

A lease is the pair (locked_by, lease_until). Workers share no memory; the
only thing that keeps two of them off the same job is that every lease
operation is one conditional UPDATE in the store.

Expired leases are recovered by an active sweep (``reclaim_expired``) that
every worker runs on a fixed cadence. ``claim_next`` never looks at expired
leases itself.
"""

import logging
import threading
import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..core.context import WorkerContext
from ..exceptions import ClaimConflict, JobCanceled, LeaseLost, StoreUnavailable
from ..models import GenerationJob, JobStatus
from ..models.job_state import LEASED_STATES
from ..repositories import JobRepository

logger = logging.getLogger(__name__)

# Candidates fetched per claim attempt. A lost race moves on to the next one.
CLAIM_BATCH_SIZE = 5


class LeaseManager:
    """Atomic claim / renew / release protocol for one worker."""

    def __init__(self, ctx: WorkerContext, lease_seconds: int):
        self.ctx = ctx
        self.lease = timedelta(seconds=lease_seconds)

    def claim_next(self, lease_seconds: Optional[int] = None) -> Optional[GenerationJob]:
        """Claim the oldest eligible pending job.

        Sets status=claimed, locked_by, lease_until and a fresh run_id.
        Returns None when nothing is claimable or every candidate was taken
        by another worker first.
        """
        lease = timedelta(seconds=lease_seconds) if lease_seconds is not None else self.lease
        with self.ctx.session() as db:
            repo = JobRepository(db)
            now = self.ctx.now()
            for job_id in repo.find_claimable_ids(now, limit=CLAIM_BATCH_SIZE):
                try:
                    repo.claim(job_id, self.ctx.worker_id, now, now + lease, uuid.uuid4().hex)
                except ClaimConflict:
                    logger.debug("Lost claim race for job %s", job_id)
                    continue
                db.commit()
                job = repo.get_by_id(job_id)
                db.expunge(job)
                logger.info(
                    "Claimed job %s for %s", job.id, job.repo_url,
                    extra={"run_id": job.run_id, "attempts": job.attempts},
                )
                return job
            db.rollback()
        return None

    def renew(self, job_id: str, lease_seconds: Optional[int] = None) -> bool:
        """Extend our lease. False means ownership is gone and work must stop."""
        lease = timedelta(seconds=lease_seconds) if lease_seconds is not None else self.lease
        with self.ctx.session() as db:
            now = self.ctx.now()
            renewed = JobRepository(db).renew(job_id, self.ctx.worker_id, now, now + lease)
            db.commit()
        if not renewed:
            logger.warning("Lease renewal refused for job %s", job_id)
        return renewed

    def mark_running(self, job_id: str) -> None:
        """claimed -> running. Raises LeaseLost if we no longer hold the job."""
        with self.ctx.session() as db:
            moved = JobRepository(db).compare_and_set(
                job_id, [JobStatus.CLAIMED], JobStatus.RUNNING, self.ctx.now(),
                owner=self.ctx.worker_id,
            )
            db.commit()
        if not moved:
            self.raise_ownership_error(job_id)

    def release(
        self,
        job_id: str,
        final_status: JobStatus,
        db: Optional[Session] = None,
        **values,
    ) -> bool:
        """Clear locked_by/lease_until and set ``final_status`` in one statement.

        When ``db`` is given the update joins the caller's transaction and is
        not committed here. A canceled job only has its lock dropped.
        """
        if db is None:
            with self.ctx.session() as own_db:
                released = self.release(job_id, final_status, db=own_db, **values)
                own_db.commit()
            return released

        repo = JobRepository(db)
        now = self.ctx.now()
        if JobStatus(final_status) == JobStatus.CANCELED:
            return repo.clear_canceled_lock(job_id, self.ctx.worker_id, now)
        values.setdefault("completed_at", now if final_status in (JobStatus.COMPLETED, JobStatus.DEAD) else None)
        return repo.compare_and_set(
            job_id, LEASED_STATES, final_status, now,
            owner=self.ctx.worker_id,
            locked_by=None,
            lease_until=None,
            **values,
        )

    def reclaim_expired(self) -> int:
        """Reset every claimed/running job whose lease ran out back to pending."""
        with self.ctx.session() as db:
            count = JobRepository(db).reclaim_expired(self.ctx.now())
            db.commit()
        if count:
            logger.warning("Reclaimed %d job(s) with expired leases", count)
        return count

    def current_status(self, job_id: str) -> Optional[JobStatus]:
        with self.ctx.session() as db:
            job = JobRepository(db).get_by_id_optional(job_id)
            return JobStatus(job.status) if job else None

    def raise_ownership_error(self, job_id: str) -> None:
        """Raise JobCanceled if the job was canceled, LeaseLost otherwise."""
        if self.current_status(job_id) == JobStatus.CANCELED:
            raise JobCanceled(job_id)
        raise LeaseLost(job_id, self.ctx.worker_id)


class LeaseHeartbeat:
    """Keeps a lease alive while a job runs and tells the job when to stop.

    A background thread renews every ``interval`` seconds. When a renewal is
    refused it records why (lease lost or job canceled) and sets
    ``abort_event`` so a running tool process can be terminated. ``check()``
    is called between pipeline stages: it renews synchronously and raises
    the recorded reason if ownership is gone.

    Usage::

        with LeaseHeartbeat(leases, job.id, interval=60) as guard:
            executor.execute(job, working_dir, on_progress, guard=guard)
    """

    def __init__(self, leases: LeaseManager, job_id: str, interval: float):
        self.leases = leases
        self.job_id = job_id
        self.interval = interval
        self.abort_event = threading.Event()
        self._stop = threading.Event()
        self._lost: Optional[Exception] = None
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    def __enter__(self) -> "LeaseHeartbeat":
        self._thread = threading.Thread(
            target=self._run, name=f"lease-heartbeat-{self.job_id}", daemon=True,
        )
        self._thread.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval + 5)

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self._renew()
            except StoreUnavailable as e:
                # Keep the job running; the lease survives short outages.
                logger.warning("Heartbeat for job %s could not reach the store: %s", self.job_id, e)
            if self.abort_event.is_set():
                return

    def _renew(self) -> None:
        if self.leases.renew(self.job_id):
            return
        try:
            self.leases.raise_ownership_error(self.job_id)
        except (JobCanceled, LeaseLost) as e:
            with self._lock:
                self._lost = e
            self.abort_event.set()

    def check(self) -> None:
        """Raise JobCanceled / LeaseLost if this worker must stop."""
        if not self.abort_event.is_set():
            self._renew()
        with self._lock:
            lost = self._lost
        if lost is not None:
            raise lost
