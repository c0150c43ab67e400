"""Retry and backoff controller.

The only writer of ``attempts`` and the only path from ``failed`` back to
``pending``. A failure is recorded in two conditional updates inside one
transaction: running -> failed (dropping the lease), then failed -> pending
with a delayed run_at, or failed -> dead.
"""

import logging
import random
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable

from ..core.context import WorkerContext
from ..exceptions import LeaseLost
from ..models import JobStatus
from ..repositories import JobRepository
from .lease_manager import LeaseManager

logger = logging.getLogger(__name__)

# Longest lastError text stored on the job.
MAX_ERROR_CHARS = 2000

RESCHEDULE = "reschedule"
MARK_DEAD = "dead"


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of one failure."""
    action: str
    attempts: int
    delay_seconds: float = 0.0

    @property
    def is_dead(self) -> bool:
        return self.action == MARK_DEAD


class RetryController:
    """Decides reschedule-with-delay vs. dead for a failed job.

    Policy: if ``attempts + 1 < max_attempts`` the job goes back to pending
    with ``attempts + 1`` and ``run_at = now + base * 2**(attempts + 1)``
    (capped, plus optional jitter). Otherwise it is marked dead with
    ``attempts == max_attempts``.
    """

    def __init__(
        self,
        ctx: WorkerContext,
        leases: LeaseManager,
        base_delay: float = 5.0,
        max_delay: float = 600.0,
        jitter: float = 0.0,
        rng: Callable[[], float] = random.random,
    ):
        self.ctx = ctx
        self.leases = leases
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.rng = rng

    def decide(self, attempts: int, max_attempts: int) -> RetryDecision:
        """Pure policy: what happens to a job that just failed with ``attempts`` prior failures."""
        next_attempts = attempts + 1
        if next_attempts < max_attempts:
            delay = min(self.base_delay * (2 ** next_attempts), self.max_delay)
            if self.jitter > 0:
                delay += self.rng() * self.jitter
            return RetryDecision(RESCHEDULE, next_attempts, delay)
        return RetryDecision(MARK_DEAD, min(next_attempts, max_attempts))

    def on_failure(self, job_id: str, error: str) -> RetryDecision:
        """Record a failure for a job this worker holds.

        Raises:
            LeaseLost: This worker no longer owns the job; nothing was written.
        """
        message = (error or "Unknown error")[-MAX_ERROR_CHARS:]
        with self.ctx.session() as db:
            repo = JobRepository(db)
            if not self.leases.release(job_id, JobStatus.FAILED, db=db, last_error=message):
                db.rollback()
                raise LeaseLost(job_id, self.ctx.worker_id)

            job = repo.get_by_id(job_id)
            decision = self.decide(job.attempts, job.max_attempts)
            now = self.ctx.now()

            if decision.is_dead:
                repo.compare_and_set(
                    job_id, [JobStatus.FAILED], JobStatus.DEAD, now,
                    attempts=decision.attempts,
                    completed_at=now,
                )
            else:
                repo.compare_and_set(
                    job_id, [JobStatus.FAILED], JobStatus.PENDING, now,
                    attempts=decision.attempts,
                    run_at=now + timedelta(seconds=decision.delay_seconds),
                )
            db.commit()

        if decision.is_dead:
            logger.warning(
                "Job %s failed permanently after %d attempt(s): %s",
                job_id, decision.attempts, message[:200],
            )
        else:
            logger.info(
                "Job %s failed (attempt %d), retrying in %.0fs",
                job_id, decision.attempts, decision.delay_seconds,
            )
        return decision

