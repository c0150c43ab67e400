"""Job creation API: create, cancel, regenerate and inspect generation jobs.

This is the surface the web front end talks to. It never touches leases;
workers own claimed jobs until they release them or their lease expires.
"""

import uuid
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.context import utcnow
from ..exceptions import InvalidTransitionError, ValidationError
from ..models import GenerationJob, JobEvent, JobStatus
from ..models.job_state import NON_TERMINAL_STATES
from ..repositories import JobRepository
from .content_utils import normalize_repo_url

logger = logging.getLogger(__name__)

MAX_ATTEMPTS_LIMIT = 10
METRICS_WINDOW = timedelta(hours=1)


class JobService:
    """
    Manages the externally visible lifecycle of generation jobs.

    Jobs are created here in ``pending``, then claimed and driven by workers.
    A repository/branch has at most one non-terminal job: creating another
    returns the existing one.
    """

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.job_repo = JobRepository(db)

    def _new_job(self, repo_url: str, branch: str, prompt: str, max_attempts: Optional[int]) -> GenerationJob:
        if max_attempts is None:
            max_attempts = settings.max_attempts_default
        if not 1 <= max_attempts <= MAX_ATTEMPTS_LIMIT:
            raise ValidationError(f"max_attempts must be between 1 and {MAX_ATTEMPTS_LIMIT}", field="max_attempts")
        now = self.clock()
        job = GenerationJob(
            id=str(uuid.uuid4()),
            repo_url=repo_url,
            branch=branch,
            prompt=prompt or "",
            status=JobStatus.PENDING.value,
            attempts=0,
            max_attempts=max_attempts,
            run_at=now,
            created_at=now,
            updated_at=now,
        )
        self.db.add(job)
        return job

    @staticmethod
    def _clean_repo(repo_url: str) -> str:
        if not repo_url or not repo_url.strip():
            raise ValidationError("repo_url is required", field="repo_url")
        normalized = normalize_repo_url(repo_url)
        if not normalized.startswith(("https://", "http://")):
            raise ValidationError(f"Unsupported repository URL: {repo_url}", field="repo_url")
        return normalized

    def create_job(
        self,
        repo_url: str,
        prompt: str = "",
        branch: str = "main",
        max_attempts: Optional[int] = None,
    ) -> GenerationJob:
        """
        Insert a pending job, or return the active one for the same repository and branch.

        Args:
            repo_url: Repository URL or ``owner/name`` shorthand.
            prompt: Free-text instructions passed to every stage.
            branch: Branch to check out.
            max_attempts: Retry budget; defaults to settings.max_attempts_default.

        Returns:
            The created or existing GenerationJob
        """
        repo_url = self._clean_repo(repo_url)
        existing = self.job_repo.find_active_for_repo(repo_url, branch)
        if existing:
            logger.info(f"Active job already exists for {repo_url}@{branch}: {existing[0].id}")
            return existing[0]

        job = self._new_job(repo_url, branch, prompt, max_attempts)
        self.db.commit()
        self.db.refresh(job)

        logger.info(f"Created job {job.id} for {repo_url}@{branch}")
        return job

    def _cancel(self, job: GenerationJob) -> bool:
        now = self.clock()
        return self.job_repo.compare_and_set(
            job.id,
            NON_TERMINAL_STATES,
            JobStatus.CANCELED,
            now,
            completed_at=now,
            progress_message="Canceled",
        )

    def cancel_job(self, job_id: str) -> GenerationJob:
        """
        Request cancellation of a non-terminal job.

        A worker holding the job keeps its lock until it notices, between
        stages, and releases it.

        Raises:
            JobNotFoundError: Unknown job.
            InvalidTransitionError: The job already reached a terminal state.
        """
        job = self.job_repo.get_by_id(job_id)
        if job.is_terminal or not self._cancel(job):
            self.db.rollback()
            job = self.job_repo.get_by_id(job_id)
            raise InvalidTransitionError(job_id, job.status, JobStatus.CANCELED.value)
        self.db.commit()

        job = self.job_repo.get_by_id(job_id)
        logger.info(f"Canceled job {job_id} (locked_by={job.locked_by or 'none'})")
        return job

    def regenerate(self, repo_url: str, prompt: str = "", branch: str = "main",
                   max_attempts: Optional[int] = None) -> GenerationJob:
        """
        Cancel every active job for the repository and queue a fresh one.

        Both happen in one transaction.
        """
        repo_url = self._clean_repo(repo_url)
        canceled = 0
        for active in self.job_repo.find_active_for_repo(repo_url):
            if self._cancel(active):
                canceled += 1
        job = self._new_job(repo_url, branch, prompt, max_attempts)
        self.db.commit()
        self.db.refresh(job)

        logger.info(f"Regenerating {repo_url}@{branch}: job {job.id}, canceled {canceled} active job(s)")
        return job

    def get_job(self, job_id: str) -> GenerationJob:
        return self.job_repo.get_by_id(job_id)

    def get_job_status(self, job_id: str) -> Dict[str, Any]:
        """Progress view for the UI."""
        job = self.job_repo.get_by_id(job_id)
        return {
            "id": job.id,
            "status": job.status,
            "current_step": job.current_step,
            "total_steps": job.total_steps,
            "progress_message": job.progress_message,
            "last_error": job.last_error,
            "attempts": job.attempts,
            "max_attempts": job.max_attempts,
        }

    def list_jobs(self, repo_url: Optional[str] = None, status: Optional[JobStatus] = None,
                  limit: int = 20) -> List[GenerationJob]:
        if repo_url:
            repo_url = normalize_repo_url(repo_url)
        return self.job_repo.list_jobs(repo_url=repo_url, status=status, limit=limit)

    def list_events(self, job_id: str, after: int = 0, limit: int = 100) -> List[JobEvent]:
        """Progress events newer than ``after`` (an event id), oldest first."""
        self.job_repo.get_by_id(job_id)
        return self.job_repo.list_events(job_id, after=after, limit=limit)

    def get_metrics(self) -> Dict[str, Any]:
        """Job counts per status and activity in the last hour."""
        counts = self.job_repo.count_by_status()
        recent = self.job_repo.list_updated_since(self.clock() - METRICS_WINDOW)
        return {
            "by_status": counts,
            "total": sum(counts.values()),
            "active": sum(counts[s.value] for s in NON_TERMINAL_STATES),
            "updated_last_hour": len(recent),
            "completed_last_hour": sum(1 for j in recent if j.status == JobStatus.COMPLETED.value),
            "dead_last_hour": sum(1 for j in recent if j.status == JobStatus.DEAD.value),
        }
