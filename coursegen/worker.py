"""
Orchestrator: the polling worker that drives jobs through the pipeline.

Each worker process claims one job at a time, keeps its lease alive with a
heartbeat, checks out the repository, runs the six analysis stages and on
success persists the produced artifacts and marks the job completed in one
transaction. Failures go to the retry controller. Expired leases left by
crashed workers are swept back to pending on a fixed cadence.

Polling is adaptive: the sleep between empty polls doubles from
POLL_INTERVAL_MIN up to POLL_INTERVAL_MAX and resets as soon as work is found.

Usage:
    coursegen-worker
"""

import logging
import shutil
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from dotenv import load_dotenv

from .core.config import Settings, settings as default_settings
from .core.context import WorkerContext
from .core.logging_config import job_id_var, redact, setup_logging, worker_id_var
from .database import SessionLocal, init_db
from .exceptions import (
    CourseGenException,
    ErrorCode,
    JobCanceled,
    LeaseLost,
    RepositoryFetchError,
    StoreUnavailable,
)
from .models import GenerationJob, JobStatus
from .repositories import DocumentRepository
from .services.analysis_tool import SubprocessAnalysisTool
from .services.artifacts import collect_artifacts
from .services.content_utils import repository_id
from .services.lease_manager import LeaseHeartbeat, LeaseManager
from .services.pipeline import PipelineExecutor
from .services.progress import JobProgressSink
from .services.repo_fetcher import GitRepositoryFetcher, RepositoryFetcher
from .services.retry_policy import RetryController
from .services.upsert_service import ArtifactUpsertService, UpsertStats

logger = logging.getLogger("coursegen.worker")


class Worker:
    """One orchestrator loop. All state it needs is passed in; nothing is global."""

    def __init__(
        self,
        ctx: WorkerContext,
        leases: LeaseManager,
        executor: PipelineExecutor,
        retry: RetryController,
        fetcher: RepositoryFetcher,
        workspace_root: Path,
        heartbeat_seconds: float = 60,
        poll_interval_min: float = 2.0,
        poll_interval_max: float = 60.0,
        reclaim_interval_seconds: float = 60,
        keep_workspace: bool = False,
        sleep: Optional[Callable[[float], object]] = None,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.ctx = ctx
        self.leases = leases
        self.executor = executor
        self.retry = retry
        self.fetcher = fetcher
        self.workspace_root = Path(workspace_root)
        self.heartbeat_seconds = heartbeat_seconds
        self.poll_interval_min = poll_interval_min
        self.poll_interval_max = poll_interval_max
        self.reclaim_interval_seconds = reclaim_interval_seconds
        self.keep_workspace = keep_workspace
        self.monotonic = monotonic
        self._stop = threading.Event()
        self.sleep = sleep or self._stop.wait
        self._idle_polls = 0
        self._last_sweep: Optional[float] = None

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def stop(self) -> None:
        self._stop.set()

    def next_idle_delay(self) -> float:
        """Sleep before the next poll after ``_idle_polls`` empty polls in a row."""
        return min(self.poll_interval_min * (2 ** self._idle_polls), self.poll_interval_max)

    def maybe_reclaim(self) -> int:
        """Run the expired-lease sweep if it is due."""
        now = self.monotonic()
        if self._last_sweep is not None and now - self._last_sweep < self.reclaim_interval_seconds:
            return 0
        self._last_sweep = now
        return self.leases.reclaim_expired()

    def run_once(self) -> bool:
        """Sweep if due, claim one job and process it. Returns True if a job was processed."""
        self.maybe_reclaim()
        job = self.leases.claim_next()
        if job is None:
            return False
        self.process(job)
        return True

    def run_forever(self, max_polls: Optional[int] = None) -> None:
        """Poll until stopped (or for ``max_polls`` iterations)."""
        store_backoff = self.poll_interval_min
        polls = 0
        while not self._stop.is_set():
            if max_polls is not None and polls >= max_polls:
                break
            polls += 1
            try:
                worked = self.run_once()
            except StoreUnavailable as e:
                logger.warning(f"Store unavailable, pausing polls for {store_backoff:.0f}s: {e.message}")
                self.sleep(store_backoff)
                store_backoff = min(store_backoff * 2, self.poll_interval_max)
                continue

            store_backoff = self.poll_interval_min
            if worked:
                self._idle_polls = 0
                continue
            delay = self.next_idle_delay()
            self._idle_polls += 1
            logger.debug(f"No claimable job, sleeping {delay:.1f}s")
            self.sleep(delay)

    # ------------------------------------------------------------------
    # One job
    # ------------------------------------------------------------------

    def workspace_for(self, job_id: str) -> Path:
        return self.workspace_root / job_id

    def process(self, job: GenerationJob) -> Optional[JobStatus]:
        """Drive one claimed job to its next resting state.

        Returns the status this worker left the job in, or None when
        ownership was lost and the job was abandoned.
        """
        token = job_id_var.set(job.id)
        try:
            return self._process(job)
        finally:
            job_id_var.reset(token)

    def _process(self, job: GenerationJob) -> Optional[JobStatus]:
        logger.info(f"Processing job {job.id}: {job.repo_url}@{job.branch} (run {job.run_id})")
        workspace = self.workspace_for(job.id)
        output_dir = workspace / "output"
        sink = JobProgressSink(self.ctx, job.id, job.run_id)
        error: Optional[CourseGenException] = None

        try:
            with LeaseHeartbeat(self.leases, job.id, self.heartbeat_seconds) as guard:
                self.leases.mark_running(job.id)
                try:
                    repo_path = self.fetcher.fetch(job.repo_url, job.branch, workspace / "repo")
                except RepositoryFetchError as e:
                    error = e
                else:
                    result = self.executor.execute(job, output_dir, sink, guard=guard, repo_path=repo_path)
                    logger.info(
                        f"Pipeline for job {job.id}: executed={result.executed} skipped={result.skipped}"
                    )
                    if result.ok:
                        guard.check()
                        stats = self._complete(job, output_dir)
                        logger.info(f"Job {job.id} completed", extra=stats.to_dict())
                        self._cleanup(workspace)
                        return JobStatus.COMPLETED
                    error = result.error
        except JobCanceled:
            logger.info(f"Job {job.id} was canceled, stopping")
            self.leases.release(job.id, JobStatus.CANCELED)
            return JobStatus.CANCELED
        except LeaseLost:
            logger.warning(f"Lost lease on job {job.id}, abandoning without retry bookkeeping")
            return None
        except StoreUnavailable:
            raise
        except Exception as e:
            logger.exception(f"Unexpected error while processing job {job.id}")
            error = CourseGenException(f"Unexpected error: {redact(str(e))}", ErrorCode.INTERNAL_ERROR)

        return self._fail(job, error, workspace)

    def _complete(self, job: GenerationJob, output_dir: Path) -> UpsertStats:
        """Persist artifacts and mark the job completed, atomically."""
        files = collect_artifacts(output_dir)
        with self.ctx.session() as db:
            stats = ArtifactUpsertService(db, self.ctx.clock).persist(job, files)
            docs_count = DocumentRepository(db).count_for_repository(repository_id(job.repo_url))
            released = self.leases.release(
                job.id,
                JobStatus.COMPLETED,
                db=db,
                docs_count=docs_count,
                regeneration_stats=stats.to_dict(),
                current_step=self.executor.total_steps,
                progress_message="Completed",
                last_error=None,
            )
            if not released:
                db.rollback()
                self.leases.raise_ownership_error(job.id)
            db.commit()
        return stats

    def _fail(self, job: GenerationJob, error: CourseGenException, workspace: Path) -> Optional[JobStatus]:
        try:
            decision = self.retry.on_failure(job.id, error.message)
        except LeaseLost:
            if self.leases.current_status(job.id) == JobStatus.CANCELED:
                logger.info(f"Job {job.id} was canceled while failing")
                self.leases.release(job.id, JobStatus.CANCELED)
                return JobStatus.CANCELED
            logger.warning(f"Lost lease on job {job.id} before recording failure")
            return None
        if decision.is_dead:
            self._cleanup(workspace)
            return JobStatus.DEAD
        return JobStatus.PENDING

    def _cleanup(self, workspace: Path) -> None:
        if self.keep_workspace:
            return
        shutil.rmtree(workspace, ignore_errors=True)


def build_worker(config: Settings = default_settings) -> Worker:
    """Wire a Worker from settings."""
    ctx = WorkerContext(worker_id=config.worker_id, session_factory=SessionLocal)
    leases = LeaseManager(ctx, lease_seconds=config.lease_seconds)
    retry = RetryController(
        ctx,
        leases,
        base_delay=config.retry_base_delay_seconds,
        max_delay=config.retry_max_delay_seconds,
        jitter=config.retry_jitter_seconds,
    )
    executor = PipelineExecutor(
        SubprocessAnalysisTool(config.get_tool_command()),
        stage_timeout=config.stage_timeout_seconds,
    )
    fetcher = GitRepositoryFetcher(timeout=config.git_clone_timeout_seconds, token=config.github_token)
    return Worker(
        ctx,
        leases,
        executor,
        retry,
        fetcher,
        workspace_root=Path(config.workspace_root),
        heartbeat_seconds=config.heartbeat_seconds,
        poll_interval_min=config.poll_interval_min,
        poll_interval_max=config.poll_interval_max,
        reclaim_interval_seconds=config.reclaim_interval_seconds,
        keep_workspace=config.keep_workspace,
    )


def main() -> None:
    """Poll for claimable jobs and process them until interrupted."""
    # The analysis tool inherits our environment; .env carries its model credentials.
    load_dotenv()
    setup_logging(log_level=default_settings.log_level, log_format=default_settings.log_format)
    default_settings.validate_production_config()
    init_db()

    worker = build_worker(default_settings)
    worker_id_var.set(worker.ctx.worker_id)
    logger.info(
        f"Worker {worker.ctx.worker_id} started | lease={default_settings.lease_seconds}s "
        f"heartbeat={default_settings.heartbeat_seconds}s "
        f"poll={default_settings.poll_interval_min}-{default_settings.poll_interval_max}s"
    )

    try:
        worker.run_forever()
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
        worker.stop()


if __name__ == "__main__":
    main()
