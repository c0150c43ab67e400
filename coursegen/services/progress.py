"""Progress sink: writes pipeline progress onto the job and its event log."""

import logging

from ..core.context import WorkerContext
from ..repositories import JobRepository

logger = logging.getLogger(__name__)


class JobProgressSink:
    """``on_progress`` callback for one claimed job.

    Each call updates current_step/total_steps on the job (only while this
    worker still holds it) and appends a row to job_events, which readers
    poll with an ``after`` cursor. Delivery is at-least-once: a resumed run
    reports skipped stages again.
    """

    def __init__(self, ctx: WorkerContext, job_id: str, run_id: str):
        self.ctx = ctx
        self.job_id = job_id
        self.run_id = run_id

    def __call__(self, step: int, total_steps: int, message: str) -> None:
        with self.ctx.session() as db:
            recorded = JobRepository(db).record_progress(
                self.job_id, self.ctx.worker_id, self.run_id,
                step, total_steps, message, self.ctx.now(),
            )
            db.commit()
        if not recorded:
            logger.debug("Progress for job %s not recorded (no longer owned)", self.job_id)
