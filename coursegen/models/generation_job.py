"""Generation job model: one "build the course for repository X" request."""

from enum import Enum

from sqlalchemy import Column, String, Text, Integer, DateTime, JSON, Index

from ..core.context import utcnow
from ..database import Base


class JobStatus(str, Enum):
    """Job lifecycle states. Edges live in models/job_state.py."""
    PENDING = "pending"
    CLAIMED = "claimed"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD = "dead"
    CANCELED = "canceled"


TOTAL_STEPS = 6


class GenerationJob(Base):
    """
    Persisted unit of work for the documentation pipeline.

    Status transitions: pending -> claimed -> running -> completed | failed,
    failed -> pending (retry) | dead, any non-terminal -> canceled.
    locked_by and lease_until are always set together or cleared together.
    Jobs are never deleted.
    """

    __tablename__ = "generation_jobs"
    __table_args__ = (
        Index("ix_generation_jobs_status_run_at", "status", "run_at"),
        Index("ix_generation_jobs_lease_until", "lease_until"),
        Index("ix_generation_jobs_repo_url", "repo_url"),
    )

    # Primary key (UUID format)
    id = Column(String(50), primary_key=True)

    # Repository reference
    repo_url = Column(Text, nullable=False)
    branch = Column(String(255), nullable=False, default="main")
    prompt = Column(Text, nullable=False, default="")

    # Lifecycle
    status = Column(String(20), nullable=False, default=JobStatus.PENDING.value)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    run_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Lease
    locked_by = Column(String(100), nullable=True)
    lease_until = Column(DateTime(timezone=True), nullable=True)

    # Execution identity; replaced on every claim
    run_id = Column(String(50), nullable=True)

    # Progress
    current_step = Column(Integer, nullable=False, default=0)
    total_steps = Column(Integer, nullable=False, default=TOTAL_STEPS)
    progress_message = Column(Text, nullable=True)

    # Outcome
    last_error = Column(Text, nullable=True)
    docs_count = Column(Integer, nullable=True)
    regeneration_stats = Column(JSON, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED.value, JobStatus.DEAD.value, JobStatus.CANCELED.value)
