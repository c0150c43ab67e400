"""Progress event log, one row per progress notification."""

from sqlalchemy import Column, ForeignKey, Index, Integer, String, Text, DateTime

from ..core.context import utcnow
from ..database import Base


class JobEvent(Base):
    """Append-only progress record.

    Delivery to readers is at-least-once: a stage re-run after a crash
    emits its progress again, so consumers must tolerate repeated steps.
    """

    __tablename__ = "job_events"
    __table_args__ = (
        Index("ix_job_events_job_id_id", "job_id", "id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(50), ForeignKey("generation_jobs.id"), nullable=False)
    run_id = Column(String(50), nullable=True)
    step = Column(Integer, nullable=False)
    total_steps = Column(Integer, nullable=False)
    message = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
