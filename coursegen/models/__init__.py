"""Database models."""

from .generation_job import GenerationJob, JobStatus, TOTAL_STEPS
from .job_event import JobEvent
from .document import Document

__all__ = [
    "GenerationJob", "JobStatus", "TOTAL_STEPS",
    "JobEvent",
    "Document",
]
