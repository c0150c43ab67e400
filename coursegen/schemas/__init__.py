"""Pydantic schemas for API validation."""

from .job import (
    JobCreateRequest,
    GenerationJobResponse,
    JobStatusResponse,
    JobEventResponse,
    JobMetricsResponse,
)
from .document import (
    DocumentListItem,
    DocumentResponse,
)

__all__ = [
    "JobCreateRequest",
    "GenerationJobResponse",
    "JobStatusResponse",
    "JobEventResponse",
    "JobMetricsResponse",
    "DocumentListItem",
    "DocumentResponse",
]
