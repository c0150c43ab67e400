"""API routes."""

from .jobs import router as jobs_router
from .documents import router as documents_router

__all__ = [
    "jobs_router",
    "documents_router",
]
