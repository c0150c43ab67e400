"""Generation job endpoints.

Endpoints are thin; JobService owns creation, cancellation and the
queue views.
"""

import logging
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from ..database import get_db
from ..models import JobStatus
from ..schemas.job import (
    GenerationJobResponse,
    JobCreateRequest,
    JobEventResponse,
    JobMetricsResponse,
    JobStatusResponse,
)
from ..services.job_service import JobService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.post("", response_model=GenerationJobResponse, status_code=201)
def create_job(request: JobCreateRequest, db: Session = Depends(get_db)):
    """Queue documentation generation for a repository.

    Returns the already-active job when one exists for the same
    repository and branch.
    """
    service = JobService(db)
    return service.create_job(
        repo_url=request.repo_url,
        prompt=request.prompt,
        branch=request.branch,
        max_attempts=request.max_attempts,
    )


@router.post("/regenerate", response_model=GenerationJobResponse, status_code=201)
def regenerate(request: JobCreateRequest, db: Session = Depends(get_db)):
    """Cancel active jobs for the repository and queue a fresh run."""
    service = JobService(db)
    return service.regenerate(
        repo_url=request.repo_url,
        prompt=request.prompt,
        branch=request.branch,
        max_attempts=request.max_attempts,
    )


@router.get("", response_model=List[GenerationJobResponse])
def list_jobs(
    repo_url: Optional[str] = Query(None),
    status: Optional[JobStatus] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """List recent jobs, optionally filtered by repository URL and status."""
    return JobService(db).list_jobs(repo_url=repo_url, status=status, limit=limit)


@router.get("/metrics", response_model=JobMetricsResponse)
def get_metrics(db: Session = Depends(get_db)):
    """Job counts per status plus last-hour activity."""
    return JobService(db).get_metrics()


@router.get("/{job_id}", response_model=GenerationJobResponse)
def get_job(job_id: str, db: Session = Depends(get_db)):
    """Get a specific generation job by ID."""
    return JobService(db).get_job(job_id)


@router.get("/{job_id}/status", response_model=JobStatusResponse)
def get_job_status(job_id: str, db: Session = Depends(get_db)):
    """Status, step counters and last error, for progress display."""
    return JobService(db).get_job_status(job_id)


@router.post("/{job_id}/cancel", response_model=GenerationJobResponse)
def cancel_job(job_id: str, db: Session = Depends(get_db)):
    """Request cancellation. 409 if the job already finished."""
    job = JobService(db).cancel_job(job_id)
    logger.info(f"Cancellation requested for job {job_id}")
    return job


@router.get("/{job_id}/events", response_model=List[JobEventResponse])
def list_events(
    job_id: str,
    after: int = Query(0, ge=0, description="Return events with id greater than this"),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Progress events for a job, oldest first."""
    return JobService(db).list_events(job_id, after=after, limit=limit)
