"""Custom exception hierarchy for coursegen."""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(str, Enum):
    """Standardized error codes for API responses and job failure records."""

    # Lookup errors
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    DOCUMENT_NOT_FOUND = "DOCUMENT_NOT_FOUND"

    # Job state machine
    INVALID_TRANSITION = "INVALID_TRANSITION"

    # Queue / lease
    CLAIM_CONFLICT = "CLAIM_CONFLICT"
    LEASE_LOST = "LEASE_LOST"
    JOB_CANCELED = "JOB_CANCELED"

    # Pipeline
    STAGE_TIMEOUT = "STAGE_TIMEOUT"
    STAGE_TOOL_FAILURE = "STAGE_TOOL_FAILURE"
    REPOSITORY_FETCH_FAILED = "REPOSITORY_FETCH_FAILED"

    # Artifacts
    VALIDATION_REJECTED = "VALIDATION_REJECTED"

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Infrastructure
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"

    # Generic errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class CourseGenException(Exception):
    """
    Base exception for all coursegen errors.

    Provides structured error responses with:
    - Human-readable message
    - Machine-readable error code
    - HTTP status code
    - Optional additional details
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for JSON response.

        Returns:
            Dictionary with error, message, and details fields
        """
        return {
            "error": self.error_code.value,
            "message": self.message,
            "details": self.details
        }


# ---------------------------------------------------------------------------
# API-facing errors
# ---------------------------------------------------------------------------

class JobNotFoundError(CourseGenException):
    """Job not found in database."""

    def __init__(self, job_id: str):
        super().__init__(
            f"Job not found: {job_id}",
            ErrorCode.JOB_NOT_FOUND,
            status_code=404,
            details={"job_id": job_id}
        )


class DocumentNotFoundError(CourseGenException):
    """Document not found in database."""

    def __init__(self, doc_id: str):
        super().__init__(
            f"Document not found: {doc_id}",
            ErrorCode.DOCUMENT_NOT_FOUND,
            status_code=404,
            details={"doc_id": doc_id}
        )


class InvalidTransitionError(CourseGenException):
    """Requested status change is not an edge of the job state machine."""

    def __init__(self, job_id: str, current: str, target: str):
        super().__init__(
            f"Job {job_id} cannot move from '{current}' to '{target}'",
            ErrorCode.INVALID_TRANSITION,
            status_code=409,
            details={"job_id": job_id, "current": current, "target": target}
        )


class ValidationError(CourseGenException):
    """Validation failed for user input."""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(
            message,
            ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )


# ---------------------------------------------------------------------------
# Queue and lease signals
# ---------------------------------------------------------------------------

class ClaimConflict(CourseGenException):
    """Another worker claimed the job first. Not an error: poll again."""

    def __init__(self, job_id: str):
        super().__init__(
            f"Job {job_id} was claimed by another worker",
            ErrorCode.CLAIM_CONFLICT,
            status_code=409,
            details={"job_id": job_id}
        )


class LeaseLost(CourseGenException):
    """This worker no longer owns the job; stop all side effects.

    Raised when a renewal is refused (lease expired and was swept or
    reclaimed). No retry bookkeeping: whoever took the job over owns it now.
    """

    def __init__(self, job_id: str, worker_id: str):
        super().__init__(
            f"Worker {worker_id} lost the lease on job {job_id}",
            ErrorCode.LEASE_LOST,
            status_code=409,
            details={"job_id": job_id, "worker_id": worker_id}
        )


class JobCanceled(CourseGenException):
    """The job was canceled externally while this worker held it."""

    def __init__(self, job_id: str):
        super().__init__(
            f"Job {job_id} was canceled",
            ErrorCode.JOB_CANCELED,
            status_code=409,
            details={"job_id": job_id}
        )


class StoreUnavailable(CourseGenException):
    """The job/document store could not be reached."""

    def __init__(self, message: str):
        super().__init__(
            f"Store unavailable: {message}",
            ErrorCode.STORE_UNAVAILABLE,
            status_code=503,
        )


# ---------------------------------------------------------------------------
# Pipeline errors (recoverable, fed to the retry controller)
# ---------------------------------------------------------------------------

class PipelineError(CourseGenException):
    """A pipeline run failed in a way that may succeed on retry."""

    def __init__(self, message: str, error_code: ErrorCode, stage: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        merged = {"stage": stage} if stage else {}
        merged.update(details or {})
        super().__init__(message, error_code, status_code=500, details=merged)
        self.stage = stage


class StageTimeout(PipelineError):
    """A stage did not finish within its time budget."""

    def __init__(self, stage: str, timeout: float):
        super().__init__(
            f"Stage '{stage}' timed out after {timeout:.0f}s",
            ErrorCode.STAGE_TIMEOUT,
            stage=stage,
            details={"timeout_seconds": timeout},
        )


class StageToolFailure(PipelineError):
    """The analysis tool exited non-zero or produced no usable output."""

    def __init__(self, stage: str, reason: str, returncode: Optional[int] = None):
        super().__init__(
            f"Stage '{stage}' failed: {reason}",
            ErrorCode.STAGE_TOOL_FAILURE,
            stage=stage,
            details={"returncode": returncode} if returncode is not None else None,
        )
        self.returncode = returncode


class RepositoryFetchError(PipelineError):
    """The repository could not be checked out."""

    def __init__(self, repo_url: str, reason: str):
        super().__init__(
            f"Could not fetch repository {repo_url}: {reason}",
            ErrorCode.REPOSITORY_FETCH_FAILED,
            details={"repo_url": repo_url},
        )


class ValidationRejected(CourseGenException):
    """A produced artifact is empty or malformed; skip it, not the job."""

    def __init__(self, path: str, reason: str):
        super().__init__(
            f"Rejected artifact {path}: {reason}",
            ErrorCode.VALIDATION_REJECTED,
            status_code=422,
            details={"path": path, "reason": reason}
        )
