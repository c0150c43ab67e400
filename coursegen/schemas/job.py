"""Generation job schemas."""

from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import Optional, Dict, Any


class JobCreateRequest(BaseModel):
    """Request to generate documentation for a repository."""
    repo_url: str = Field(..., min_length=1, max_length=500)
    branch: str = Field("main", min_length=1, max_length=255)
    prompt: str = Field("", max_length=10_000)
    max_attempts: Optional[int] = Field(None, ge=1, le=10)

    @field_validator('repo_url', 'branch')
    @classmethod
    def strip_value(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "repo_url": "https://github.com/org/repo",
                    "branch": "main",
                    "prompt": "Focus on the public API",
                }
            ]
        }
    }


class GenerationJobResponse(BaseModel):
    """Schema for a generation job."""
    id: str
    repo_url: str
    branch: str
    prompt: str = ""
    status: str
    attempts: int
    max_attempts: int
    run_at: datetime
    locked_by: Optional[str] = None
    lease_until: Optional[datetime] = None
    run_id: Optional[str] = None
    current_step: int
    total_steps: int
    progress_message: Optional[str] = None
    last_error: Optional[str] = None
    docs_count: Optional[int] = None
    regeneration_stats: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class JobStatusResponse(BaseModel):
    """Progress view of a job."""
    id: str
    status: str
    current_step: int
    total_steps: int
    progress_message: Optional[str] = None
    last_error: Optional[str] = None
    attempts: int
    max_attempts: int


class JobEventResponse(BaseModel):
    """One progress notification. Consumers must tolerate duplicates."""
    id: int
    job_id: str
    run_id: Optional[str] = None
    step: int
    total_steps: int
    message: str
    created_at: datetime

    class Config:
        from_attributes = True


class JobMetricsResponse(BaseModel):
    """Queue overview."""
    by_status: Dict[str, int]
    total: int
    active: int
    updated_last_hour: int
    completed_last_hour: int
    dead_last_hour: int
