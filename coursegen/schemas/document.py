"""Generated document schemas."""

from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class DocumentListItem(BaseModel):
    """Document without its full content."""
    id: str
    repository_id: str
    repo_url: str
    source_key: str
    job_id: str
    run_id: Optional[str] = None
    kind: str
    slug: str
    title: str
    chapter_index: int
    source_path: Optional[str] = None
    content_preview: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class DocumentResponse(DocumentListItem):
    """Full document."""
    content: str
    content_hash: str
