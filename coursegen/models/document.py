"""Generated document model."""

from sqlalchemy import Column, ForeignKey, Index, String, Text, Integer, DateTime, UniqueConstraint

from ..core.context import utcnow
from ..database import Base


class Document(Base):
    """One generated content unit (chapter, tutorial, stage YAML) of a repository.

    source_key is the dedup identity: at most one live row per
    (repository_id, source_key). Rows are written only by the artifact
    upsert engine and deleted by its orphan cleanup.
    """

    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("repository_id", "source_key", name="uq_documents_repository_source_key"),
        Index("ix_documents_repository_id", "repository_id"),
        Index("ix_documents_job_id", "job_id"),
    )

    # Primary key (UUID format)
    id = Column(String(50), primary_key=True)

    # Repository identity: short hash of the normalized repository URL
    repository_id = Column(String(32), nullable=False)
    repo_url = Column(Text, nullable=False)

    # repository_id:kind:normalized-title
    source_key = Column(String(500), nullable=False)

    # Run that most recently wrote the content
    job_id = Column(String(50), ForeignKey("generation_jobs.id"), nullable=False)
    run_id = Column(String(50), nullable=True)

    # chapter | tutorial | yaml
    kind = Column(String(20), nullable=False)
    slug = Column(String(500), nullable=False)
    title = Column(String(255), nullable=False)
    chapter_index = Column(Integer, nullable=False, default=0)

    # Output file the content came from, relative to the working directory
    source_path = Column(String(500), nullable=True)

    # Content (never empty)
    content = Column(Text, nullable=False)
    content_hash = Column(String(64), nullable=False)
    content_preview = Column(Text)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
