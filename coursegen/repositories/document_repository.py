"""Document repository for database operations."""

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ..exceptions import DocumentNotFoundError
from ..models import Document
from .base import BaseRepository

# Maximum length of content preview stored alongside each document.
CONTENT_PREVIEW_LENGTH = 500


def generate_content_preview(content: str) -> str:
    """Generate a preview excerpt from document content."""
    if len(content) <= CONTENT_PREVIEW_LENGTH:
        return content
    return content[:CONTENT_PREVIEW_LENGTH]


class DocumentRepository(BaseRepository[Document]):
    """Repository for generated documents, keyed by (repository_id, source_key)."""

    model_class = Document
    not_found_error = DocumentNotFoundError

    def map_by_source_key(self, repository_id: str) -> Dict[str, Document]:
        """All live documents of a repository, indexed by source_key."""
        docs = self.db.query(Document).filter(Document.repository_id == repository_id).all()
        return {doc.source_key: doc for doc in docs}

    def count_for_repository(self, repository_id: str) -> int:
        return self.db.query(Document).filter(Document.repository_id == repository_id).count()

    def list_documents(
        self,
        repository_id: Optional[str] = None,
        kind: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Document]:
        """Documents ordered by kind, chapter index and title."""
        query = self.db.query(Document)
        if repository_id:
            query = query.filter(Document.repository_id == repository_id)
        if kind:
            query = query.filter(Document.kind == kind)
        return (
            query.order_by(Document.kind.asc(), Document.chapter_index.asc(), Document.title.asc())
            .offset(skip)
            .limit(limit)
            .all()
        )

    def insert(self, document: Document) -> Document:
        document.content_preview = generate_content_preview(document.content)
        self.db.add(document)
        self.db.flush()
        return document

    def update_content(
        self,
        document: Document,
        *,
        content: str,
        content_hash: str,
        job_id: str,
        run_id: Optional[str],
        slug: str,
        title: str,
        chapter_index: int,
        source_path: Optional[str],
        now: datetime,
    ) -> Document:
        document.content = content
        document.content_hash = content_hash
        document.content_preview = generate_content_preview(content)
        document.job_id = job_id
        document.run_id = run_id
        document.slug = slug
        document.title = title
        document.chapter_index = chapter_index
        document.source_path = source_path
        document.updated_at = now
        self.db.flush()
        return document

    def delete_many(self, documents: Iterable[Document]) -> int:
        count = 0
        for document in documents:
            self.db.delete(document)
            count += 1
        self.db.flush()
        return count
