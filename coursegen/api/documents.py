"""Read-only endpoints for generated documents."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from ..database import get_db
from ..repositories import DocumentRepository
from ..schemas.document import DocumentListItem, DocumentResponse
from ..services.content_utils import repository_id

router = APIRouter(prefix="/api/documents", tags=["documents"])


@router.get("", response_model=List[DocumentListItem])
def list_documents(
    repo_url: Optional[str] = None,
    kind: Optional[str] = Query(None, pattern="^(chapter|tutorial|yaml)$"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """List documents, optionally for one repository and kind."""
    repo_id = repository_id(repo_url) if repo_url else None
    return DocumentRepository(db).list_documents(repository_id=repo_id, kind=kind, skip=skip, limit=limit)


@router.get("/{doc_id}", response_model=DocumentResponse)
def get_document(doc_id: str, db: Session = Depends(get_db)):
    """Get one document with its full content."""
    return DocumentRepository(db).get_by_id(doc_id)
