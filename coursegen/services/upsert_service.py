"""Artifact upsert engine: turn a run's output files into persisted documents.

Keyed by ``source_key`` so running the same job again updates rows instead
of duplicating them. Nothing here commits; the caller commits together with
the job's completion so a run's documents and its ``completed`` status land
in one transaction.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, Set

from sqlalchemy.orm import Session

from ..core.context import utcnow
from ..exceptions import ValidationRejected
from ..models import Document, GenerationJob
from ..repositories import DocumentRepository
from .artifacts import ProducedFile
from .content_utils import (
    content_hash,
    derive_source_key,
    generate_doc_id,
    is_blank,
    normalize_markdown,
    normalize_repo_url,
    normalize_slug,
    repository_id,
)

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 255


@dataclass
class UpsertStats:
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    rejected: int = 0
    deleted: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class _Candidate:
    source_key: str
    file: ProducedFile
    content: str

    def rank(self):
        # Every candidate is already non-empty; reviewed beats plain, then newer wins.
        return (self.file.tier, self.file.modified_at)


def validate_content(produced: ProducedFile) -> str:
    """Return the content to store, or raise ValidationRejected.

    Markdown is normalized; YAML is kept verbatim.
    """
    if is_blank(produced.content):
        raise ValidationRejected(produced.path, "empty content")
    if "\x00" in produced.content:
        raise ValidationRejected(produced.path, "binary content")
    if produced.is_markdown:
        return normalize_markdown(produced.content)
    return produced.content


def _changed(document: Document, digest: str, title: str, produced: ProducedFile) -> bool:
    """A new digest, a retitle or a moved output file all count as an update."""
    return (
        document.content_hash != digest
        or document.title != title
        or document.chapter_index != produced.chapter_index
        or document.source_path != produced.path
    )


class ArtifactUpsertService:
    """Insert, update, skip or delete documents for one successful run."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.doc_repo = DocumentRepository(db)

    def persist(self, job: GenerationJob, files: Iterable[ProducedFile]) -> UpsertStats:
        """Persist a run's produced files.

        Args:
            job: The job whose run produced the files (supplies repository and run identity).
            files: Everything the pipeline left in the working directory.

        Returns:
            Counts of inserted, updated, skipped, rejected and deleted documents.
        """
        repo_id = repository_id(job.repo_url)
        stats = UpsertStats()

        # Keys of every produced file, rejected ones included, so an empty
        # placeholder never gets the good document it replaces deleted.
        produced_keys: Set[str] = set()
        # An empty file has no heading, so its title (and key) can differ from
        # the document it replaces; the output path still matches.
        rejected_paths: Set[str] = set()
        candidates: Dict[str, _Candidate] = {}

        for produced in files:
            key = derive_source_key(repo_id, produced.kind, produced.title)
            produced_keys.add(key)
            try:
                content = validate_content(produced)
            except ValidationRejected as e:
                rejected_paths.add(produced.path)
                stats.rejected += 1
                logger.warning(
                    "Rejected %s for job %s: %s", produced.path, job.id, e.details.get("reason"),
                    extra={"source_key": key},
                )
                continue

            candidate = _Candidate(key, produced, content)
            current = candidates.get(key)
            if current is None:
                candidates[key] = candidate
                continue
            stats.skipped += 1
            if candidate.rank() > current.rank():
                logger.debug("In-batch duplicate %s replaces %s", produced.path, current.file.path)
                candidates[key] = candidate
            else:
                logger.debug("In-batch duplicate %s dropped in favour of %s", produced.path, current.file.path)

        existing = self.doc_repo.map_by_source_key(repo_id)
        now = self.clock()

        for key, candidate in candidates.items():
            document = existing.get(key)
            digest = content_hash(candidate.content)
            title = candidate.file.title[:MAX_TITLE_LENGTH]

            if document is None:
                self.doc_repo.insert(Document(
                    id=generate_doc_id(repo_id, key),
                    repository_id=repo_id,
                    repo_url=normalize_repo_url(job.repo_url),
                    source_key=key,
                    job_id=job.id,
                    run_id=job.run_id,
                    kind=candidate.file.kind,
                    slug=normalize_slug(candidate.file.title),
                    title=title,
                    chapter_index=candidate.file.chapter_index,
                    source_path=candidate.file.path,
                    content=candidate.content,
                    content_hash=digest,
                    created_at=now,
                    updated_at=now,
                ))
                stats.inserted += 1
            elif _changed(document, digest, title, candidate.file):
                self.doc_repo.update_content(
                    document,
                    content=candidate.content,
                    content_hash=digest,
                    job_id=job.id,
                    run_id=job.run_id,
                    slug=normalize_slug(candidate.file.title),
                    title=title,
                    chapter_index=candidate.file.chapter_index,
                    source_path=candidate.file.path,
                    now=now,
                )
                stats.updated += 1
            else:
                stats.skipped += 1

        if candidates:
            orphans = [
                doc for key, doc in existing.items()
                if key not in produced_keys and doc.source_path not in rejected_paths
            ]
            stats.deleted = self.doc_repo.delete_many(orphans)
        elif existing:
            logger.warning(
                "Job %s produced no acceptable artifacts; keeping %d existing document(s)",
                job.id, len(existing),
            )

        logger.info(
            "Persisted artifacts for job %s", job.id,
            extra={"repository_id": repo_id, **stats.to_dict()},
        )
        return stats
