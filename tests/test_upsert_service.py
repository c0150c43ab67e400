"""Tests for the artifact upsert engine: idempotence, empty guard, dedup and orphan cleanup."""

from datetime import datetime, timedelta, timezone

from coursegen.models import Document, JobStatus
from coursegen.services.artifacts import (
    KIND_CHAPTER,
    KIND_TUTORIAL,
    KIND_YAML,
    TIER_PLAIN,
    TIER_REVIEWED,
    ProducedFile,
    collect_artifacts,
)
from coursegen.services.content_utils import repository_id
from coursegen.services.upsert_service import ArtifactUpsertService
from tests.conftest import make_job

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _file(title, content, kind=KIND_CHAPTER, tier=TIER_PLAIN, modified_at=T0, path=None):
    return ProducedFile(
        path=path or f"chapters/{title}.md",
        kind=kind,
        title=title,
        content=content,
        tier=tier,
        modified_at=modified_at,
    )


def _persist(db, clock, job, files):
    stats = ArtifactUpsertService(db, clock).persist(job, files)
    db.commit()
    return stats


def _docs(db, job):
    db.expire_all()
    return db.query(Document).filter(Document.repository_id == repository_id(job.repo_url)).all()


# ---------------------------------------------------------------------------
# Insert / update / skip
# ---------------------------------------------------------------------------


class TestPersist:

    def test_first_run_inserts(self, db, clock):
        job = make_job(db, clock, status=JobStatus.RUNNING, run_id="run-1")
        stats = _persist(db, clock, job, [
            _file("Chapter 1", "# Chapter 1\n\nBody"),
            _file("Tutorial 1", "# Tutorial 1\n\nSteps", kind=KIND_TUTORIAL),
        ])
        assert stats.to_dict() == {"inserted": 2, "updated": 0, "skipped": 0, "rejected": 0, "deleted": 0}
        docs = _docs(db, job)
        assert {d.title for d in docs} == {"Chapter 1", "Tutorial 1"}
        assert all(d.run_id == "run-1" and d.job_id == job.id for d in docs)

    def test_second_identical_run_is_all_skips(self, db, clock):
        job = make_job(db, clock, status=JobStatus.RUNNING)
        files = [
            _file("Chapter 1", "# Chapter 1\n\nBody"),
            _file("Chapter 2", "# Chapter 2\n\nMore"),
            _file("step1_abstractions", "- a\n", kind=KIND_YAML, path="step1_abstractions.yaml"),
        ]
        _persist(db, clock, job, files)
        stats = _persist(db, clock, job, files)

        assert stats.to_dict() == {"inserted": 0, "updated": 0, "skipped": 3, "rejected": 0, "deleted": 0}
        assert len(_docs(db, job)) == 3

    def test_changed_content_updates_in_place(self, db, clock):
        job = make_job(db, clock, status=JobStatus.RUNNING, run_id="run-1")
        _persist(db, clock, job, [_file("Chapter 1", "# Chapter 1\n\nOld")])
        doc_id = _docs(db, job)[0].id

        job.run_id = "run-2"
        clock.advance(60)
        stats = _persist(db, clock, job, [_file("Chapter 1", "# Chapter 1\n\nNew")])

        assert stats.updated == 1
        docs = _docs(db, job)
        assert len(docs) == 1
        assert docs[0].id == doc_id
        assert "New" in docs[0].content
        assert docs[0].run_id == "run-2"

    def test_skipped_document_keeps_writing_run_id(self, db, clock):
        job = make_job(db, clock, status=JobStatus.RUNNING, run_id="run-1")
        _persist(db, clock, job, [_file("Chapter 1", "# Chapter 1\n\nSame")])
        job.run_id = "run-2"
        _persist(db, clock, job, [_file("Chapter 1", "# Chapter 1\n\nSame")])
        assert _docs(db, job)[0].run_id == "run-1"

    def test_title_variations_map_to_one_document(self, db, clock):
        job = make_job(db, clock, status=JobStatus.RUNNING)
        _persist(db, clock, job, [_file("Getting Started", "# Getting Started\n\nv1")])
        stats = _persist(db, clock, job, [_file("  getting   started! ", "# Getting Started\n\nv2")])
        assert stats.updated == 1
        assert len(_docs(db, job)) == 1

    def test_reordered_chapter_with_same_text_updates_index(self, db, clock, tmp_path):
        job = make_job(db, clock, status=JobStatus.RUNNING)
        chapters = tmp_path / "chapters"
        chapters.mkdir()
        (chapters / "01_intro.md").write_text("# Intro\n\nSame text\n")
        _persist(db, clock, job, collect_artifacts(tmp_path))

        (chapters / "01_intro.md").rename(chapters / "03_intro.md")
        clock.advance(60)
        stats = _persist(db, clock, job, collect_artifacts(tmp_path))

        assert stats.updated == 1
        assert stats.skipped == 0
        docs = _docs(db, job)
        assert len(docs) == 1
        assert docs[0].chapter_index == 3
        assert docs[0].source_path == "chapters/03_intro.md"

    def test_retitled_document_with_same_text_is_updated(self, db, clock):
        job = make_job(db, clock, status=JobStatus.RUNNING)
        _persist(db, clock, job, [_file("Getting Started", "# Setup\n\nBody", path="chapters/01_setup.md")])
        stats = _persist(db, clock, job, [_file("getting started", "# Setup\n\nBody", path="chapters/01_setup.md")])
        assert stats.updated == 1
        assert _docs(db, job)[0].title == "getting started"

    def test_markdown_is_normalized_before_comparison(self, db, clock):
        job = make_job(db, clock, status=JobStatus.RUNNING)
        _persist(db, clock, job, [_file("Chapter 1", "# Chapter 1\r\n\r\nBody\r\n")])
        stats = _persist(db, clock, job, [_file("Chapter 1", "# Chapter 1\n\nBody\n\n\n")])
        assert stats.skipped == 1
        assert stats.updated == 0


# ---------------------------------------------------------------------------
# Empty-content guard
# ---------------------------------------------------------------------------


class TestEmptyContentGuard:

    def test_whitespace_only_file_is_rejected(self, db, clock):
        job = make_job(db, clock, status=JobStatus.RUNNING)
        stats = _persist(db, clock, job, [_file("Chapter 1", "  \n\t\n")])
        assert stats.rejected == 1
        assert stats.inserted == 0
        assert _docs(db, job) == []

    def test_empty_file_never_overwrites_good_content(self, db, clock):
        job = make_job(db, clock, status=JobStatus.RUNNING)
        _persist(db, clock, job, [
            _file("Chapter 1", "# Chapter 1\n\nGood"),
            _file("Chapter 2", "# Chapter 2\n\nAlso good"),
        ])
        stats = _persist(db, clock, job, [
            _file("Chapter 1", ""),
            _file("Chapter 2", "# Chapter 2\n\nAlso good"),
        ])

        assert stats.rejected == 1
        assert stats.updated == 0
        assert stats.deleted == 0
        contents = {d.title: d.content for d in _docs(db, job)}
        assert "Good" in contents["Chapter 1"]

    def test_emptied_numbered_chapter_keeps_its_document(self, db, clock, tmp_path):
        job = make_job(db, clock, status=JobStatus.RUNNING)
        chapters = tmp_path / "chapters"
        chapters.mkdir()
        (chapters / "01_chapter_1.md").write_text("# Chapter 1\n\nGood\n")
        (chapters / "02_chapter_2.md").write_text("# Chapter 2\n\nAlso good\n")
        _persist(db, clock, job, collect_artifacts(tmp_path))

        # Without a heading the empty file is titled "01 chapter 1", not "Chapter 1".
        (chapters / "01_chapter_1.md").write_text("")
        stats = _persist(db, clock, job, collect_artifacts(tmp_path))

        assert stats.to_dict() == {"inserted": 0, "updated": 0, "skipped": 1, "rejected": 1, "deleted": 0}
        contents = {d.title: d.content for d in _docs(db, job)}
        assert set(contents) == {"Chapter 1", "Chapter 2"}
        assert "Good" in contents["Chapter 1"]

    def test_documents_remember_their_output_path(self, db, clock, tmp_path):
        job = make_job(db, clock, status=JobStatus.RUNNING)
        (tmp_path / "reviewed-chapters").mkdir()
        (tmp_path / "reviewed-chapters" / "01_intro.md").write_text("# Intro\n\nHi\n")
        _persist(db, clock, job, collect_artifacts(tmp_path))
        assert _docs(db, job)[0].source_path == "reviewed-chapters/01_intro.md"

    def test_all_rejected_run_deletes_nothing(self, db, clock):
        job = make_job(db, clock, status=JobStatus.RUNNING)
        _persist(db, clock, job, [_file("Chapter 1", "# Chapter 1\n\nGood")])
        stats = _persist(db, clock, job, [_file("Other", "")])
        assert stats.rejected == 1
        assert stats.deleted == 0
        assert len(_docs(db, job)) == 1


# ---------------------------------------------------------------------------
# In-batch dedup
# ---------------------------------------------------------------------------


class TestInBatchDedup:

    def test_reviewed_tier_wins(self, db, clock):
        job = make_job(db, clock, status=JobStatus.RUNNING)
        stats = _persist(db, clock, job, [
            _file("Chapter 1", "# Chapter 1\n\nReviewed", tier=TIER_REVIEWED, modified_at=T0),
            _file("Chapter 1", "# Chapter 1\n\nDraft", tier=TIER_PLAIN, modified_at=T0 + timedelta(hours=1)),
        ])
        assert stats.inserted == 1
        assert stats.skipped == 1
        assert "Reviewed" in _docs(db, job)[0].content

    def test_most_recent_wins_within_tier(self, db, clock):
        job = make_job(db, clock, status=JobStatus.RUNNING)
        _persist(db, clock, job, [
            _file("Chapter 1", "# Chapter 1\n\nOlder", modified_at=T0),
            _file("Chapter 1", "# Chapter 1\n\nNewer", modified_at=T0 + timedelta(minutes=5)),
        ])
        assert "Newer" in _docs(db, job)[0].content

    def test_non_empty_beats_empty_duplicate(self, db, clock):
        job = make_job(db, clock, status=JobStatus.RUNNING)
        stats = _persist(db, clock, job, [
            _file("Chapter 1", "", tier=TIER_REVIEWED, modified_at=T0 + timedelta(hours=1)),
            _file("Chapter 1", "# Chapter 1\n\nBody"),
        ])
        assert stats.rejected == 1
        assert stats.inserted == 1
        assert "Body" in _docs(db, job)[0].content

    def test_same_title_different_kind_are_distinct(self, db, clock):
        job = make_job(db, clock, status=JobStatus.RUNNING)
        stats = _persist(db, clock, job, [
            _file("Queue", "# Queue\n\nChapter"),
            _file("Queue", "# Queue\n\nTutorial", kind=KIND_TUTORIAL),
        ])
        assert stats.inserted == 2


# ---------------------------------------------------------------------------
# Orphan cleanup
# ---------------------------------------------------------------------------


class TestOrphanCleanup:

    def test_documents_not_produced_again_are_deleted(self, db, clock):
        job = make_job(db, clock, status=JobStatus.RUNNING)
        _persist(db, clock, job, [
            _file("Chapter 1", "# Chapter 1\n\nA"),
            _file("Chapter 2", "# Chapter 2\n\nB"),
        ])
        stats = _persist(db, clock, job, [_file("Chapter 1", "# Chapter 1\n\nA")])

        assert stats.deleted == 1
        assert [d.title for d in _docs(db, job)] == ["Chapter 1"]

    def test_cleanup_is_scoped_to_the_repository(self, db, clock):
        job_a = make_job(db, clock, repo_url="https://github.com/foo/a", status=JobStatus.RUNNING)
        job_b = make_job(db, clock, repo_url="https://github.com/foo/b", status=JobStatus.RUNNING)
        _persist(db, clock, job_a, [_file("Chapter 1", "# Chapter 1\n\nA")])
        _persist(db, clock, job_b, [_file("Other", "# Other\n\nB")])

        assert len(_docs(db, job_a)) == 1
        assert len(_docs(db, job_b)) == 1


# ---------------------------------------------------------------------------
# Collecting files from a working directory
# ---------------------------------------------------------------------------


class TestCollectArtifacts:

    def test_reads_every_output_kind(self, tmp_path):
        (tmp_path / "step1_abstractions.yaml").write_text("- a\n")
        (tmp_path / "chapters").mkdir()
        (tmp_path / "chapters" / "02_data-model.md").write_text("No heading here\n")
        (tmp_path / "reviewed-chapters").mkdir()
        (tmp_path / "reviewed-chapters" / "01_intro.md").write_text("# Introduction\n\nHi\n")
        (tmp_path / "tutorials").mkdir()
        (tmp_path / "tutorials" / "first.md").write_text("# First Steps\n")
        (tmp_path / "logs").mkdir()
        (tmp_path / "logs" / "extract.log").write_text("noise")

        files = {f.path: f for f in collect_artifacts(tmp_path)}

        assert set(files) == {
            "step1_abstractions.yaml",
            "chapters/02_data-model.md",
            "reviewed-chapters/01_intro.md",
            "tutorials/first.md",
        }
        assert files["step1_abstractions.yaml"].kind == KIND_YAML
        assert files["chapters/02_data-model.md"].title == "02 data model"
        assert files["chapters/02_data-model.md"].chapter_index == 2
        assert files["reviewed-chapters/01_intro.md"].title == "Introduction"
        assert files["reviewed-chapters/01_intro.md"].tier == TIER_REVIEWED
        assert files["tutorials/first.md"].kind == KIND_TUTORIAL

    def test_missing_directory_yields_nothing(self, tmp_path):
        assert collect_artifacts(tmp_path / "nope") == []
