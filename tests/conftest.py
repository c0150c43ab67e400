"""Shared test fixtures for the coursegen test suite.

All tests run against a throwaway SQLite file database (a file, not
``:memory:``, so that several threads and sessions see the same data the
way several worker processes would). Tables are dropped and recreated
before each test.

Queue code takes its time from a FakeClock passed through WorkerContext, so
lease expiry and retry delays are tested by advancing the clock instead of
sleeping.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone

# Point the app at the test database before any coursegen imports.
_TMP_DIR = tempfile.mkdtemp(prefix="coursegen-test-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["LOG_FORMAT"] = "text"
os.environ["ENVIRONMENT"] = "development"
os.environ["WORKSPACE_ROOT"] = os.path.join(_TMP_DIR, "workspaces")

import pytest
from fastapi.testclient import TestClient

from coursegen import models  # noqa: F401  registers tables
from coursegen.core.context import WorkerContext
from coursegen.database import Base, SessionLocal, engine, get_db
from coursegen.main import app
from coursegen.models import GenerationJob, JobStatus


class FakeClock:
    """Manually advanced aware-UTC clock."""

    def __init__(self, start: datetime = None):
        self.current = start or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current = self.current + timedelta(seconds=seconds)
        return self.current


@pytest.fixture(autouse=True)
def _clean_tables():
    """Recreate every table before each test for isolation."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture()
def db():
    """Per-test database session."""
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def make_ctx(clock):
    """Factory for WorkerContext objects sharing the test clock."""

    def _make(worker_id: str = "worker-a") -> WorkerContext:
        return WorkerContext(worker_id=worker_id, session_factory=SessionLocal, clock=clock)

    return _make


@pytest.fixture()
def ctx(make_ctx):
    return make_ctx("worker-a")


@pytest.fixture()
def client(db):
    """FastAPI TestClient with the DB dependency overridden to use the test session."""

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_job(
    db,
    clock,
    repo_url: str = "https://github.com/foo/bar",
    status: JobStatus = JobStatus.PENDING,
    **overrides,
) -> GenerationJob:
    """Insert a job directly, bypassing JobService."""
    import uuid

    now = clock()
    values = {
        "id": str(uuid.uuid4()),
        "repo_url": repo_url,
        "branch": "main",
        "prompt": "",
        "status": JobStatus(status).value,
        "attempts": 0,
        "max_attempts": 3,
        "run_at": now,
        "created_at": now,
        "updated_at": now,
    }
    values.update(overrides)
    job = GenerationJob(**values)
    db.add(job)
    db.commit()
    db.refresh(job)
    return job
