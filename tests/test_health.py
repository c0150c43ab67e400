"""Tests for /health and / endpoints."""

from sqlalchemy.exc import OperationalError

from coursegen import __version__
from coursegen.database import get_db
from coursegen.main import app


class TestHealth:

    def test_health_returns_200(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["db"] == "ok"
        assert "uptime_seconds" in data
        assert data["version"] == __version__

    def test_health_reports_pending_jobs(self, client):
        assert client.get("/health").json()["pending_jobs"] == 0
        client.post("/api/jobs", json={"repo_url": "foo/bar"})
        assert client.get("/health").json()["pending_jobs"] == 1

    def test_root_returns_api_info(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.json()["name"] == "coursegen API"


class _DownSession:
    """Session stand-in whose every statement fails like a lost connection."""

    def _fail(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    query = execute = _fail


class TestStoreOutage:

    def test_api_answers_503_when_database_is_down(self, client):
        app.dependency_overrides[get_db] = lambda: _DownSession()
        resp = client.get("/api/jobs/metrics")
        assert resp.status_code == 503
        assert resp.json()["error"] == "STORE_UNAVAILABLE"

    def test_health_degrades_instead_of_failing(self, client):
        app.dependency_overrides[get_db] = lambda: _DownSession()
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "degraded"
        assert resp.json()["db"] == "error"
