"""API endpoint tests"""

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from loguru import logger

from rxwatch.api.deps import get_db
from rxwatch.core.notify import Notifier
from rxwatch.ingestion.base import BaseSyncTask
from rxwatch.main import create_app
from rxwatch.models.raw import RawDPDDrug, RawDSCReport
from rxwatch.services.orchestrator import SyncOrchestrator
from rxwatch.services.sync_metadata import SyncMetadataStore

AUTH = {"Authorization": "Bearer test-secret"}


class StubTask(BaseSyncTask):
    def __init__(self, job_id, error=None):
        self.job_id = job_id
        self.error = error
        self.runs = 0

    async def run(self):
        self.runs += 1
        if self.error:
            raise self.error
        return {"records": 5}


class BrokenSession:
    def execute(self, *args, **kwargs):
        raise RuntimeError("connection refused")


@pytest.fixture
def orchestrator(session_factory, tmp_path, sleeper):
    notifier = Notifier(None, log_dir=str(tmp_path))
    orchestrator = SyncOrchestrator(
        [StubTask("dsc"), StubTask("dpd", error=RuntimeError("DPD API server error (503)"))],
        SyncMetadataStore(session_factory),
        notifier,
        schedules={"dsc": "*/15 * * * *", "dpd": "0 4 * * *"},
        timezone="America/Toronto",
        sleep=sleeper,
    )
    yield orchestrator
    if notifier._sink_id is not None:
        logger.remove(notifier._sink_id)
        notifier._sink_id = None


@pytest.fixture
def app(session_factory, orchestrator):
    application = create_app(use_lifespan=False)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    application.dependency_overrides[get_db] = override_get_db
    application.state.orchestrator = orchestrator
    return application


@pytest.fixture
def client(app):
    """Create test client"""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def seeded(session_factory):
    with session_factory() as db:
        db.add_all([
            RawDSCReport(
                report_id=101,
                din="02242903",
                kind="shortage",
                status="active_confirmed",
                company_name="ACME PHARMA",
                payload={"id": 101, "reason": "demand"},
                api_updated_at=datetime(2026, 10, 18, tzinfo=timezone.utc),
            ),
            RawDSCReport(
                report_id=102,
                din="02242903",
                kind="discontinuance",
                status="resolved",
                company_name="ACME PHARMA",
                payload={"id": 102},
                api_updated_at=datetime(2026, 10, 10, tzinfo=timezone.utc),
            ),
            RawDSCReport(
                report_id=103,
                din="00000019",
                kind="shortage",
                status="anticipated_shortage",
                company_name="OTHER LABS",
                payload={"id": 103},
                api_updated_at=datetime(2026, 10, 15, tzinfo=timezone.utc),
            ),
            RawDPDDrug(
                din="02242903",
                drug_code=4242,
                brand_name="AMOXICILLIN",
                company_name="ACME PHARMA",
                last_update_date="2026-09-30",
                payload={"drug": {"drug_code": 4242}, "details": {}},
            ),
        ])
        db.commit()


class TestHealth:
    """Test health endpoint"""

    def test_health_check(self, client):
        """Test health check with no sync history"""
        response = client.get("/api/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["database"] == "ok"
        assert body["sync"] == []

    def test_health_reports_sync_metadata(self, client, orchestrator):
        """Test that the last run of each job is reported"""
        orchestrator.metadata_store.record_run("dsc", success=True)
        orchestrator.metadata_store.record_run("dpd", success=False, error="boom")

        body = client.get("/api/health").json()

        assert [job["job_id"] for job in body["sync"]] == ["dpd", "dsc"]
        assert body["sync"][0]["consecutive_failures"] == 1
        assert body["sync"][0]["last_error"] == "boom"

    def test_health_database_down(self, app, client):
        """Test that an unreachable database yields 503"""
        app.dependency_overrides[get_db] = lambda: BrokenSession()

        response = client.get("/api/health")

        assert response.status_code == 503
        assert response.json()["status"] == "degraded"

    def test_health_is_not_rate_limited(self, client):
        response = client.get("/api/health")
        assert "X-RateLimit-Limit" not in response.headers


class TestCron:
    """Test cron status and manual triggers"""

    def test_cron_status(self, client):
        """Test listing schedules"""
        response = client.get("/api/cron")
        assert response.status_code == 200
        body = response.json()
        assert body["timezone"] == "America/Toronto"
        assert body["jobs"] == [
            {"job": "dsc", "schedule": "*/15 * * * *", "running": False},
            {"job": "dpd", "schedule": "0 4 * * *", "running": False},
        ]

    def test_trigger_requires_secret(self, client):
        response = client.post("/api/cron", json={"job": "dsc"})
        assert response.status_code == 401

    def test_trigger_wrong_secret(self, client):
        response = client.post("/api/cron", json={"job": "dsc"}, headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_trigger_without_configured_secret(self, client, monkeypatch):
        """Test that triggers are refused when no secret is configured"""
        from rxwatch.core.config import settings

        monkeypatch.setattr(settings, "CRON_SECRET", None)
        response = client.post("/api/cron", json={"job": "dsc"}, headers=AUTH)
        assert response.status_code == 500

    def test_trigger_invalid_json(self, client):
        response = client.post("/api/cron", content=b"{not json", headers=AUTH)
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid JSON body"

    def test_trigger_non_utf8_body(self, client):
        """Undecodable bytes are a bad request, not a server error"""
        response = client.post("/api/cron", content=b"\xff\xfe{}", headers=AUTH)
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid JSON body"

    def test_trigger_invalid_job(self, client):
        response = client.post("/api/cron", json={"job": "everything"}, headers=AUTH)
        assert response.status_code == 400
        assert response.json()["detail"] == 'Invalid job. Must be "dsc" or "dpd"'

    def test_trigger_runs_job(self, client, orchestrator):
        """Test a successful manual run"""
        response = client.post("/api/cron", json={"job": "dsc"}, headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["job"] == "dsc"
        assert body["status"] == "succeeded"
        assert body["stats"] == {"records": 5}
        assert orchestrator.get_task("dsc").runs == 1

    def test_trigger_failed_job(self, client):
        """Test that a failed run is reported with a scheduled retry"""
        response = client.post("/api/cron", json={"job": "dpd"}, headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "failed"
        assert body["error"] == "DPD API server error (503)"
        assert body["retry_scheduled"] is True

    def test_trigger_while_running(self, client, orchestrator):
        """Test that an overlapping trigger is rejected"""
        orchestrator._running.add("dsc")

        response = client.post("/api/cron", json={"job": "dsc"}, headers=AUTH)

        assert response.status_code == 409
        assert orchestrator.get_task("dsc").runs == 0

    def test_pipeline_not_initialized(self, app, client):
        app.state.orchestrator = None
        assert client.get("/api/cron").status_code == 503


class TestReports:
    """Test report and drug endpoints"""

    def test_list_reports(self, client, seeded):
        """Test listing newest first"""
        response = client.get("/api/reports")
        assert response.status_code == 200
        body = response.json()
        assert body["total_count"] == 3
        assert [report["report_id"] for report in body["data"]] == [101, 103, 102]
        assert response.headers["X-RateLimit-Limit"] == "120"

    def test_reports_with_filters(self, client, seeded):
        """Test filters and pagination"""
        body = client.get("/api/reports?active=true&limit=1").json()
        assert body["total_count"] == 2
        assert len(body["data"]) == 1

        body = client.get("/api/reports?kind=discontinuance").json()
        assert [report["report_id"] for report in body["data"]] == [102]

        body = client.get("/api/reports?company=other").json()
        assert [report["report_id"] for report in body["data"]] == [103]

    def test_get_report(self, client, seeded):
        response = client.get("/api/reports/101")
        assert response.status_code == 200
        assert response.json()["payload"]["reason"] == "demand"

    def test_get_missing_report(self, client, seeded):
        assert client.get("/api/reports/999").status_code == 404

    def test_get_drug(self, client, seeded):
        """Test drug lookup with its reports"""
        response = client.get("/api/drugs/02242903")
        assert response.status_code == 200
        body = response.json()
        assert body["drug"]["brand_name"] == "AMOXICILLIN"
        assert sorted(report["report_id"] for report in body["reports"]) == [101, 102]

    def test_drug_with_reports_only(self, client, seeded):
        body = client.get("/api/drugs/00000019").json()
        assert body["drug"] is None
        assert len(body["reports"]) == 1

    def test_drug_not_found(self, client, seeded):
        assert client.get("/api/drugs/12345678").status_code == 404

    def test_drug_invalid_din(self, client):
        assert client.get("/api/drugs/abc").status_code == 422

    def test_invalid_endpoint(self, client):
        """Test invalid endpoint returns 404"""
        response = client.get("/invalid")
        assert response.status_code == 404
