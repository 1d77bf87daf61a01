"""
Tests — export jobs: service lifecycle, worker gateway and routes.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests

from labstock.core.exceptions import ConflictError, NotFoundError, ValidationError
from labstock.integrations.export_worker_gateway import ExportWorkerGateway
from labstock.models import db
from labstock.models.export import ExportJob
from labstock.services import export_service


@pytest.fixture(autouse=True)
def no_worker_threads():
    """Never start real notify threads from tests."""
    with patch.object(ExportWorkerGateway, "notify_async") as notify_async:
        yield notify_async


def _job(status="pending", user_id="dev-user", **kw):
    job = ExportJob(user_id=user_id, status=status, options={}, **kw)
    db.session.add(job)
    db.session.commit()
    return job


# ═══════════════════════════════════════════════════════════════════════════
#  SERVICE
# ═══════════════════════════════════════════════════════════════════════════

class TestValidateOptions:

    def test_defaults(self):
        assert export_service.validate_export_options(None) == {
            "include_empty_lots": True, "include_expired_lots": True,
        }

    def test_explicit_values(self):
        opts = export_service.validate_export_options({"include_empty_lots": False})
        assert opts == {"include_empty_lots": False, "include_expired_lots": True}

    def test_wrong_type(self):
        with pytest.raises(ValidationError) as exc:
            export_service.validate_export_options({"include_expired_lots": "yes"})
        assert "include_expired_lots" in exc.value.details

    def test_not_an_object(self):
        with pytest.raises(ValidationError):
            export_service.validate_export_options(["include_empty_lots"])


class TestLifecycle:

    def test_request_creates_pending_and_notifies(self, no_worker_threads):
        job = export_service.request_export("u-1", {"include_empty_lots": True})
        assert job.status == "pending"
        assert job.user_id == "u-1"
        no_worker_threads.assert_called_once_with(job.id)

    def test_claim_complete(self):
        job = _job()
        export_service.claim_job(job.id)
        assert job.status == "processing"
        export_service.complete_job(job.id, "u-1/inventory.xlsx")
        assert job.status == "completed"
        assert job.file_path == "u-1/inventory.xlsx"
        assert job.completed_at is not None

    def test_claim_twice_conflicts(self):
        job = _job()
        export_service.claim_job(job.id)
        with pytest.raises(ConflictError):
            export_service.claim_job(job.id)

    def test_complete_requires_processing(self):
        job = _job()
        with pytest.raises(ConflictError):
            export_service.complete_job(job.id, "x.xlsx")

    def test_complete_requires_path(self):
        job = _job(status="processing")
        with pytest.raises(ValidationError):
            export_service.complete_job(job.id, "")

    def test_fail_from_open_states_only(self):
        job = _job(status="processing")
        export_service.fail_job(job.id, "workbook too large")
        assert job.status == "failed"
        assert job.error_message == "workbook too large"
        with pytest.raises(ConflictError):
            export_service.fail_job(job.id, "again")

    def test_unknown_job(self):
        with pytest.raises(NotFoundError):
            export_service.claim_job("missing")

    def test_sweep_stale_jobs(self):
        now = datetime.now(timezone.utc)
        stale = _job(created_at=now - timedelta(minutes=45))
        stuck = _job(status="processing", created_at=now - timedelta(minutes=31))
        fresh = _job(created_at=now - timedelta(minutes=5))
        done = _job(status="completed", file_path="a.xlsx", created_at=now - timedelta(hours=5))

        assert export_service.sweep_stale_jobs(30, now=now) == 2

        assert stale.status == "failed" and stale.error_message == "Export timed out"
        assert stuck.status == "failed"
        assert fresh.status == "pending"
        assert done.status == "completed"


class TestStatusAndDownloads:

    def test_pending_status(self, app):
        job = _job()
        with app.test_request_context():
            assert export_service.get_export_status(job.id, "dev-user") == {
                "status": "pending", "errorMessage": None,
            }

    def test_other_users_job_not_found(self, app):
        job = _job(user_id="someone-else")
        with app.test_request_context(), pytest.raises(NotFoundError):
            export_service.get_export_status(job.id, "dev-user")

    def test_completed_status_has_signed_url(self, app):
        job = _job(status="completed", file_path="dev-user/inv.xlsx")
        with app.test_request_context():
            status = export_service.get_export_status(job.id, "dev-user")
            token = status["downloadUrl"].rsplit("/", 1)[1]
            assert export_service.resolve_download_token(token) == "dev-user/inv.xlsx"
        assert "/api/export/download/" in status["downloadUrl"]

    def test_tampered_token(self, app):
        with app.test_request_context(), pytest.raises(ValidationError):
            export_service.resolve_download_token("not-a-token")

    def test_expired_token(self, app, monkeypatch):
        job = _job(status="completed", file_path="f.xlsx")
        with app.test_request_context():
            token = export_service.make_download_token(job)
            monkeypatch.setitem(app.config, "EXPORT_URL_MAX_AGE", -1)
            with pytest.raises(ValidationError, match="expired"):
                export_service.resolve_download_token(token)


# ═══════════════════════════════════════════════════════════════════════════
#  WORKER GATEWAY
# ═══════════════════════════════════════════════════════════════════════════

class TestWorkerGateway:

    def test_posts_job_id_with_bearer(self):
        session = MagicMock()
        session.post.return_value = MagicMock(ok=True, status_code=200)
        gateway = ExportWorkerGateway("https://fn.example/process-export", "svc", session=session)

        assert gateway.notify("job-1") is True

        kwargs = session.post.call_args[1]
        assert session.post.call_args[0][0] == "https://fn.example/process-export"
        assert kwargs["json"] == {"jobId": "job-1"}
        assert kwargs["headers"]["Authorization"] == "Bearer svc"

    def test_failures_never_raise(self):
        session = MagicMock()
        session.post.side_effect = requests.Timeout("slow")
        gateway = ExportWorkerGateway("https://fn.example", "svc", session=session)
        assert gateway.notify("job-1") is False

        session.post.side_effect = None
        session.post.return_value = MagicMock(ok=False, status_code=500)
        assert gateway.notify("job-1") is False

    def test_unconfigured_is_noop(self):
        session = MagicMock()
        assert ExportWorkerGateway(None, None, session=session).notify("job-1") is False
        session.post.assert_not_called()


# ═══════════════════════════════════════════════════════════════════════════
#  ROUTES
# ═══════════════════════════════════════════════════════════════════════════

class TestExportRoutes:

    def test_request_returns_202(self, client):
        res = client.post("/api/export/request", json={"include_expired_lots": False})
        assert res.status_code == 202
        data = res.get_json()
        assert data["success"] is True
        job = db.session.get(ExportJob, data["jobId"])
        assert job.user_id == "dev-user"
        assert job.options == {"include_empty_lots": True, "include_expired_lots": False}

    def test_request_uses_caller_id(self, client):
        res = client.post("/api/export/request", json={}, headers={"X-User-Id": "u-42"})
        job = db.session.get(ExportJob, res.get_json()["jobId"])
        assert job.user_id == "u-42"

    def test_request_invalid_options(self, client):
        res = client.post("/api/export/request", json={"include_empty_lots": 1})
        assert res.status_code == 400
        assert "include_empty_lots" in res.get_json()["error"]

    def test_status_not_found_for_other_user(self, client):
        job = _job(user_id="u-1")
        res = client.get(f"/api/export/status/{job.id}", headers={"X-User-Id": "u-2"})
        assert res.status_code == 404
        assert res.get_json()["error"] == "ExportJob not found"

    def test_worker_callbacks_need_service_key(self, client):
        job = _job()
        res = client.post(f"/api/export/jobs/{job.id}/claim",
                          headers={"Authorization": "Bearer wrong"})
        assert res.status_code == 401
        assert job.status == "pending"

    def test_full_worker_flow_and_download(self, app, client, service_headers, tmp_path,
                                           monkeypatch):
        monkeypatch.setitem(app.config, "EXPORT_STORAGE_DIR", str(tmp_path))
        (tmp_path / "dev-user").mkdir()
        (tmp_path / "dev-user" / "inv.xlsx").write_bytes(b"PK\x03\x04workbook")

        job_id = client.post("/api/export/request", json={}).get_json()["jobId"]
        assert client.post(f"/api/export/jobs/{job_id}/claim",
                           headers=service_headers).status_code == 200
        assert client.post(f"/api/export/jobs/{job_id}/claim",
                           headers=service_headers).status_code == 409
        res = client.post(f"/api/export/jobs/{job_id}/complete", headers=service_headers,
                          json={"file_path": "dev-user/inv.xlsx"})
        assert res.status_code == 200

        status = client.get(f"/api/export/status/{job_id}").get_json()
        assert status["status"] == "completed"
        download = client.get(status["downloadUrl"].replace("http://localhost", ""))
        assert download.status_code == 200
        assert download.data == b"PK\x03\x04workbook"
        assert "attachment" in download.headers["Content-Disposition"]

    def test_fail_callback_surfaces_message(self, client, service_headers):
        job = _job(status="processing")
        client.post(f"/api/export/jobs/{job.id}/fail", headers=service_headers,
                    json={"error_message": "No reagents to export"})
        res = client.get(f"/api/export/status/{job.id}")
        assert res.get_json() == {"status": "failed", "errorMessage": "No reagents to export"}

    @pytest.mark.parametrize("action, body", [
        ("complete", ["dev-user/inv.xlsx"]),
        ("complete", "dev-user/inv.xlsx"),
        ("fail", ["boom"]),
        ("fail", {"error_message": 42}),
    ])
    def test_callbacks_reject_non_object_bodies(self, client, service_headers, action, body):
        job = _job(status="processing")
        res = client.post(f"/api/export/jobs/{job.id}/{action}", headers=service_headers,
                          json=body)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"
        db.session.refresh(job)
        assert job.status == "processing"

    def test_bad_download_token(self, client):
        res = client.get("/api/export/download/garbage")
        assert res.status_code == 400
