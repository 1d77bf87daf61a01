"""
Tests — alert endpoints.

Covers:
    1. Digest trigger authorization (checked before any data access)
    2. Digest trigger JSON contract and idempotent same-day re-runs
    3. Internal failures → 500
    4. Dashboard alert feed and notification history
    5. Digest subscription opt-in / opt-out
    6. API-key auth on the dashboard routes
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from labstock.core.exceptions import DigestLoadError
from labstock.models.alerting import AlertNotification, ScheduledJob
from labstock.models import db

DIGEST_URL = "/api/alerts/send-digest"


# ═══════════════════════════════════════════════════════════════════════════
#  DIGEST TRIGGER: AUTHORIZATION
# ═══════════════════════════════════════════════════════════════════════════

class TestDigestAuthorization:

    @pytest.mark.parametrize("headers", [
        {},
        {"Authorization": "Bearer wrong"},
        {"Authorization": "test-cron-secret"},
        {"Authorization": "Basic test-cron-secret"},
        {"Authorization": "Bearer "},
    ])
    def test_rejected_without_valid_bearer(self, client, headers):
        with patch("labstock.blueprints.alerts_bp.SchedulerService.run_job") as run_job, \
             patch("labstock.services.inventory_store.InventoryStore.list_eligible_subscribers") as load:
            res = client.get(DIGEST_URL, headers=headers)
        assert res.status_code == 401
        assert res.get_json() == {"error": "Unauthorized"}
        run_job.assert_not_called()
        load.assert_not_called()

    def test_unset_secret_rejects_everything(self, app, client, monkeypatch):
        monkeypatch.setitem(app.config, "CRON_SECRET", None)
        res = client.get(DIGEST_URL, headers={"Authorization": "Bearer None"})
        assert res.status_code == 401

    def test_rejection_has_no_side_effects(self, client, make_profile, make_reagent):
        make_profile()
        make_reagent(total_quantity=0)
        client.get(DIGEST_URL, headers={"Authorization": "Bearer nope"})
        assert AlertNotification.query.count() == 0


# ═══════════════════════════════════════════════════════════════════════════
#  DIGEST TRIGGER: RUNS
# ═══════════════════════════════════════════════════════════════════════════

class TestDigestRun:

    def test_nothing_to_send(self, client, cron_headers):
        res = client.get(DIGEST_URL, headers=cron_headers)
        assert res.status_code == 200
        assert res.get_json() == {"success": True, "sent": 0, "totalAlerts": 0}

    def test_sends_and_records(self, client, cron_headers, make_profile, make_reagent,
                               make_lot, today):
        user = make_profile()
        make_profile(receive_email_alerts=False)
        low = make_reagent(total_quantity=2, minimum_stock=5)
        make_lot(low, expiry_date=today + timedelta(days=3))

        res = client.get(DIGEST_URL, headers=cron_headers)

        assert res.status_code == 200
        assert res.get_json() == {"success": True, "sent": 1, "totalAlerts": 2}
        records = AlertNotification.query.all()
        assert len(records) == 1
        assert records[0].user_id == user.id
        assert records[0].email_status == "sent"
        assert records[0].alert_summary == {
            "low_stock_count": 1, "out_of_stock_count": 0,
            "expired_count": 0, "expiring_soon_count": 1,
        }

    def test_second_call_same_day_sends_nothing(self, client, cron_headers, make_profile,
                                                make_reagent):
        make_profile()
        make_profile()
        make_reagent(total_quantity=0)

        first = client.get(DIGEST_URL, headers=cron_headers).get_json()
        second = client.get(DIGEST_URL, headers=cron_headers).get_json()

        assert first == {"success": True, "sent": 2, "totalAlerts": 1}
        assert second == {"success": True, "sent": 0, "totalAlerts": 1}
        assert AlertNotification.query.filter_by(email_status="sent").count() == 2

    def test_failed_send_recorded_and_others_delivered(self, app, client, cron_headers,
                                                       make_profile, make_reagent, monkeypatch):
        from labstock.core.exceptions import MailDeliveryError

        good = make_profile(email="good@lab.example")
        bad = make_profile(email="bad@lab.example")
        make_reagent(total_quantity=0)

        real_sender = app.extensions["mail_sender"]

        class FlakySender:
            def send(self, message):
                if message.to == "bad@lab.example":
                    raise MailDeliveryError("550 mailbox unavailable")
                return real_sender.send(message)

        monkeypatch.setitem(app.extensions, "mail_sender", FlakySender())
        res = client.get(DIGEST_URL, headers=cron_headers)

        assert res.get_json() == {"success": True, "sent": 1, "totalAlerts": 1}
        by_user = {r.user_id: r for r in AlertNotification.query.all()}
        assert by_user[good.id].email_status == "sent"
        assert by_user[bad.id].email_status == "failed"
        assert by_user[bad.id].error_message == "550 mailbox unavailable"

    def test_load_failure_is_500(self, client, cron_headers):
        with patch("labstock.services.inventory_store.InventoryStore.list_eligible_subscribers",
                   side_effect=DigestLoadError("boom")):
            res = client.get(DIGEST_URL, headers=cron_headers)
        assert res.status_code == 500
        assert res.get_json() == {"error": "Internal server error"}

    def test_already_running_is_409(self, client, cron_headers):
        from labstock.services.scheduler_service import SchedulerService
        SchedulerService._running.add("alert_digest")
        try:
            res = client.get(DIGEST_URL, headers=cron_headers)
        finally:
            SchedulerService._running.discard("alert_digest")
        assert res.status_code == 409

    def test_paused_job_sends_nothing(self, client, cron_headers, make_profile, make_reagent):
        make_profile()
        make_reagent(total_quantity=0)
        db.session.add(ScheduledJob(job_name="alert_digest", is_enabled=False, status="paused"))
        db.session.commit()

        res = client.get(DIGEST_URL, headers=cron_headers)

        assert res.status_code == 200
        assert res.get_json()["sent"] == 0
        assert AlertNotification.query.count() == 0

    def test_run_recorded_on_job(self, client, cron_headers):
        db.session.add(ScheduledJob(job_name="alert_digest"))
        db.session.commit()
        client.get(DIGEST_URL, headers=cron_headers)
        job = ScheduledJob.query.filter_by(job_name="alert_digest").first()
        db.session.refresh(job)
        assert job.run_count == 1
        assert job.last_run_status == "success"


# ═══════════════════════════════════════════════════════════════════════════
#  DASHBOARD FEED / HISTORY
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertFeed:

    def test_feed_items_and_counts(self, client, make_reagent, make_lot, today):
        out = make_reagent(total_quantity=0, reference="OUT-1")
        ok = make_reagent(total_quantity=100)
        make_lot(ok, expiry_date=today - timedelta(days=2))
        make_lot(ok, expiry_date=today + timedelta(days=5))
        make_lot(ok, expiry_date=today + timedelta(days=200))

        res = client.get("/api/v1/alerts")

        assert res.status_code == 200
        data = res.get_json()
        assert data["total"] == 3
        assert data["counts"] == {"out": 1, "expired": 1, "critical": 1}
        assert data["items"][0]["id"] == f"stock-{out.id}"
        assert data["items"][0]["filter"] == {"stock_status": "out", "search": "OUT-1"}

    def test_notification_history(self, client, make_profile):
        from labstock.services.inventory_store import InventoryStore
        user = make_profile()
        InventoryStore().record_notification(user_id=user.id, summary={}, status="failed",
                                             error_message="bounced")

        res = client.get(f"/api/v1/alerts/notifications?user_id={user.id}&status=failed")

        assert res.status_code == 200
        data = res.get_json()
        assert data["total"] == 1
        assert data["items"][0]["error_message"] == "bounced"

    def test_notification_history_bad_status(self, client):
        res = client.get("/api/v1/alerts/notifications?status=bogus")
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"


# ═══════════════════════════════════════════════════════════════════════════
#  SUBSCRIPTIONS
# ═══════════════════════════════════════════════════════════════════════════

class TestSubscriptions:

    def test_opt_in_makes_profile_a_digest_recipient(self, client, cron_headers,
                                                     make_profile, make_reagent):
        profile = make_profile(receive_email_alerts=False)
        make_reagent(total_quantity=0)

        res = client.patch(f"/api/v1/alerts/subscribers/{profile.id}",
                           json={"receive_email_alerts": True})

        assert res.status_code == 200
        assert res.get_json()["receive_email_alerts"] is True
        digest = client.get(DIGEST_URL, headers=cron_headers).get_json()
        assert digest["sent"] == 1

    def test_opt_out(self, client, make_profile):
        profile = make_profile()
        res = client.patch(f"/api/v1/alerts/subscribers/{profile.id}",
                           json={"receive_email_alerts": False})
        assert res.status_code == 200
        db.session.refresh(profile)
        assert profile.receive_email_alerts is False

    @pytest.mark.parametrize("body", [
        {},
        {"receive_email_alerts": "yes"},
        {"receive_email_alerts": 1},
        [True],
    ])
    def test_requires_boolean(self, client, make_profile, body):
        profile = make_profile(receive_email_alerts=False)
        res = client.patch(f"/api/v1/alerts/subscribers/{profile.id}", json=body)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"
        db.session.refresh(profile)
        assert profile.receive_email_alerts is False

    def test_unknown_profile(self, client):
        res = client.patch("/api/v1/alerts/subscribers/missing",
                           json={"receive_email_alerts": True})
        assert res.status_code == 404
        assert res.get_json()["error"] == "Profile not found"


class TestApiKeyAuth:

    @pytest.fixture()
    def auth_on(self, app, monkeypatch):
        monkeypatch.delenv("API_AUTH_ENABLED", raising=False)
        monkeypatch.setitem(app.config, "API_AUTH_ENABLED", "true")
        monkeypatch.setitem(app.config, "API_KEYS", "adm-key:admin:ops,usr-key:user:u-1")

    def test_missing_key(self, client, auth_on):
        assert client.get("/api/v1/alerts").status_code == 401

    def test_invalid_key(self, client, auth_on):
        assert client.get("/api/v1/alerts", headers={"X-API-Key": "nope"}).status_code == 401

    def test_user_can_read_feed(self, client, auth_on):
        assert client.get("/api/v1/alerts", headers={"X-API-Key": "usr-key"}).status_code == 200

    def test_user_cannot_read_history(self, client, auth_on):
        res = client.get("/api/v1/alerts/notifications", headers={"X-API-Key": "usr-key"})
        assert res.status_code == 403

    def test_admin_can_read_history(self, client, auth_on):
        res = client.get("/api/v1/alerts/notifications", headers={"X-API-Key": "adm-key"})
        assert res.status_code == 200

    def test_user_cannot_change_subscriptions(self, client, auth_on, make_profile):
        profile = make_profile(receive_email_alerts=False)
        res = client.patch(f"/api/v1/alerts/subscribers/{profile.id}",
                           json={"receive_email_alerts": True},
                           headers={"X-API-Key": "usr-key"})
        assert res.status_code == 403

    def test_health_is_public(self, client, auth_on):
        assert client.get("/api/v1/health").status_code == 200

    def test_cron_route_ignores_api_key(self, client, auth_on, cron_headers):
        assert client.get(DIGEST_URL, headers=cron_headers).status_code == 200
