"""
Inventory alert endpoints.

Cron trigger (bearer CRON_SECRET, no API key):
    GET /api/alerts/send-digest           run the daily alert digest

Dashboard / operator (API key):
    GET /api/v1/alerts                    current alert cards + counts
    GET /api/v1/alerts/notifications      digest delivery history (admin)
    PATCH /api/v1/alerts/subscribers/<id> opt a profile in/out of the digest (admin)
"""

import logging
from collections import Counter

from flask import Blueprint, current_app, jsonify, request

from labstock.auth import bearer_token_matches, require_role
from labstock.blueprints import parse_limit
from labstock.core.exceptions import ValidationError
from labstock.models.alerting import EMAIL_STATUSES
from labstock.services.alert_classifier import build_alert_feed
from labstock.services.digest_service import utc_today
from labstock.services.inventory_store import InventoryStore
from labstock.services.scheduler_service import SchedulerService
from labstock.utils.errors import E, api_error

logger = logging.getLogger(__name__)

alerts_cron_bp = Blueprint("alerts_cron", __name__, url_prefix="/api/alerts")
alerts_bp = Blueprint("alerts", __name__, url_prefix="/api/v1/alerts")


# ═══════════════════════════════════════════════════════════════════════════
#  CRON TRIGGER
# ═══════════════════════════════════════════════════════════════════════════

@alerts_cron_bp.route("/send-digest", methods=["GET"])
def send_digest():
    """Run the daily digest. Authorization is checked before any data access."""
    if not bearer_token_matches(current_app.config.get("CRON_SECRET")):
        logger.warning("Rejected digest trigger from %s", request.remote_addr)
        return jsonify({"error": "Unauthorized"}), 401

    if not SchedulerService.is_enabled("alert_digest"):
        logger.info("Digest trigger ignored: alert_digest is paused")
        return jsonify({"success": True, "sent": 0, "totalAlerts": 0, "paused": True}), 200

    run = SchedulerService.run_job("alert_digest")
    if run["status"] == "skipped":
        return jsonify({"error": "Digest already running"}), 409
    if run["status"] != "success":
        # Traceback already logged by the scheduler
        return jsonify({"error": "Internal server error"}), 500

    result = run["result"]
    return jsonify({
        "success": True,
        "sent": result["sent"],
        "totalAlerts": result["total_alerts"],
    }), 200


# ═══════════════════════════════════════════════════════════════════════════
#  DASHBOARD FEED
# ═══════════════════════════════════════════════════════════════════════════

@alerts_bp.route("", methods=["GET"])
def list_alerts():
    """Current stock and expiry alerts across all active inventory."""
    store = InventoryStore()
    items = build_alert_feed(
        store.list_active_reagents(),
        store.list_active_lots(),
        utc_today(),
        critical_days=current_app.config.get("ALERT_CRITICAL_DAYS", 7),
        warning_days=current_app.config.get("ALERT_WARNING_DAYS", 30),
    )
    counts = Counter(item["type"] for item in items)
    return jsonify({"items": items, "total": len(items), "counts": dict(counts)})


@alerts_bp.route("/notifications", methods=["GET"])
@require_role("admin")
def list_notifications():
    """Digest delivery history, newest first."""
    status = request.args.get("status")
    if status and status not in EMAIL_STATUSES:
        return api_error(E.VALIDATION_INVALID,
                         f"Invalid status. Must be one of: {sorted(EMAIL_STATUSES)}")

    records = InventoryStore().list_notifications(
        user_id=request.args.get("user_id") or None,
        status=status,
        limit=parse_limit(),
    )
    return jsonify({
        "items": [r.to_dict() for r in records],
        "total": len(records),
    })


# ═══════════════════════════════════════════════════════════════════════════
#  SUBSCRIPTIONS
# ═══════════════════════════════════════════════════════════════════════════

@alerts_bp.route("/subscribers/<user_id>", methods=["PATCH"])
@require_role("admin")
def update_subscription(user_id):
    """Opt a profile in or out of the daily digest email."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not isinstance(data.get("receive_email_alerts"), bool):
        raise ValidationError(
            "receive_email_alerts must be a boolean",
            details={"receive_email_alerts": "must be a boolean"},
        )
    profile = InventoryStore().set_email_alerts(user_id, data["receive_email_alerts"])
    return jsonify(profile.to_dict())
