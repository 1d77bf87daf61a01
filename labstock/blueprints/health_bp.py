"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        — simple 200 for load balancers
    GET /api/v1/health/ready  — readiness including database round-trip
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from labstock.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def health():
    """Liveness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Readiness probe with database and mail provider status."""
    checks = {}
    overall = True

    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    sender = current_app.extensions.get("mail_sender")
    checks["mail"] = {
        "provider": sender.provider if sender else None,
        "status": "ok" if sender and sender.is_configured() else "log_only",
    }
    checks["cron_secret"] = {
        "status": "ok" if current_app.config.get("CRON_SECRET") else "missing",
    }

    status_code = 200 if overall else 503
    return jsonify({"status": "ok" if overall else "degraded", "checks": checks}), status_code
