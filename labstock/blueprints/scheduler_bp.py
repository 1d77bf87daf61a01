"""
Scheduler operator endpoints (admin role).

    GET   /api/v1/scheduler/jobs              registered jobs + run history
    GET   /api/v1/scheduler/jobs/<name>       one job record
    POST  /api/v1/scheduler/jobs/<name>/run   run a job now
    PATCH /api/v1/scheduler/jobs/<name>       {"is_enabled": bool}
"""

import logging

from flask import Blueprint, jsonify, request

from labstock.auth import require_role
from labstock.services.scheduler_service import SchedulerService, get_registered_jobs
from labstock.utils.errors import E, api_error

logger = logging.getLogger(__name__)

scheduler_bp = Blueprint("scheduler", __name__, url_prefix="/api/v1/scheduler")


@scheduler_bp.route("/jobs", methods=["GET"])
@require_role("admin")
def list_jobs():
    jobs = SchedulerService.list_jobs()
    return jsonify({"jobs": jobs, "total": len(jobs)})


@scheduler_bp.route("/jobs/<job_name>", methods=["GET"])
@require_role("admin")
def get_job(job_name):
    if job_name not in get_registered_jobs():
        return api_error(E.NOT_FOUND, f"Job '{job_name}' not found")
    return jsonify({
        "job_name": job_name,
        "running": SchedulerService.is_running(job_name),
        "db_record": SchedulerService.get_job_status(job_name),
    })


@scheduler_bp.route("/jobs/<job_name>/run", methods=["POST"])
@require_role("admin")
def run_job(job_name):
    """Manually trigger a scheduled job."""
    if job_name not in get_registered_jobs():
        return api_error(E.NOT_FOUND, f"Job '{job_name}' not found")

    logger.info("Manual run of %s requested", job_name, extra={"job_name": job_name})
    result = SchedulerService.run_job(job_name)
    if result["status"] == "skipped":
        return jsonify(result), 409
    return jsonify(result)


@scheduler_bp.route("/jobs/<job_name>", methods=["PATCH"])
@require_role("admin")
def toggle_job(job_name):
    """Enable or disable a scheduled job."""
    data = request.get_json(silent=True) or {}
    enabled = data.get("is_enabled")
    if not isinstance(enabled, bool):
        return api_error(E.VALIDATION_REQUIRED, "'is_enabled' field is required (true/false)")

    result = SchedulerService.toggle_job(job_name, enabled)
    if not result:
        return api_error(E.NOT_FOUND, f"Job '{job_name}' not found")
    return jsonify(result)
