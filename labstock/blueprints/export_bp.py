"""
Inventory spreadsheet export endpoints.

User routes (API key, caller id from g.current_user_id):
    POST /api/export/request                  202 {success, jobId}
    GET  /api/export/status/<job_id>          {status, downloadUrl | errorMessage}

Worker callbacks (bearer EXPORT_SERVICE_KEY):
    POST /api/export/jobs/<job_id>/claim
    POST /api/export/jobs/<job_id>/complete   {"file_path": "..."}
    POST /api/export/jobs/<job_id>/fail       {"error_message": "..."}

Signed download (token from the status response):
    GET  /api/export/download/<token>
"""

import functools
import logging

from flask import Blueprint, current_app, jsonify, request, send_from_directory

from labstock.auth import bearer_token_matches, current_user_id
from labstock.core.exceptions import ValidationError
from labstock.services import export_service

logger = logging.getLogger(__name__)

export_bp = Blueprint("export", __name__, url_prefix="/api/export")


def require_service_key(f):
    """Decorator: worker callbacks must carry the export service key."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if not bearer_token_matches(current_app.config.get("EXPORT_SERVICE_KEY")):
            return jsonify({"error": "Unauthorized"}), 401
        return f(*args, **kwargs)
    return decorated


def _json_object() -> dict:
    """Request body as a dict; a missing body is empty, any other non-object is rejected."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _user_id_or_401():
    user_id = current_user_id()
    if not user_id:
        return None, (jsonify({"error": "Unauthorized"}), 401)
    return user_id, None


# ═══════════════════════════════════════════════════════════════════════════
#  USER ROUTES
# ═══════════════════════════════════════════════════════════════════════════

@export_bp.route("/request", methods=["POST"])
def request_export():
    user_id, error = _user_id_or_401()
    if error:
        return error

    options = export_service.validate_export_options(request.get_json(silent=True))
    job = export_service.request_export(user_id, options)
    return jsonify({"success": True, "jobId": job.id}), 202


@export_bp.route("/status/<job_id>", methods=["GET"])
def export_status(job_id):
    user_id, error = _user_id_or_401()
    if error:
        return error
    return jsonify(export_service.get_export_status(job_id, user_id))


# ═══════════════════════════════════════════════════════════════════════════
#  WORKER CALLBACKS
# ═══════════════════════════════════════════════════════════════════════════

@export_bp.route("/jobs/<job_id>/claim", methods=["POST"])
@require_service_key
def claim_job(job_id):
    job = export_service.claim_job(job_id)
    return jsonify({"success": True, "job": job.to_dict()})


@export_bp.route("/jobs/<job_id>/complete", methods=["POST"])
@require_service_key
def complete_job(job_id):
    data = _json_object()
    job = export_service.complete_job(job_id, data.get("file_path"))
    return jsonify({"success": True, "job": job.to_dict()})


@export_bp.route("/jobs/<job_id>/fail", methods=["POST"])
@require_service_key
def fail_job(job_id):
    data = _json_object()
    job = export_service.fail_job(job_id, data.get("error_message"))
    return jsonify({"success": True, "job": job.to_dict()})


# ═══════════════════════════════════════════════════════════════════════════
#  SIGNED DOWNLOAD
# ═══════════════════════════════════════════════════════════════════════════

@export_bp.route("/download/<token>", methods=["GET"])
def download_export(token):
    file_path = export_service.resolve_download_token(token)
    return send_from_directory(
        current_app.config["EXPORT_STORAGE_DIR"], file_path, as_attachment=True,
    )
