"""
Lab Reagent Stock Management
Inventory export jobs.

The workbook is produced by an external worker. This module owns the job
record and its lifecycle:

    request_export        → pending (worker triggered fire-and-forget)
    claim_job             pending → processing
    complete_job          processing → completed (+ file_path)
    fail_job              pending | processing → failed (+ error_message)
    sweep_stale_jobs      old pending | processing → failed ("Export timed out")

Completed jobs are downloaded through a signed, time-limited token
(itsdangerous) rather than a public path.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from flask import current_app, url_for
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy import select

from labstock.core.exceptions import ConflictError, NotFoundError, ValidationError
from labstock.integrations.export_worker_gateway import ExportWorkerGateway
from labstock.models import db
from labstock.models.export import EXPORT_OPEN_STATUSES, ExportJob

logger = logging.getLogger(__name__)

EXPORT_OPTION_DEFAULTS = {
    "include_empty_lots": True,
    "include_expired_lots": True,
}
STALE_JOB_MESSAGE = "Export timed out"
_TOKEN_SALT = "labstock-export-download"


# ═══════════════════════════════════════════════════════════════════════════
#  Request / status
# ═══════════════════════════════════════════════════════════════════════════

def validate_export_options(data) -> dict:
    """Return a complete options dict; missing flags default to True."""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Export options must be a JSON object")

    options = {}
    errors = {}
    for key, default in EXPORT_OPTION_DEFAULTS.items():
        value = data.get(key, default)
        if not isinstance(value, bool):
            errors[key] = "must be a boolean"
            continue
        options[key] = value
    if errors:
        field = next(iter(errors))
        raise ValidationError(f"{field} {errors[field]}", details=errors)
    return options


def request_export(user_id: str, options: dict, *, gateway: ExportWorkerGateway | None = None) -> ExportJob:
    """Create a pending export job and trigger the worker without waiting."""
    job = ExportJob(user_id=user_id, status="pending", options=options)
    db.session.add(job)
    db.session.commit()
    logger.info("Export job %s requested by %s", job.id, user_id)

    gateway = gateway or ExportWorkerGateway.from_config(current_app.config)
    gateway.notify_async(job.id)
    return job


def get_export_job(job_id: str, user_id: str | None = None) -> ExportJob:
    """Load a job; when ``user_id`` is given, other users' jobs are not found."""
    job = db.session.get(ExportJob, job_id)
    if job is None or (user_id is not None and job.user_id != user_id):
        raise NotFoundError(resource="ExportJob", resource_id=job_id)
    return job


def get_export_status(job_id: str, user_id: str) -> dict:
    job = get_export_job(job_id, user_id)
    if job.status == "completed" and job.file_path:
        token = make_download_token(job)
        return {
            "status": job.status,
            "downloadUrl": url_for("export.download_export", token=token, _external=True),
        }
    return {"status": job.status, "errorMessage": job.error_message}


# ═══════════════════════════════════════════════════════════════════════════
#  Worker callbacks
# ═══════════════════════════════════════════════════════════════════════════

def _transition(job_id: str, allowed_from: set[str], new_status: str) -> ExportJob:
    job = get_export_job(job_id)
    if job.status not in allowed_from:
        raise ConflictError(resource="ExportJob", field="status", value=job.status)
    job.status = new_status
    return job


def claim_job(job_id: str) -> ExportJob:
    """Only pending jobs can be claimed, so a job is processed once."""
    job = _transition(job_id, {"pending"}, "processing")
    db.session.commit()
    logger.info("Export job %s claimed", job_id)
    return job


def complete_job(job_id: str, file_path: str) -> ExportJob:
    if not file_path or not isinstance(file_path, str):
        raise ValidationError("file_path is required")
    job = _transition(job_id, {"processing"}, "completed")
    job.file_path = file_path
    job.completed_at = datetime.now(timezone.utc)
    db.session.commit()
    logger.info("Export job %s completed: %s", job_id, file_path)
    return job


def fail_job(job_id: str, message: str | None) -> ExportJob:
    if message is not None and not isinstance(message, str):
        raise ValidationError("error_message must be a string")
    job = _transition(job_id, EXPORT_OPEN_STATUSES, "failed")
    job.error_message = message or "Export failed"
    job.completed_at = datetime.now(timezone.utc)
    db.session.commit()
    logger.warning("Export job %s failed: %s", job_id, job.error_message)
    return job


def sweep_stale_jobs(max_age_minutes: int, *, now: datetime | None = None) -> int:
    """Fail open jobs created more than ``max_age_minutes`` ago. Returns the count."""
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=max_age_minutes)
    stale = db.session.scalars(
        select(ExportJob).where(
            ExportJob.status.in_(EXPORT_OPEN_STATUSES),
            ExportJob.created_at < cutoff,
        )
    ).all()
    for job in stale:
        job.status = "failed"
        job.error_message = STALE_JOB_MESSAGE
        job.completed_at = now
    if stale:
        db.session.commit()
        logger.warning("Marked %d stale export job(s) as failed", len(stale))
    return len(stale)


# ═══════════════════════════════════════════════════════════════════════════
#  Signed downloads
# ═══════════════════════════════════════════════════════════════════════════

def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=_TOKEN_SALT)


def make_download_token(job: ExportJob) -> str:
    return _serializer().dumps({"job": job.id, "path": job.file_path})


def resolve_download_token(token: str) -> str:
    """Return the stored file path for a valid token.

    Raises:
        ValidationError: bad signature, expired token, or the job no longer
            matches the token.
    """
    max_age = current_app.config.get("EXPORT_URL_MAX_AGE", 3600)
    try:
        payload = _serializer().loads(token, max_age=max_age)
    except SignatureExpired as exc:
        raise ValidationError("Download link has expired") from exc
    except BadSignature as exc:
        raise ValidationError("Invalid download link") from exc

    job = db.session.get(ExportJob, payload.get("job"))
    if job is None or job.status != "completed" or job.file_path != payload.get("path"):
        raise ValidationError("Invalid download link")
    return job.file_path
