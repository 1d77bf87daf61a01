"""
Lab Reagent Stock Management
Scheduler Service.

Job registry plus a manual/cron-triggered runner. There is no in-process
clock: an external scheduler (cron, platform scheduler) calls the trigger
endpoints, and jobs can be run by hand via the scheduler API.

Architecture:
    - SchedulerService: Manages job registration and execution
    - Jobs are stored in ScheduledJob model for persistence
    - Pluggable job functions registered via decorator
    - A job already running in this process is not started again
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from flask import Flask

from labstock.models import db
from labstock.models.alerting import ScheduledJob

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("alert_digest")
        def run_alert_digest(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    """Return all registered job functions."""
    return dict(_job_registry)


class SchedulerService:
    """
    Lightweight scheduler service.

    Manages job registration, persistence, and execution.
    Jobs are executed within Flask app context.
    """

    _app: Flask | None = None
    _lock = threading.Lock()
    _running: set[str] = set()

    @classmethod
    def init_app(cls, app: Flask) -> None:
        """Initialize scheduler with Flask app context."""
        # Importing registers the jobs.
        from labstock.services import scheduled_jobs  # noqa: F401

        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs",
                    len(_job_registry))

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """
        Ensure all registered jobs have a corresponding DB record.
        Creates missing records with default config.
        """
        if not cls._app:
            return []

        created = []
        with cls._app.app_context():
            for name, fn in _job_registry.items():
                if ScheduledJob.query.filter_by(job_name=name).first():
                    continue
                schedule = get_default_schedule(name)
                job = ScheduledJob(
                    job_name=name,
                    description=(fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0],
                    schedule_type=schedule.get("type", "cron"),
                    schedule_config=schedule,
                    status="active",
                    is_enabled=True,
                )
                db.session.add(job)
                created.append(job)
            if created:
                db.session.commit()
                logger.info("Created %d scheduled job records", len(created))
        return created

    @classmethod
    def is_running(cls, job_name: str) -> bool:
        with cls._lock:
            return job_name in cls._running

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute a single job by name.

        Returns:
            Dict with status (success | failed | skipped | error),
            duration_ms, result or error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"status": "error", "error": f"Unknown job: {job_name}"}

        if not cls._app:
            return {"status": "error", "error": "Scheduler not initialized"}

        with cls._lock:
            if job_name in cls._running:
                logger.warning("Job %s is already running, skipping", job_name,
                               extra={"job_name": job_name})
                return {"job_name": job_name, "status": "skipped", "duration_ms": 0,
                        "result": None, "error": "Job already running"}
            cls._running.add(job_name)

        start = time.monotonic()
        result = None
        error = None
        status = "success"

        try:
            with cls._app.app_context():
                result = fn(cls._app)
        except Exception as exc:
            status = "failed"
            error = str(exc)
            logger.exception("Job %s failed: %s", job_name, exc, extra={"job_name": job_name})
        finally:
            with cls._lock:
                cls._running.discard(job_name)

        duration_ms = int((time.monotonic() - start) * 1000)
        cls._record_run(job_name, status, duration_ms, result, error)

        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def _record_run(cls, job_name: str, status: str, duration_ms: int, result, error) -> None:
        try:
            with cls._app.app_context():
                job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
                if job_record:
                    job_record.record_run(
                        status=status,
                        duration_ms=duration_ms,
                        result=result if isinstance(result, dict) else {"output": str(result)},
                        error=error,
                    )
                    db.session.commit()
        except Exception:
            logger.exception("Failed to update job record for %s", job_name)

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """List all registered jobs with their DB status."""
        jobs = []
        for name in _job_registry:
            job_record = ScheduledJob.query.filter_by(job_name=name).first()
            jobs.append({
                "job_name": name,
                "registered": True,
                "running": cls.is_running(name),
                "default_schedule": get_default_schedule(name),
                "db_record": job_record.to_dict() if job_record else None,
            })
        return jobs

    @classmethod
    def get_job_status(cls, job_name: str) -> dict | None:
        """Get status of a specific job."""
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if job_record:
            return job_record.to_dict()
        return None

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        """Enable or disable a scheduled job."""
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if not job_record:
            return None
        job_record.is_enabled = enabled
        job_record.status = "active" if enabled else "paused"
        db.session.commit()
        return job_record.to_dict()

    @classmethod
    def is_enabled(cls, job_name: str) -> bool:
        """Jobs without a DB record are treated as enabled."""
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        return job_record is None or bool(job_record.is_enabled)


def get_default_schedule(job_name: str) -> dict:
    """Return default schedule config for known job types."""
    defaults = {
        "alert_digest": {"type": "cron", "hour": "7", "minute": "0",
                         "description": "Daily at 07:00 UTC"},
        "export_job_sweep": {"type": "interval", "minutes": 15,
                             "description": "Every 15 minutes"},
    }
    return defaults.get(job_name, {"type": "cron", "hour": "0", "minute": "0",
                                   "description": "Daily at midnight"})
