"""
Lab Reagent Stock Management
Alerting & scheduling models.

Models:
    - AlertNotification: one digest send attempt per subscriber (dedup source)
    - ScheduledJob: persisted schedule registry (run history + config)
"""

from datetime import datetime, timezone

from labstock.models import db


# ── Constants ────────────────────────────────────────────────────────────────

EMAIL_STATUSES = {"sent", "failed"}
JOB_STATUSES = {"active", "paused"}


class AlertNotification(db.Model):
    """
    Record of one digest delivery attempt.

    Immutable after insert. Only ``email_status='sent'`` rows count for the
    once-per-UTC-day dedup check; ``failed`` rows keep the subscriber eligible.
    """

    __tablename__ = "alert_notifications"
    __table_args__ = (
        db.Index("ix_alertnotif_user_status_sent", "user_id", "email_status", "sent_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(36), db.ForeignKey("profiles.id", ondelete="CASCADE"),
                        nullable=False)
    alert_summary = db.Column(db.JSON, default=dict,
                              comment="low/out/expired/expiring-soon counts")
    email_status = db.Column(db.String(20), nullable=False,
                             comment="sent, failed")
    error_message = db.Column(db.Text, nullable=True)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=False,
                        default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "alert_summary": self.alert_summary,
            "email_status": self.email_status,
            "error_message": self.error_message,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
        }

    def __repr__(self):
        return f"<AlertNotification {self.id}: {self.user_id} [{self.email_status}]>"


class ScheduledJob(db.Model):
    """
    Registry of scheduled background jobs.

    Tracks job configuration, last run time, and run history.
    """

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False,
                         comment="Unique job identifier: alert_digest, export_job_sweep")
    description = db.Column(db.String(500), default="")
    schedule_type = db.Column(db.String(30), default="cron",
                              comment="cron, interval")
    schedule_config = db.Column(db.JSON, default=dict)
    status = db.Column(db.String(20), default="active",
                       comment="active, paused")
    is_enabled = db.Column(db.Boolean, default=True)

    # Execution tracking
    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True,
                                comment="success, failed, skipped")
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True)
    run_count = db.Column(db.Integer, default=0)
    error_count = db.Column(db.Integer, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def record_run(self, *, status="success", duration_ms=0, result=None, error=None):
        """Record a job execution."""
        self.last_run_at = datetime.now(timezone.utc)
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        self.run_count = (self.run_count or 0) + 1
        if status == "failed":
            self.error_count = (self.error_count or 0) + 1
            self.last_error = str(error) if error else None

    def to_dict(self):
        return {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "schedule_type": self.schedule_type,
            "schedule_config": self.schedule_config,
            "status": self.status,
            "is_enabled": self.is_enabled,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run_status": self.last_run_status,
            "last_run_duration_ms": self.last_run_duration_ms,
            "last_run_result": self.last_run_result,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} [{self.status}]>"
