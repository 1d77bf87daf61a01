"""
Lab Reagent Stock Management
Spreadsheet export job model.

The workbook itself is produced by an external worker; this record is the
hand-off point between the request, the worker callbacks and status polling.
"""

import uuid
from datetime import datetime, timezone

from labstock.models import db


# ── Constants ────────────────────────────────────────────────────────────────

EXPORT_STATUSES = {"pending", "processing", "completed", "failed"}
EXPORT_OPEN_STATUSES = {"pending", "processing"}


class ExportJob(db.Model):
    """Inventory export job: pending → processing → completed | failed."""

    __tablename__ = "export_jobs"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(150), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default="pending",
                       comment="pending, processing, completed, failed")
    options = db.Column(db.JSON, default=dict,
                        comment="include_empty_lots, include_expired_lots")
    file_path = db.Column(db.String(500), nullable=True)
    error_message = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def is_open(self) -> bool:
        return self.status in EXPORT_OPEN_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status,
            "options": self.options,
            "file_path": self.file_path,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self):
        return f"<ExportJob {self.id} [{self.status}]>"
