"""
Lab Reagent Stock Management
Scheduled Jobs.

Concrete job implementations that run on a schedule.

Jobs:
    - alert_digest: Sends the daily inventory alert digest to subscribers
    - export_job_sweep: Fails export jobs the worker never finished
"""

from __future__ import annotations

import logging
from typing import Any

from labstock.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


@register_job("alert_digest")
def run_alert_digest(app) -> dict[str, Any]:
    """Send the daily inventory alert digest (once per subscriber per UTC day)."""
    from labstock.services.digest_service import build_dispatcher

    result = build_dispatcher(app).run_digest()
    return {
        "sent": result.sent,
        "total_alerts": result.total_alerts,
        "skipped": result.skipped,
        "failed": result.failed,
    }


@register_job("export_job_sweep")
def sweep_export_jobs(app) -> dict[str, Any]:
    """Mark export jobs stuck in pending/processing as failed."""
    from labstock.services.export_service import sweep_stale_jobs

    max_age = app.config.get("EXPORT_STALE_MINUTES", 30)
    return {"timed_out": sweep_stale_jobs(max_age)}
