"""
Lab Reagent Stock Management
Daily Alert Digest.

One run:
    1. load eligible subscribers (none → nothing to do)
    2. load active reagents + expiring lots once, shared by every subscriber
    3. classify once
    4. no alerts → nothing to do
    5. per subscriber: dedup on today's "sent" record → render → send → record
    6. return ``{sent, totalAlerts}``

Delivery failures are isolated per subscriber and recorded as ``failed``;
a failed record does not block a re-send later the same day. A subscriber
whose dedup lookup fails is counted as failed and not sent to. Failures while
loading subscribers or inventory abort the run before anything is sent.

Collaborators (store, mail sender, renderer) are injected so the dispatcher
can be driven with fakes in tests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from labstock.core.exceptions import DigestLoadError, PersistenceError
from labstock.services.alert_classifier import WARNING_DAYS, partition_alerts
from labstock.services.email_service import MailMessage

logger = logging.getLogger(__name__)


@dataclass
class DigestResult:
    sent: int = 0
    total_alerts: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return {"success": True, "sent": self.sent, "totalAlerts": self.total_alerts}


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def utc_day_start(day: date) -> datetime:
    """Midnight UTC at the start of ``day``."""
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


class DigestDispatcher:
    """Runs the daily inventory alert digest."""

    def __init__(self, store, mail_sender, renderer, *, warning_days: int = WARNING_DAYS) -> None:
        self.store = store
        self.mail_sender = mail_sender
        self.renderer = renderer
        self.warning_days = warning_days

    def run_digest(self, today: date | None = None) -> DigestResult:
        today = today or utc_today()
        result = DigestResult()

        try:
            subscribers = self.store.list_eligible_subscribers()
        except Exception as exc:
            raise DigestLoadError(f"Could not load subscribers: {exc}") from exc

        if not subscribers:
            logger.info("Alert digest: no subscribers")
            return result

        try:
            reagents = self.store.list_active_reagents()
            lots = self.store.list_expiring_lots(today + timedelta(days=self.warning_days))
        except Exception as exc:
            raise DigestLoadError(f"Could not load alert data: {exc}") from exc

        partition = partition_alerts(reagents, lots, today, warning_days=self.warning_days)
        if partition.total == 0:
            logger.info("Alert digest: no alerts to send (%d subscribers)", len(subscribers))
            return result

        result.total_alerts = partition.total
        summary = partition.summary()
        subject = self.renderer.subject(partition.total)
        since = utc_day_start(today)

        for user in subscribers:
            try:
                already_sent = self.store.has_sent_notification_since(user.id, since)
            except Exception as exc:
                # Unknown dedup state: do not send, retry on the next run
                result.failed += 1
                logger.error("Alert digest: dedup check failed for %s: %s", user.email, exc,
                             extra={"profile_id": user.id})
                continue
            if already_sent:
                result.skipped += 1
                logger.debug("Alert digest: %s already served today", user.email)
                continue

            if self._deliver(user, partition, summary, subject, today):
                result.sent += 1
            else:
                result.failed += 1

        logger.info(
            "Alert digest: sent=%d skipped=%d failed=%d total_alerts=%d",
            result.sent, result.skipped, result.failed, result.total_alerts,
        )
        return result

    def _deliver(self, user, partition, summary: dict, subject: str, today: date) -> bool:
        """Send to one subscriber and record the outcome. True only when a
        ``sent`` record was persisted."""
        try:
            message = MailMessage(
                to=user.email,
                subject=subject,
                html=self.renderer.html(user.full_name, partition, today),
                text=self.renderer.text(user.full_name, partition, today),
            )
            self.mail_sender.send(message)
        except Exception as exc:
            logger.error("Failed to send alert digest to %s: %s", user.email, exc,
                         extra={"profile_id": user.id})
            try:
                self.store.record_notification(
                    user_id=user.id, summary=summary, status="failed",
                    error_message=str(exc) or exc.__class__.__name__,
                )
            except PersistenceError:
                pass  # already logged by the store
            return False

        try:
            self.store.record_notification(user_id=user.id, summary=summary, status="sent")
        except PersistenceError:
            logger.error("Digest delivered to %s but the sent record was not saved", user.email,
                         extra={"profile_id": user.id})
            return False
        return True


def build_dispatcher(app) -> DigestDispatcher:
    """Wire a dispatcher from app config and the app's registered mail sender."""
    from labstock.services.email_service import MailSender
    from labstock.services.email_templates import DigestRenderer
    from labstock.services.inventory_store import InventoryStore

    mail_sender = app.extensions.get("mail_sender") or MailSender.from_config(app.config)
    return DigestDispatcher(
        InventoryStore(),
        mail_sender,
        DigestRenderer.from_config(app.config),
        warning_days=app.config.get("ALERT_WARNING_DAYS", WARNING_DAYS),
    )
