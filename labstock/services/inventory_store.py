"""
Lab Reagent Stock Management
Inventory Store — SQLAlchemy-backed reads and notification writes used by
the alert digest and the dashboard alert feed.

All methods run in the current Flask app context / ``db.session``.

Reads return frozen records rather than ORM rows. A digest run commits one
notification per subscriber, and committed sessions expire their rows, so
live rows would be reloaded from the database on every render.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from labstock.core.exceptions import NotFoundError, PersistenceError
from labstock.models import db
from labstock.models.alerting import AlertNotification
from labstock.models.inventory import Lot, Profile, Reagent

logger = logging.getLogger(__name__)


# ── Records ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SubscriberRecord:
    id: str
    email: str
    full_name: str | None

    @classmethod
    def from_row(cls, profile: Profile) -> "SubscriberRecord":
        return cls(id=profile.id, email=profile.email, full_name=profile.full_name)


@dataclass(frozen=True)
class ReagentRecord:
    id: int
    name: str
    reference: str
    unit: str
    total_quantity: int
    minimum_stock: int

    @classmethod
    def from_row(cls, reagent: Reagent) -> "ReagentRecord":
        return cls(
            id=reagent.id,
            name=reagent.name,
            reference=reagent.reference,
            unit=reagent.unit,
            total_quantity=reagent.total_quantity,
            minimum_stock=reagent.minimum_stock,
        )


@dataclass(frozen=True)
class LotRecord:
    id: int
    reagent_id: int
    lot_number: str
    quantity: int
    expiry_date: date | None
    reagent: ReagentRecord | None

    @classmethod
    def from_row(cls, lot: Lot) -> "LotRecord":
        return cls(
            id=lot.id,
            reagent_id=lot.reagent_id,
            lot_number=lot.lot_number,
            quantity=lot.quantity,
            expiry_date=lot.expiry_date,
            reagent=ReagentRecord.from_row(lot.reagent) if lot.reagent is not None else None,
        )


class InventoryStore:
    """Data-store collaborator of the digest dispatcher."""

    def __init__(self, session=None) -> None:
        self._session = session

    @property
    def session(self):
        return self._session or db.session

    # ── Reads ────────────────────────────────────────────────────────────

    def list_eligible_subscribers(self) -> list[SubscriberRecord]:
        """Active profiles with alert emails enabled."""
        stmt = (
            select(Profile)
            .where(Profile.is_active.is_(True), Profile.receive_email_alerts.is_(True))
            .order_by(Profile.created_at)
        )
        return [SubscriberRecord.from_row(p) for p in self.session.scalars(stmt)]

    def list_active_reagents(self) -> list[ReagentRecord]:
        stmt = select(Reagent).where(Reagent.is_active.is_(True)).order_by(Reagent.name)
        return [ReagentRecord.from_row(r) for r in self.session.scalars(stmt)]

    def list_expiring_lots(self, cutoff: date) -> list[LotRecord]:
        """Active, non-empty lots with an expiry on or before ``cutoff``.

        Includes already-expired lots. Parent reagent is eager-loaded.
        Ordered by expiry date ascending.
        """
        stmt = (
            select(Lot)
            .options(joinedload(Lot.reagent))
            .where(
                Lot.is_active.is_(True),
                Lot.quantity > 0,
                Lot.expiry_date.is_not(None),
                Lot.expiry_date <= cutoff,
            )
            .order_by(Lot.expiry_date.asc(), Lot.id.asc())
        )
        return [LotRecord.from_row(lot) for lot in self.session.scalars(stmt).unique()]

    def list_active_lots(self) -> list[LotRecord]:
        """Every active lot, for the dashboard alert feed."""
        stmt = (
            select(Lot)
            .options(joinedload(Lot.reagent))
            .where(Lot.is_active.is_(True))
            .order_by(Lot.expiry_date.asc(), Lot.id.asc())
        )
        return [LotRecord.from_row(lot) for lot in self.session.scalars(stmt).unique()]

    def has_sent_notification_since(self, user_id: str, since: datetime) -> bool:
        """True if a ``sent`` digest exists for the user at or after ``since``."""
        stmt = (
            select(AlertNotification.id)
            .where(
                AlertNotification.user_id == user_id,
                AlertNotification.email_status == "sent",
                AlertNotification.sent_at >= since,
            )
            .limit(1)
        )
        return self.session.execute(stmt).first() is not None

    def list_notifications(self, *, user_id: str | None = None, status: str | None = None,
                           limit: int = 50) -> list[AlertNotification]:
        """Most recent digest attempts first."""
        stmt = select(AlertNotification)
        if user_id:
            stmt = stmt.where(AlertNotification.user_id == user_id)
        if status:
            stmt = stmt.where(AlertNotification.email_status == status)
        stmt = stmt.order_by(AlertNotification.sent_at.desc(), AlertNotification.id.desc()).limit(limit)
        return list(self.session.scalars(stmt))

    # ── Writes ───────────────────────────────────────────────────────────

    def record_notification(self, *, user_id: str, summary: dict, status: str,
                            error_message: str | None = None) -> AlertNotification:
        """Insert and commit one notification record.

        Raises:
            PersistenceError: the insert or commit failed (session rolled back).
        """
        record = AlertNotification(
            user_id=user_id,
            alert_summary=dict(summary),
            email_status=status,
            error_message=error_message,
        )
        try:
            self.session.add(record)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("Failed to record %s notification for user %s", status, user_id)
            raise PersistenceError(str(exc)) from exc
        return record

    def set_email_alerts(self, user_id: str, enabled: bool) -> Profile:
        """Opt a profile in or out of the daily digest.

        Raises:
            NotFoundError: no profile with ``user_id``.
            PersistenceError: the update could not be committed.
        """
        profile = self.session.get(Profile, user_id)
        if profile is None:
            raise NotFoundError("Profile", user_id)
        profile.receive_email_alerts = enabled
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("Failed to update email alerts for user %s", user_id)
            raise PersistenceError(str(exc)) from exc
        logger.info("Email alerts %s for user %s", "enabled" if enabled else "disabled", user_id,
                    extra={"profile_id": user_id})
        return profile
