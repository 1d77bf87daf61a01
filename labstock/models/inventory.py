"""
Lab Reagent Stock Management
Inventory domain models.

Models:
    - Reagent: catalog item tracked in inventory (not a physical batch)
    - Lot: dated batch of a reagent with its own quantity and expiry
    - Profile: platform user; subscribers are profiles opted into alert emails
"""

import uuid
from datetime import datetime, timezone

from labstock.models import db


# ── Constants ────────────────────────────────────────────────────────────────

UNITS = {"vials", "tests", "mL", "kits", "bottles", "boxes", "units", "strips"}
PROFILE_ROLES = {"admin", "user"}


class Reagent(db.Model):
    """
    Inventory item type.

    ``total_quantity`` is the sum over active lots and is maintained by
    stock operations; this service only reads it.
    """

    __tablename__ = "reagents"
    __table_args__ = (
        db.CheckConstraint("total_quantity >= 0", name="ck_reagent_total_quantity_nonneg"),
        db.CheckConstraint("minimum_stock >= 0", name="ck_reagent_minimum_stock_nonneg"),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    reference = db.Column(db.String(100), unique=True, nullable=False,
                          comment="Supplier catalog reference")
    description = db.Column(db.Text, default="")
    supplier = db.Column(db.String(200), default="")
    category = db.Column(db.String(50), default="reagent")
    unit = db.Column(db.String(20), default="units")
    total_quantity = db.Column(db.Integer, nullable=False, default=0)
    minimum_stock = db.Column(db.Integer, nullable=False, default=0)
    storage_location = db.Column(db.String(100), default="")
    storage_temperature = db.Column(db.String(50), default="")
    sector = db.Column(db.String(50), default="")
    machine = db.Column(db.String(50), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    lots = db.relationship("Lot", back_populates="reagent", lazy="select")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "reference": self.reference,
            "description": self.description,
            "supplier": self.supplier,
            "category": self.category,
            "unit": self.unit,
            "total_quantity": self.total_quantity,
            "minimum_stock": self.minimum_stock,
            "storage_location": self.storage_location,
            "storage_temperature": self.storage_temperature,
            "sector": self.sector,
            "machine": self.machine,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Reagent {self.reference}: {self.name[:40]}>"


class Lot(db.Model):
    """
    A batch of a reagent with its own expiry date.

    Lots with quantity 0 are depleted and never raise expiry alerts.
    """

    __tablename__ = "lots"
    __table_args__ = (
        db.UniqueConstraint("reagent_id", "lot_number", name="uq_lot_reagent_lot_number"),
        db.CheckConstraint("quantity >= 0", name="ck_lot_quantity_nonneg"),
    )

    id = db.Column(db.Integer, primary_key=True)
    reagent_id = db.Column(db.Integer, db.ForeignKey("reagents.id", ondelete="CASCADE"),
                           nullable=False, index=True)
    lot_number = db.Column(db.String(100), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    expiry_date = db.Column(db.Date, nullable=True, index=True)
    date_of_reception = db.Column(db.Date, nullable=True)
    shelf_life_days = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    reagent = db.relationship("Reagent", back_populates="lots")

    def to_dict(self):
        return {
            "id": self.id,
            "reagent_id": self.reagent_id,
            "lot_number": self.lot_number,
            "quantity": self.quantity,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "date_of_reception": self.date_of_reception.isoformat() if self.date_of_reception else None,
            "shelf_life_days": self.shelf_life_days,
            "is_active": self.is_active,
            "reagent": {
                "id": self.reagent.id,
                "name": self.reagent.name,
                "reference": self.reagent.reference,
                "unit": self.reagent.unit,
            } if self.reagent else None,
        }

    def __repr__(self):
        return f"<Lot {self.lot_number} qty={self.quantity} exp={self.expiry_date}>"


class Profile(db.Model):
    """
    Platform user profile.

    A profile with ``is_active`` and ``receive_email_alerts`` set is an
    eligible subscriber of the daily alert digest.
    """

    __tablename__ = "profiles"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = db.Column(db.String(255), unique=True, nullable=False)
    full_name = db.Column(db.String(150), nullable=True)
    role = db.Column(db.String(20), default="user", comment="admin, user")
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    receive_email_alerts = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "is_active": self.is_active,
            "receive_email_alerts": self.receive_email_alerts,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Profile {self.email} alerts={self.receive_email_alerts}>"
