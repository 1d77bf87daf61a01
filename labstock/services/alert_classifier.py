"""
Lab Reagent Stock Management
Stock / expiry classification.

Pure functions, no database or Flask access. Inputs are any objects that
expose the relevant attributes (ORM rows, dataclasses, SimpleNamespace):

    reagent: id, name, reference, unit, total_quantity, minimum_stock
    lot:     id, lot_number, quantity, expiry_date, reagent (optional)

Thresholds:
    stock   out ⇔ q ≤ 0 · low ⇔ 0 < q ≤ minimum · ok otherwise
    expiry  expired ⇔ d < 0 · critical ⇔ 0 ≤ d ≤ 7 · warning ⇔ 7 < d ≤ 30 · ok
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Iterable

CRITICAL_DAYS = 7
WARNING_DAYS = 30


@dataclass(frozen=True)
class StockStatus:
    status: str      # ok | low | out
    color: str       # default | warning | error


@dataclass(frozen=True)
class ExpiryStatus:
    status: str                 # none | expired | critical | warning | ok
    days_until: int | None
    color: str


@dataclass
class AlertPartition:
    """Alert buckets shared by every subscriber of a digest run."""

    out_of_stock: list = field(default_factory=list)
    low_stock: list = field(default_factory=list)
    expired_lots: list = field(default_factory=list)
    expiring_soon_lots: list = field(default_factory=list)

    @property
    def total(self) -> int:
        return (len(self.out_of_stock) + len(self.low_stock)
                + len(self.expired_lots) + len(self.expiring_soon_lots))

    def summary(self) -> dict[str, int]:
        return {
            "low_stock_count": len(self.low_stock),
            "out_of_stock_count": len(self.out_of_stock),
            "expired_count": len(self.expired_lots),
            "expiring_soon_count": len(self.expiring_soon_lots),
        }


def to_date(value: Any) -> date | None:
    """Normalize a date, datetime or ISO string to a calendar date (time zeroed)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def classify_stock(quantity: int, minimum_stock: int) -> StockStatus:
    if quantity <= 0:
        return StockStatus("out", "error")
    if quantity <= minimum_stock:
        return StockStatus("low", "warning")
    return StockStatus("ok", "default")


def days_until(expiry_date: Any, today: Any) -> int:
    """Whole days from ``today`` to ``expiry_date``, rounded up."""
    delta = to_date(expiry_date) - to_date(today)
    return math.ceil(delta / timedelta(days=1))


def classify_expiry(expiry_date: Any, today: Any,
                    critical_days: int = CRITICAL_DAYS,
                    warning_days: int = WARNING_DAYS) -> ExpiryStatus:
    if to_date(expiry_date) is None:
        return ExpiryStatus("none", None, "default")

    days = days_until(expiry_date, today)
    if days < 0:
        return ExpiryStatus("expired", days, "error")
    if days <= critical_days:
        return ExpiryStatus("critical", days, "error")
    if days <= warning_days:
        return ExpiryStatus("warning", days, "warning")
    return ExpiryStatus("ok", days, "default")


def partition_alerts(reagents: Iterable, lots: Iterable, today: Any,
                     warning_days: int = WARNING_DAYS) -> AlertPartition:
    """Split reagents by stock status and lots by expiry.

    Reagent buckets and expired lots keep input order. Expiring-soon lots
    are sorted ascending by expiry date (stable for equal dates). Depleted
    lots, lots without an expiry date and lots beyond the warning window are
    ignored.
    """
    today = to_date(today)
    result = AlertPartition()

    for reagent in reagents:
        status = classify_stock(reagent.total_quantity, reagent.minimum_stock).status
        if status == "out":
            result.out_of_stock.append(reagent)
        elif status == "low":
            result.low_stock.append(reagent)

    horizon = today + timedelta(days=warning_days)
    for lot in lots:
        expiry = to_date(lot.expiry_date)
        if expiry is None or (lot.quantity or 0) <= 0:
            continue
        if expiry < today:
            result.expired_lots.append(lot)
        elif expiry <= horizon:
            result.expiring_soon_lots.append(lot)

    result.expiring_soon_lots.sort(key=lambda lot: to_date(lot.expiry_date))
    return result


# ── Dashboard alert feed ─────────────────────────────────────────────────────

def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def build_alert_feed(reagents: Iterable, lots: Iterable, today: Any,
                     critical_days: int = CRITICAL_DAYS,
                     warning_days: int = WARNING_DAYS) -> list[dict]:
    """Flatten current alerts into dashboard cards.

    Stock alerts come first in reagent order, then lot alerts ordered by
    expiry date. ``filter`` is the inventory-table filter the card links to.
    """
    today = to_date(today)
    feed: list[dict] = []

    for reagent in reagents:
        status = classify_stock(reagent.total_quantity, reagent.minimum_stock).status
        if status == "ok":
            continue
        detail = (
            f"0 {reagent.unit} left" if status == "out"
            else f"{reagent.total_quantity}/{reagent.minimum_stock} {reagent.unit}"
        )
        feed.append({
            "id": f"stock-{reagent.id}",
            "type": status,
            "reagent_id": reagent.id,
            "reagent_name": reagent.name,
            "detail": detail,
            "filter": {"stock_status": status, "search": reagent.reference},
        })

    dated = [lot for lot in lots
             if to_date(lot.expiry_date) is not None and (lot.quantity or 0) > 0]
    dated.sort(key=lambda lot: to_date(lot.expiry_date))
    for lot in dated:
        expiry = classify_expiry(lot.expiry_date, today, critical_days, warning_days)
        if expiry.status == "ok":
            continue
        if expiry.status == "expired":
            detail = f"Lot {lot.lot_number} expired {_plural(abs(expiry.days_until), 'day')} ago"
        else:
            detail = f"Lot {lot.lot_number} expires in {_plural(expiry.days_until, 'day')}"
        reagent = getattr(lot, "reagent", None)
        feed.append({
            "id": f"lot-{lot.id}",
            "type": expiry.status,
            "reagent_id": getattr(reagent, "id", None),
            "reagent_name": getattr(reagent, "name", None) or "Unknown",
            "detail": detail,
            "filter": {"expiry_status": expiry.status, "lot_number": lot.lot_number},
        })

    return feed
