"""
Lab Reagent Stock Management
Digest email rendering.

Builds the subject, HTML body and plain-text body of the daily inventory
alert digest from an ``AlertPartition``. Each category gets its own
section, capped at ``max_items`` lines plus an "... and N more" trailer.
"""

from __future__ import annotations

from datetime import date
from html import escape

from labstock.services.alert_classifier import AlertPartition, days_until

MAX_ITEMS_PER_SECTION = 5

OUT_COLOR = "#dc2626"
WARN_COLOR = "#d97706"

_SECTION_HTML = """
  <div style="margin-bottom: 20px;">
    <div style="display: inline-block; padding: 4px 12px; background-color: {color}; color: white;
                border-radius: 4px; font-size: 13px; font-weight: 600; margin-bottom: 8px;">
      {title}
    </div>
    <ul style="margin: 8px 0; padding-left: 20px; font-size: 14px;">
      {items}
      {overflow}
    </ul>
  </div>"""

_DIGEST_HTML = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
             line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="text-align: center; margin-bottom: 30px;">
    <h1 style="color: {brand_color}; margin-bottom: 5px;">{app_name}</h1>
    <p style="color: #666; margin-top: 0;">Daily Inventory Alert</p>
  </div>

  <p>{greeting}</p>

  <p>{headline}</p>

  {sections}

  <div style="text-align: center; margin: 30px 0;">
    <a href="{site_url}"
       style="display: inline-block; padding: 14px 32px; background-color: {brand_color}; color: white;
              text-decoration: none; border-radius: 8px; font-weight: 600; font-size: 16px;">
      View Inventory
    </a>
  </div>

  <hr style="border: none; border-top: 1px solid #eee; margin: 30px 0;">

  <p style="color: #999; font-size: 12px; text-align: center;">
    You received this email because alerts are enabled for your account.<br>
    Contact your administrator to change this setting.
  </p>
</body>
</html>"""


def pluralize(count: int, singular: str, plural: str | None = None) -> str:
    """``1 item`` / ``3 items``."""
    return f"{count} {singular if count == 1 else (plural or singular + 's')}"


def _reagent_name(lot) -> str:
    reagent = getattr(lot, "reagent", None)
    return getattr(reagent, "name", None) or "Unknown"


class DigestRenderer:
    """Renders the alert digest for one subscriber.

    The partition is shared across subscribers; only the greeting differs.
    """

    def __init__(self, *, app_name: str, site_url: str, brand_color: str = "#60baa9",
                 max_items: int = MAX_ITEMS_PER_SECTION) -> None:
        self.app_name = app_name
        self.site_url = site_url
        self.brand_color = brand_color
        self.max_items = max_items

    @classmethod
    def from_config(cls, cfg) -> "DigestRenderer":
        return cls(
            app_name=cfg.get("APP_NAME", "Anamed Stock Management"),
            site_url=cfg.get("SITE_URL", ""),
            brand_color=cfg.get("BRAND_COLOR", "#60baa9"),
            max_items=cfg.get("DIGEST_MAX_ITEMS_PER_SECTION", MAX_ITEMS_PER_SECTION),
        )

    # ── Public API ───────────────────────────────────────────────────────

    def subject(self, total_alerts: int) -> str:
        return (f"[{self.app_name}] Daily Inventory Alert — "
                f"{pluralize(total_alerts, 'item')} need attention")

    def html(self, user_name: str | None, partition: AlertPartition, today: date) -> str:
        sections = []
        for title, color, lines, overflow in self._sections(partition, today):
            items_html = "\n      ".join(
                f'<li style="margin-bottom: 4px;">{escape(line)}</li>' for line in lines
            )
            overflow_html = (
                f'<li style="margin-bottom: 4px; color: #666; font-style: italic;">'
                f'... and {overflow} more</li>'
                if overflow > 0 else ""
            )
            sections.append(_SECTION_HTML.format(
                color=color, title=escape(title), items=items_html, overflow=overflow_html,
            ))

        return _DIGEST_HTML.format(
            brand_color=self.brand_color,
            app_name=escape(self.app_name),
            greeting=escape(self._greeting(user_name)),
            headline=self._headline(partition.total),
            sections="\n".join(sections),
            site_url=escape(self.site_url, quote=True),
        )

    def text(self, user_name: str | None, partition: AlertPartition, today: date) -> str:
        lines = [
            f"{self.app_name} — Daily Inventory Alert",
            "",
            self._greeting(user_name),
            "",
            self._headline(partition.total),
            "",
        ]
        for title, _color, items, overflow in self._sections(partition, today, text=True):
            lines.append(f"--- {title} ---")
            lines.extend(f"  - {item}" for item in items)
            if overflow > 0:
                lines.append(f"  ... and {overflow} more")
            lines.append("")

        lines.append(f"View Inventory: {self.site_url}")
        lines.append("")
        lines.append("You received this email because alerts are enabled for your account.")
        lines.append("Contact your administrator to change this setting.")
        return "\n".join(lines)

    # ── Internals ────────────────────────────────────────────────────────

    @staticmethod
    def _greeting(user_name: str | None) -> str:
        return f"Hello {user_name}," if user_name else "Hello,"

    @staticmethod
    def _headline(total: int) -> str:
        verb = "needs" if total == 1 else "need"
        return f"{pluralize(total, 'item')} {verb} your attention today:"

    def _sections(self, partition: AlertPartition, today: date, text: bool = False):
        """Yield ``(title, color, lines, overflow)`` for each non-empty category.

        HTML titles read ``3 items OUT OF STOCK``; text titles ``OUT OF STOCK (3)``.
        """
        categories = [
            ("item", "OUT OF STOCK", OUT_COLOR, partition.out_of_stock,
             lambda r: f"{r.name} ({r.reference}) — 0 {r.unit}"),
            ("item", "LOW STOCK", WARN_COLOR, partition.low_stock,
             lambda r: f"{r.name} ({r.reference}) — {r.total_quantity}/{r.minimum_stock} {r.unit}"),
            ("lot", "EXPIRED", OUT_COLOR, partition.expired_lots,
             lambda lot: self._expired_line(lot, today)),
            ("lot", "EXPIRING SOON", WARN_COLOR, partition.expiring_soon_lots,
             lambda lot: self._expiring_line(lot, today)),
        ]
        for noun, label, color, rows, fmt in categories:
            if not rows:
                continue
            title = f"{label} ({len(rows)})" if text else f"{pluralize(len(rows), noun)} {label}"
            shown = [fmt(row) for row in rows[: self.max_items]]
            yield title, color, shown, max(len(rows) - self.max_items, 0)

    @staticmethod
    def _expired_line(lot, today: date) -> str:
        days = abs(days_until(lot.expiry_date, today))
        return f"{lot.lot_number} ({_reagent_name(lot)}) — expired {pluralize(days, 'day')} ago"

    @staticmethod
    def _expiring_line(lot, today: date) -> str:
        days = days_until(lot.expiry_date, today)
        return f"{lot.lot_number} ({_reagent_name(lot)}) — expires in {pluralize(days, 'day')}"
