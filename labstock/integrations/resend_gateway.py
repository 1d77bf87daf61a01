"""
Transactional email HTTP API gateway (Resend-compatible).

POST {api_url} with a bearer API key and a JSON body
``{from, to, subject, html, text}``. A 2xx response carries ``{"id": ...}``;
anything else carries ``{"message": ...}`` which becomes the error text.

Testability: pass a mock `session` to ResendGateway() in tests.
"""

from __future__ import annotations

import logging

import requests

from labstock.core.exceptions import MailDeliveryError

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30


class ResendGateway:
    """Sends one message per call; no retry (a failed digest is recorded, not retried)."""

    def __init__(self, api_key: str, api_url: str = "https://api.resend.com/emails",
                 session: requests.Session | None = None) -> None:
        self.api_key = api_key
        self.api_url = api_url
        self._session = session

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def send(self, *, sender: str, to: str, subject: str, html: str, text: str) -> str:
        """Deliver a message and return the provider id.

        Raises:
            MailDeliveryError: on network failure or non-2xx response.
        """
        try:
            resp = self.session.post(
                self.api_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={"from": sender, "to": [to], "subject": subject, "html": html, "text": text},
                timeout=_DEFAULT_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise MailDeliveryError(f"Mail API unreachable: {exc}") from exc

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if not resp.ok:
            message = body.get("message") or f"Mail API returned HTTP {resp.status_code}"
            logger.error("Mail API rejected message to=%s status=%s: %s",
                         to, resp.status_code, message)
            raise MailDeliveryError(message)

        return str(body.get("id", ""))
