"""
Lab Reagent Stock Management
Email Service.

Delivers structured messages ``{to, subject, html, text}`` through the
configured provider and either returns a provider message id or raises
``MailDeliveryError`` with a human-readable reason.

Providers:
    - smtp    MIME multipart/alternative over SMTP (+STARTTLS, login)
    - resend  transactional email HTTP API via ResendGateway
When the selected provider is not configured, messages are logged but not
sent (dev/test mode) and a synthetic id is returned.

The sender is an ordinary object handed to whoever needs it
(``MailSender.from_config(app.config)``); there is no module-level client.

Configuration (app config / env vars):
    MAIL_PROVIDER        smtp | resend (default: smtp)
    MAIL_SERVER          SMTP host (default: None → log-only mode)
    MAIL_PORT            SMTP port (default: 587)
    MAIL_USE_TLS         Use TLS (default: true)
    MAIL_USERNAME        SMTP username
    MAIL_PASSWORD        SMTP password
    MAIL_DEFAULT_SENDER  From address
    RESEND_API_KEY       HTTP API key (resend provider)
    RESEND_API_URL       HTTP API endpoint
"""

from __future__ import annotations

import logging
import smtplib
import uuid
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Any, Mapping

from labstock.core.exceptions import MailDeliveryError
from labstock.integrations.resend_gateway import ResendGateway

logger = logging.getLogger(__name__)

PROVIDERS = {"smtp", "resend"}


@dataclass(frozen=True)
class MailMessage:
    to: str
    subject: str
    html: str
    text: str


class MailSender:
    """
    Email delivery with pluggable provider.

    In log-only mode (provider not configured) ``send`` never fails.
    """

    def __init__(
        self,
        *,
        provider: str = "smtp",
        sender: str = "noreply@labstock.local",
        smtp_server: str | None = None,
        smtp_port: int = 587,
        smtp_use_tls: bool = True,
        smtp_username: str | None = None,
        smtp_password: str | None = None,
        resend_gateway: ResendGateway | None = None,
    ) -> None:
        if provider not in PROVIDERS:
            raise ValueError(f"Unknown mail provider: {provider!r}. Must be one of {sorted(PROVIDERS)}")
        self.provider = provider
        self.sender = sender
        self.smtp_server = smtp_server
        self.smtp_port = smtp_port
        self.smtp_use_tls = smtp_use_tls
        self.smtp_username = smtp_username
        self.smtp_password = smtp_password
        self.resend_gateway = resend_gateway

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any]) -> "MailSender":
        provider = (cfg.get("MAIL_PROVIDER") or "smtp").lower()
        gateway = None
        if provider == "resend" and cfg.get("RESEND_API_KEY"):
            gateway = ResendGateway(
                api_key=cfg["RESEND_API_KEY"],
                api_url=cfg.get("RESEND_API_URL") or "https://api.resend.com/emails",
            )
        return cls(
            provider=provider,
            sender=cfg.get("MAIL_DEFAULT_SENDER") or "noreply@labstock.local",
            smtp_server=cfg.get("MAIL_SERVER"),
            smtp_port=int(cfg.get("MAIL_PORT") or 587),
            smtp_use_tls=bool(cfg.get("MAIL_USE_TLS", True)),
            smtp_username=cfg.get("MAIL_USERNAME"),
            smtp_password=cfg.get("MAIL_PASSWORD"),
            resend_gateway=gateway,
        )

    def is_configured(self) -> bool:
        """Check if the selected provider can actually deliver."""
        if self.provider == "resend":
            return self.resend_gateway is not None
        return bool(self.smtp_server)

    def send(self, message: MailMessage) -> str:
        """
        Deliver a message.

        Returns:
            Provider message id (synthetic in log-only mode).

        Raises:
            MailDeliveryError: the provider failed or refused the message.
        """
        if not message.to:
            raise MailDeliveryError("Recipient address is empty")

        if not self.is_configured():
            logger.info("Email (dev mode): to=%s subject='%s'", message.to, message.subject)
            return f"dev-{uuid.uuid4().hex[:12]}"

        if self.provider == "resend":
            message_id = self.resend_gateway.send(
                sender=self.sender, to=message.to, subject=message.subject,
                html=message.html, text=message.text,
            )
        else:
            message_id = self._send_smtp(message)

        logger.info("Email sent: to=%s subject='%s' id=%s", message.to, message.subject, message_id)
        return message_id

    def _send_smtp(self, message: MailMessage) -> str:
        """Actually send via SMTP."""
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = self.sender
        msg["To"] = message.to
        msg["Message-ID"] = make_msgid(domain="labstock.local")
        msg.attach(MIMEText(message.text, "plain", "utf-8"))
        msg.attach(MIMEText(message.html, "html", "utf-8"))

        try:
            with smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=30) as smtp:
                if self.smtp_use_tls:
                    smtp.starttls()
                if self.smtp_username and self.smtp_password:
                    smtp.login(self.smtp_username, self.smtp_password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email failed: to=%s error=%s", message.to, exc)
            raise MailDeliveryError(str(exc)[:1000]) from exc

        return msg["Message-ID"]
