"""
mail/sender.py -- Outbound email transports.

Three modes, selected by MAIL_MODE:
  console -- log the message instead of sending it (development default)
  smtp    -- deliver through an SMTP relay with STARTTLS
  api     -- POST JSON to a transactional email HTTP API (Resend-style:
             bearer key, {from, to, subject, text})

Every transport raises MailDeliveryError on any failure. Callers treat all
failures the same way and never see transport-specific exceptions.

Layer rule: no imports from api/, auth/, or media/.
"""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Protocol

import requests

from core.config import Settings

logger = logging.getLogger("kindiyo.mail")


class MailDeliveryError(Exception):
    """The message could not be handed to the transport."""


@dataclass(frozen=True)
class MailMessage:
    to: str
    subject: str
    body: str


class Mailer(Protocol):
    def send(self, message: MailMessage) -> None: ...


class ConsoleMailer:
    """Writes messages to the log. Nothing leaves the process."""

    def send(self, message: MailMessage) -> None:
        logger.info("Email to=%s subject=%r\n%s", message.to, message.subject, message.body)


class SmtpMailer:
    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.timeout = timeout

    def send(self, message: MailMessage) -> None:
        email = EmailMessage()
        email["From"] = self.sender
        email["To"] = message.to
        email["Subject"] = message.subject
        email.set_content(message.body)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls()
                if self.username:
                    server.login(self.username, self.password)
                server.send_message(email)
        except (smtplib.SMTPException, OSError) as exc:
            raise MailDeliveryError(f"SMTP delivery to {self.host}:{self.port} failed") from exc
        logger.info("Email sent via SMTP to=%s", message.to)


class HttpApiMailer:
    def __init__(self, api_url: str, api_key: str, sender: str, timeout: float = 10.0) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout

    def send(self, message: MailMessage) -> None:
        try:
            resp = requests.post(
                self.api_url,
                json={
                    "from": self.sender,
                    "to": [message.to],
                    "subject": message.subject,
                    "text": message.body,
                },
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise MailDeliveryError("Email API request failed") from exc
        logger.info("Email sent via API to=%s", message.to)


def build_mailer(settings: Settings) -> Mailer:
    """Return the transport named by settings.mail_mode.

    A mode whose required settings are missing falls back to console with a
    warning, so a half-configured dev environment still boots.
    """
    mode = settings.mail_mode.lower()
    if mode == "smtp":
        if settings.smtp_host:
            return SmtpMailer(
                host=settings.smtp_host,
                port=settings.smtp_port,
                sender=settings.mail_from,
                username=settings.smtp_user,
                password=settings.smtp_password,
                timeout=settings.mail_timeout_seconds,
            )
        logger.warning("MAIL_MODE=smtp but SMTP_HOST is not set, falling back to console")
    elif mode == "api":
        if settings.mail_api_url and settings.mail_api_key:
            return HttpApiMailer(
                api_url=settings.mail_api_url,
                api_key=settings.mail_api_key,
                sender=settings.mail_from,
                timeout=settings.mail_timeout_seconds,
            )
        logger.warning("MAIL_MODE=api but MAIL_API_URL/MAIL_API_KEY are not set, falling back to console")
    elif mode != "console":
        raise ValueError(f"Unknown MAIL_MODE: {settings.mail_mode!r}")
    return ConsoleMailer()
