from __future__ import annotations

import asyncio
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Callable, Optional

from billsplit.config import Settings
from billsplit.logging import get_logger

GMAIL_HOST = "smtp.gmail.com"
GMAIL_PORT = 465
DEV_MESSAGE_ID = "dev-mode-no-email-sent"

Transport = Callable[[EmailMessage], None]


@dataclass(slots=True)
class EmailResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class Mailer:
    """Plain-text SMTP mail. ``send`` reports failures in its result instead of raising."""

    def __init__(self, settings: Settings, transport: Optional[Transport] = None) -> None:
        self._settings = settings
        self._transport = transport
        self._log = get_logger(__name__)

    @property
    def configured(self) -> bool:
        return bool(self._settings.email_user and self._settings.email_pass)

    @property
    def sender(self) -> str:
        return formataddr((self._settings.email_from_name, self._settings.email_user or ""))

    def build_message(self, to: str, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message["Message-ID"] = make_msgid(domain="billsplit")
        message.set_content(body)
        return message

    async def send(self, to: str, subject: str, body: str) -> EmailResult:
        log = self._log.bind(to=to, subject=subject)

        if self._transport is None and not self.configured:
            if not self._settings.is_production:
                log.info("mail.send.skipped", reason="no credentials outside production")
                return EmailResult(success=True, message_id=DEV_MESSAGE_ID)
            log.error("mail.send.failed", error="missing EMAIL_USER/EMAIL_PASS")
            return EmailResult(success=False, error="Email credentials not found in environment variables")

        message = self.build_message(to, subject, body)
        transport = self._transport or self._smtp_send
        try:
            await asyncio.to_thread(transport, message)
        except (smtplib.SMTPException, OSError) as exc:
            log.error("mail.send.failed", error=str(exc))
            return EmailResult(success=False, error=str(exc))

        log.info("mail.send.ok", message_id=message["Message-ID"])
        return EmailResult(success=True, message_id=message["Message-ID"])

    def _connect(self) -> smtplib.SMTP:
        settings = self._settings
        host = settings.email_host or GMAIL_HOST
        port = settings.email_port or GMAIL_PORT
        context = ssl.create_default_context()

        # Gmail is only reachable over implicit TLS on 465
        if settings.email_secure or not settings.email_host:
            client: smtplib.SMTP = smtplib.SMTP_SSL(host, port, context=context, timeout=30)
        else:
            client = smtplib.SMTP(host, port, timeout=30)
            client.ehlo()
            if client.has_extn("starttls"):
                client.starttls(context=context)
                client.ehlo()
        try:
            client.login(settings.email_user or "", settings.email_pass or "")
        except smtplib.SMTPException:
            client.close()
            raise
        return client

    def _smtp_send(self, message: EmailMessage) -> None:
        with self._connect() as client:
            client.send_message(message)

    def _smtp_probe(self) -> None:
        with self._connect():
            pass

    async def verify(self) -> EmailResult:
        """Open and authenticate an SMTP session without sending anything."""
        if not self.configured:
            return EmailResult(success=False, error="Missing email credentials. Check EMAIL_USER and EMAIL_PASS.")

        try:
            await asyncio.to_thread(self._smtp_probe)
        except (smtplib.SMTPException, OSError) as exc:
            self._log.error("mail.verify.failed", error=str(exc))
            return EmailResult(success=False, error=f"SMTP verification failed: {exc}")
        return EmailResult(success=True)
