"""SMTP delivery adapter."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Sequence

from approval_engine.config import Settings
from approval_engine.notify.base import SendResult, recipients_of

logger = logging.getLogger(__name__)


class SmtpNotifyService:
    """Sends mail over SMTP with STARTTLS.

    The blocking SMTP conversation runs in a worker thread so the event
    loop is never held by a slow mail server.
    """

    service_name = "smtp"

    def __init__(
        self,
        host: str,
        port: int,
        username: str | None,
        password: str | None,
        sender: str | None = None,
        use_tls: bool = True,
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender or username
        self.use_tls = use_tls
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> SmtpNotifyService:
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            sender=settings.mail_from,
            use_tls=settings.smtp_use_tls,
        )

    async def send(
        self,
        to: str | Sequence[str],
        subject: str,
        html: str,
        text: str | None = None,
    ) -> SendResult:
        addresses = recipients_of(to)
        if not addresses:
            return SendResult(success=False, error="No recipient address")
        if not self.username or not self.password:
            logger.warning("Mail credentials missing; not sending %r", subject)
            return SendResult(success=False, error="Mail credentials missing")

        message = self._build_message(addresses, subject, html, text)
        try:
            await asyncio.to_thread(self._deliver, addresses, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send %r to %s: %s", subject, addresses, e)
            return SendResult(success=False, error=str(e))

        logger.info("Sent %r to %s", subject, addresses)
        return SendResult(success=True)

    def _build_message(
        self,
        addresses: list[str],
        subject: str,
        html: str,
        text: str | None,
    ) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["From"] = self.sender or ""
        message["To"] = ", ".join(addresses)
        message["Subject"] = subject
        if text:
            message.attach(MIMEText(text, "plain"))
        message.attach(MIMEText(html, "html"))
        return message

    def _deliver(self, addresses: list[str], message: MIMEMultipart) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            server.ehlo()
            if self.use_tls:
                server.starttls()
                server.ehlo()
            server.login(self.username or "", self.password or "")
            server.send_message(message, to_addrs=addresses)
