"""Outgoing mail over SMTP."""
import asyncio
import smtplib
from email.mime.text import MIMEText
from typing import Optional

import structlog

from portal.config import settings

logger = structlog.get_logger()


class MailError(Exception):
    """Raised when a message cannot be sent."""


class Mailer:
    """Sends plain text messages.

    With mail disabled the message is only logged.
    """

    def __init__(
        self,
        enabled: Optional[bool] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: Optional[bool] = None,
    ):
        self.enabled = settings.MAIL_ENABLED if enabled is None else enabled
        self.host = host or settings.SMTP_HOST
        self.port = port or settings.SMTP_PORT
        self.user = settings.SMTP_USER if user is None else user
        self.password = settings.SMTP_PASSWORD if password is None else password
        self.use_tls = settings.SMTP_USE_TLS if use_tls is None else use_tls

    def _build(self, to: str, sender: str, subject: str, body: str) -> MIMEText:
        message = MIMEText(body, "plain", "utf-8")
        message["Subject"] = subject
        message["From"] = sender
        message["To"] = to
        return message

    def _deliver(self, message: MIMEText) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=30) as server:
            if self.use_tls:
                server.starttls()
            if self.user and self.password:
                server.login(self.user, self.password)
            server.send_message(message)

    async def send(self, to: str, sender: str, subject: str, body: str) -> None:
        """Send a message.

        Raises:
            MailError: if the SMTP exchange fails
        """
        message = self._build(to, sender, subject, body)
        if not self.enabled:
            logger.info("Mail disabled - message not sent", to=to, subject=subject)
            return
        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send mail", to=to, subject=subject, error=str(e))
            raise MailError(str(e)) from e
        logger.info("Mail sent", to=to, subject=subject)


def get_mailer() -> Mailer:
    return Mailer()
