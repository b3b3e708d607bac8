"""
SMTP email channel.

Looks up the recipient's address, renders the alert with the templates
module and sends a multipart (text + HTML) message. smtplib is blocking,
so each send runs in a worker thread.

Example:
    >>> sender = SmtpEmailSender(config.alerts.channels.email, postgres_client)
    >>> await sender.send_alert_email(alert, campaign)
"""

import asyncio
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from typing import Any, Dict, List, Optional, Protocol

import structlog

from adwatch.channels.templates import (
    alert_html,
    alert_subject,
    alert_text,
    digest_html,
    digest_subject,
    digest_text,
)
from adwatch.config.models import EmailChannelConfig
from adwatch.errors import ChannelError
from adwatch.interfaces.notifications import EmailSender
from adwatch.models.alerts import Alert
from adwatch.models.campaign import Campaign

logger = structlog.get_logger(__name__)


class RecipientLookup(Protocol):
    """Anything that resolves a recipient id to ``{"email", "name"}``."""

    async def fetch_recipient(self, recipient_id: str) -> Optional[Dict[str, Any]]:
        ...


class SmtpEmailSender(EmailSender):
    """
    EmailSender over SMTP.

    Attributes:
        config: SMTP settings and dashboard URL.
        recipients: Resolves recipient ids to contact details.
    """

    def __init__(self, config: EmailChannelConfig, recipients: RecipientLookup) -> None:
        self.config = config
        self.recipients = recipients

    async def _recipient(self, recipient_id: str) -> Dict[str, Any]:
        try:
            recipient = await self.recipients.fetch_recipient(recipient_id)
        except Exception as e:
            raise ChannelError(
                f"Recipient lookup failed: {e}",
                channel="email",
                recipient_id=recipient_id,
            ) from e
        if not recipient or not recipient.get("email"):
            raise ChannelError(
                "Recipient has no email address",
                channel="email",
                recipient_id=recipient_id,
            )
        return recipient

    def _build_message(self, to_address: str, subject: str, text: str, html: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = formataddr((self.config.from_name, self.config.from_address))
        message["To"] = to_address
        message["Subject"] = subject
        message.set_content(text)
        message.add_alternative(html, subtype="html")
        return message

    def _deliver(self, message: EmailMessage) -> None:
        """
        Blocking SMTP send, run in a worker thread.

        The thread is not cancelled when the dispatcher stops waiting, so a
        message can still go out after its attempt was recorded as timed
        out. ``timeout_seconds`` bounds each socket operation and the config
        keeps it below the channel timeout.
        """
        with smtplib.SMTP(
            self.config.smtp_host,
            self.config.smtp_port,
            timeout=self.config.timeout_seconds,
        ) as smtp:
            if self.config.use_tls:
                smtp.starttls()
            if self.config.smtp_user:
                smtp.login(self.config.smtp_user, self.config.smtp_password or "")
            smtp.send_message(message)

    async def _send(self, message: EmailMessage, **log_context: Any) -> None:
        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("email_send_failed", error=str(e), **log_context)
            raise ChannelError(f"SMTP send failed: {e}", channel="email", **log_context) from e

    async def send_alert_email(self, alert: Alert, campaign: Optional[Campaign] = None) -> None:
        recipient = await self._recipient(alert.recipient_id)
        message = self._build_message(
            recipient["email"],
            alert_subject(alert),
            alert_text(alert, campaign, self.config.dashboard_url),
            alert_html(alert, campaign, self.config.dashboard_url),
        )
        await self._send(message, alert_id=alert.id)
        logger.info(
            "alert_email_sent",
            alert_id=alert.id,
            recipient_id=alert.recipient_id,
            priority=alert.priority.value,
        )

    async def send_daily_summary(self, recipient_id: str, alerts: List[Alert]) -> bool:
        if not alerts:
            return False

        recipient = await self._recipient(recipient_id)
        name = recipient.get("name")
        message = self._build_message(
            recipient["email"],
            digest_subject(alerts),
            digest_text(name, alerts, self.config.dashboard_url),
            digest_html(name, alerts, self.config.dashboard_url),
        )
        await self._send(message, recipient_id=recipient_id)
        logger.info("daily_digest_sent", recipient_id=recipient_id, alerts=len(alerts))
        return True
