"""
Periodic alert maintenance jobs.

Jobs:
    purge_terminal_alerts: Deletes resolved and dismissed alerts past retention.
    send_daily_digests: Emails each recipient a summary of their recent alerts.
"""

from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog
from pydantic import BaseModel, Field

from adwatch.interfaces.alert_store import AlertStore
from adwatch.interfaces.notifications import EmailSender
from adwatch.models.alerts import utc_now

logger = structlog.get_logger(__name__)


DEFAULT_RETENTION_DAYS = 30
DEFAULT_DIGEST_WINDOW_HOURS = 24


class DigestSummary(BaseModel):
    """Outcome of a digest run."""

    model_config = {"frozen": True, "extra": "forbid"}

    recipients: int = 0
    sent: int = 0
    empty: int = 0
    failed: int = 0
    failed_recipients: list[str] = Field(default_factory=list)


class AlertMaintenance:
    """
    Retention cleanup and daily digests.

    Attributes:
        store: Alert persistence.
        email_sender: Email channel, None disables digests.
    """

    def __init__(
        self,
        store: AlertStore,
        email_sender: Optional[EmailSender] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.email_sender = email_sender
        self._clock = clock

    async def purge_terminal_alerts(self, retention_days: int = DEFAULT_RETENTION_DAYS) -> int:
        """
        Delete RESOLVED and DISMISSED alerts closed before the retention window.

        Args:
            retention_days: Days a terminal alert is kept.

        Returns:
            int: Number of alerts deleted.
        """
        if retention_days < 1:
            raise ValueError("retention_days must be positive")

        cutoff = self._clock() - timedelta(days=retention_days)
        deleted = await self.store.purge_terminal(cutoff)
        logger.info(
            "terminal_alerts_purged",
            retention_days=retention_days,
            cutoff=cutoff.isoformat(),
            deleted=deleted,
        )
        return deleted

    async def send_daily_digests(self, window_hours: int = DEFAULT_DIGEST_WINDOW_HOURS) -> DigestSummary:
        """
        Send one summary email per recipient with alerts in the window.

        A failure for one recipient is logged and counted; the others are
        still processed.

        Args:
            window_hours: How far back the digest looks.

        Returns:
            DigestSummary: Counts of sent, empty and failed digests.
        """
        if self.email_sender is None:
            logger.info("daily_digest_skipped", reason="email_disabled")
            return DigestSummary()

        since = self._clock() - timedelta(hours=window_hours)
        recipients = await self.store.recipients_with_alerts_since(since)

        sent = 0
        empty = 0
        failed = []
        for recipient_id in recipients:
            try:
                alerts = await self.store.list_since(recipient_id, since)
                if await self.email_sender.send_daily_summary(recipient_id, alerts):
                    sent += 1
                else:
                    empty += 1
            except Exception as e:
                failed.append(recipient_id)
                logger.error(
                    "daily_digest_failed",
                    recipient_id=recipient_id,
                    error=str(e),
                )

        summary = DigestSummary(
            recipients=len(recipients),
            sent=sent,
            empty=empty,
            failed=len(failed),
            failed_recipients=failed,
        )
        logger.info(
            "daily_digests_complete",
            window_hours=window_hours,
            recipients=summary.recipients,
            sent=summary.sent,
            failed=summary.failed,
        )
        return summary
