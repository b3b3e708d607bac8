"""
Alert dispatcher for delivering alerts to notification channels.

This module provides the AlertDispatcher class which fans a persisted
alert out to the realtime, email and chat channels concurrently and
records which deliveries were confirmed.

Key Features:
    - Three independent channels, attempted concurrently
    - Per-channel timeout
    - Failures isolated per channel and reported, never raised
    - Delivery flags persisted through the AlertStore

Example:
    >>> dispatcher = AlertDispatcher(
    ...     store=store,
    ...     publisher=RedisRealtimePublisher(redis_client),
    ...     email_sender=SmtpEmailSender(email_config, directory),
    ...     chat_poster=PostgresChatPoster(postgres_client),
    ... )
    >>> report = await dispatcher.dispatch(alert, campaign)
    >>> report.delivered_count
    3
"""

import asyncio
from typing import Any, Awaitable, Dict, Optional

import structlog

from adwatch.errors import ChannelError
from adwatch.interfaces.alert_store import AlertStore
from adwatch.interfaces.notifications import ChatPoster, EmailSender, RealtimePublisher
from adwatch.models.alerts import Alert
from adwatch.models.campaign import Campaign
from adwatch.models.results import ChannelOutcome, DispatchReport

logger = structlog.get_logger(__name__)


REALTIME_CHANNEL = "realtime"
EMAIL_CHANNEL = "email"
CHAT_CHANNEL = "chat"

NEW_ALERT_EVENT = "new_alert"
NEW_MESSAGE_EVENT = "new_message"


def user_scope(recipient_id: str) -> str:
    """Realtime scope of one operator."""
    return f"user_{recipient_id}"


def conversation_scope(conversation_id: str) -> str:
    """Realtime scope of one chat conversation."""
    return f"conversation_{conversation_id}"


def alert_event_payload(alert: Alert, campaign: Optional[Campaign] = None) -> Dict[str, Any]:
    """
    Build the ``new_alert`` payload pushed to the recipient.

    Args:
        alert: Alert being dispatched.
        campaign: Campaign for the display name, if known.

    Returns:
        Dict[str, Any]: JSON-serializable payload.
    """
    return {
        "id": alert.id,
        "type": alert.alert_type.value,
        "priority": alert.priority.value,
        "title": alert.title,
        "message": alert.message,
        "campaign_id": alert.campaign_id,
        "campaign_name": campaign.name if campaign else None,
        "created_at": alert.created_at.isoformat(),
    }


def chat_event_payload(alert: Alert) -> Dict[str, Any]:
    """Build the ``new_message`` payload pushed to a conversation."""
    return {
        "type": "alert",
        "alert": {
            "id": alert.id,
            "title": alert.title,
            "message": alert.message,
            "priority": alert.priority.value,
        },
    }


class AlertDispatcher:
    """
    Delivers alerts through the realtime, email and chat channels.

    The email sender and chat poster are optional; a missing one is
    reported as skipped. ``dispatch`` never raises.

    Attributes:
        store: Alert persistence, used to record delivery flags.
        publisher: Realtime publisher.
        email_sender: Email channel, or None when disabled.
        chat_poster: Chat channel, or None when disabled.
        channel_timeout: Seconds allowed per channel attempt.
    """

    def __init__(
        self,
        store: AlertStore,
        publisher: RealtimePublisher,
        email_sender: Optional[EmailSender] = None,
        chat_poster: Optional[ChatPoster] = None,
        channel_timeout: float = 15.0,
    ) -> None:
        self.store = store
        self.publisher = publisher
        self.email_sender = email_sender
        self.chat_poster = chat_poster
        self.channel_timeout = channel_timeout

        logger.info(
            "alert_dispatcher_initialized",
            email_enabled=email_sender is not None,
            chat_enabled=chat_poster is not None,
            channel_timeout=channel_timeout,
        )

    async def dispatch(self, alert: Alert, campaign: Optional[Campaign] = None) -> DispatchReport:
        """
        Dispatch an alert to every channel.

        Args:
            alert: Persisted alert to deliver.
            campaign: Campaign for display purposes, if known.

        Returns:
            DispatchReport: Per-channel outcomes and the alert with its
            delivery flags as persisted.

        Example:
            >>> report = await dispatcher.dispatch(alert)
            >>> [f.channel for f in report.failures]
            ['email']
        """
        realtime, email, chat = await asyncio.gather(
            self._attempt(REALTIME_CHANNEL, alert, self._push_realtime(alert, campaign)),
            self._attempt_optional(
                EMAIL_CHANNEL,
                alert,
                self.email_sender,
                lambda sender: self._send_email(sender, alert, campaign),
            ),
            self._attempt_optional(
                CHAT_CHANNEL,
                alert,
                self.chat_poster,
                lambda poster: self._post_chat(poster, alert),
            ),
        )

        updated = await self._record_delivery(alert, email.delivered, chat.delivered)
        report = DispatchReport(alert=updated, realtime=realtime, email=email, chat=chat)

        logger.info(
            "alert_dispatch_complete",
            alert_id=alert.id,
            dispatched_to=report.delivered_count,
            failures=[f.channel for f in report.failures],
        )
        return report

    async def _attempt_optional(self, channel, alert, collaborator, make_call) -> ChannelOutcome:
        if collaborator is None:
            logger.debug("channel_disabled", channel=channel, alert_id=alert.id)
            return ChannelOutcome(channel=channel, skipped=True)
        return await self._attempt(channel, alert, make_call(collaborator))

    async def _attempt(self, channel: str, alert: Alert, call: Awaitable[bool]) -> ChannelOutcome:
        try:
            delivered = await asyncio.wait_for(call, timeout=self.channel_timeout)
        except asyncio.TimeoutError:
            error = ChannelError(
                f"{channel} delivery timed out",
                channel=channel,
                timeout_seconds=self.channel_timeout,
            )
            logger.error(
                "channel_dispatch_failed",
                channel=channel,
                alert_id=alert.id,
                error=error.message,
            )
            return ChannelOutcome(channel=channel, error=error.message)
        except Exception as e:
            logger.error(
                "channel_dispatch_failed",
                channel=channel,
                alert_id=alert.id,
                error=str(e),
            )
            return ChannelOutcome(channel=channel, error=str(e) or type(e).__name__)

        logger.debug(
            "alert_dispatched_to_channel",
            channel=channel,
            alert_id=alert.id,
            delivered=delivered,
        )
        return ChannelOutcome(channel=channel, delivered=delivered)

    async def _push_realtime(self, alert: Alert, campaign: Optional[Campaign]) -> bool:
        await self.publisher.publish(
            user_scope(alert.recipient_id),
            NEW_ALERT_EVENT,
            alert_event_payload(alert, campaign),
        )
        return True

    async def _send_email(
        self,
        sender: EmailSender,
        alert: Alert,
        campaign: Optional[Campaign],
    ) -> bool:
        await sender.send_alert_email(alert, campaign)
        return True

    async def _post_chat(self, poster: ChatPoster, alert: Alert) -> bool:
        conversation_id = await poster.post_system_message(alert.campaign_id, alert)
        if conversation_id is None:
            logger.debug("chat_conversation_missing", alert_id=alert.id, campaign_id=alert.campaign_id)
            return False

        # The message is posted; a failed room push does not undo that.
        try:
            await self.publisher.publish(
                conversation_scope(conversation_id),
                NEW_MESSAGE_EVENT,
                chat_event_payload(alert),
            )
        except Exception as e:
            logger.warning(
                "chat_room_push_failed",
                alert_id=alert.id,
                conversation_id=conversation_id,
                error=str(e),
            )
        return True

    async def _record_delivery(self, alert: Alert, email_sent: bool, chat_sent: bool) -> Alert:
        fields: Dict[str, Any] = {}
        if email_sent and not alert.email_sent:
            fields["email_sent"] = True
        if chat_sent and not alert.chat_sent:
            fields["chat_sent"] = True
        if not fields:
            return alert

        try:
            return await asyncio.wait_for(
                self.store.update(alert.id, fields),
                timeout=self.channel_timeout,
            )
        except Exception as e:
            logger.error(
                "delivery_flags_update_failed",
                alert_id=alert.id,
                fields=list(fields),
                error=str(e),
            )
            return alert


def create_dispatcher(
    store: AlertStore,
    publisher: RealtimePublisher,
    email_sender: Optional[EmailSender] = None,
    chat_poster: Optional[ChatPoster] = None,
    email_enabled: bool = True,
    chat_enabled: bool = True,
    channel_timeout: float = 15.0,
) -> AlertDispatcher:
    """
    Factory function to create an AlertDispatcher from channel settings.

    Channels switched off in configuration are dropped here so the
    dispatcher reports them as skipped.

    Args:
        store: Alert persistence.
        publisher: Realtime publisher.
        email_sender: Email channel implementation.
        chat_poster: Chat channel implementation.
        email_enabled: Whether the email channel is enabled.
        chat_enabled: Whether the chat channel is enabled.
        channel_timeout: Seconds allowed per channel attempt.

    Returns:
        AlertDispatcher: Configured dispatcher instance.
    """
    return AlertDispatcher(
        store=store,
        publisher=publisher,
        email_sender=email_sender if email_enabled else None,
        chat_poster=chat_poster if chat_enabled else None,
        channel_timeout=channel_timeout,
    )
