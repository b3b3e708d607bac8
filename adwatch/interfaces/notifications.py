"""
Abstract base classes for notification channels.

The dispatcher delivers each alert through three independent channels:
a realtime push, an email, and a system message in the campaign's chat
conversation. Implementations raise ChannelError on failure; the
dispatcher isolates failures per channel.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from adwatch.models.alerts import Alert
from adwatch.models.campaign import Campaign


class RealtimePublisher(ABC):
    """
    Pushes events to connected clients.

    Scopes name a private room: ``user_{id}`` for one operator,
    ``conversation_{id}`` for a chat conversation. Tracking which clients
    are online is the publisher's own concern.
    """

    @abstractmethod
    async def publish(self, scope: str, event: str, payload: Dict[str, Any]) -> None:
        """
        Publish an event to a scope.

        Args:
            scope: Target room (e.g. "user_42").
            event: Event name (e.g. "new_alert").
            payload: JSON-serializable event body.

        Raises:
            ChannelError: If the event cannot be published.
        """
        pass


class EmailSender(ABC):
    """Renders and sends alert emails."""

    @abstractmethod
    async def send_alert_email(self, alert: Alert, campaign: Optional[Campaign] = None) -> None:
        """
        Send the email for one alert to its recipient.

        Args:
            alert: Alert to send.
            campaign: Campaign for display purposes, if known.

        Raises:
            ChannelError: If the recipient has no address or sending fails.
        """
        pass

    @abstractmethod
    async def send_daily_summary(self, recipient_id: str, alerts: List[Alert]) -> bool:
        """
        Send a digest of the recipient's recent alerts.

        Args:
            recipient_id: Recipient identifier.
            alerts: Alerts to summarize.

        Returns:
            bool: True if an email was sent, False if there was nothing to send.

        Raises:
            ChannelError: If sending fails.
        """
        pass


class ChatPoster(ABC):
    """Posts system-authored alert messages into campaign conversations."""

    @abstractmethod
    async def post_system_message(self, campaign_id: str, alert: Alert) -> Optional[str]:
        """
        Post the alert into the conversation between the recipient and the
        campaign's counterpart.

        Args:
            campaign_id: Campaign identifier.
            alert: Alert to post.

        Returns:
            Optional[str]: Conversation id the message was posted to, or
            None when the campaign has no conversation.

        Raises:
            ChannelError: If posting fails.
        """
        pass
