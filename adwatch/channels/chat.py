"""
Chat channel: posts alerts into the operator-client conversation.
"""

from typing import Optional

import structlog

from adwatch.channels.templates import chat_message_text
from adwatch.errors import ChannelError
from adwatch.interfaces.notifications import ChatPoster
from adwatch.models.alerts import Alert
from adwatch.storage.postgres_client import PostgresClient, PostgresClientError

logger = structlog.get_logger(__name__)


ALERT_MESSAGE_TYPE = "alert"


class PostgresChatPoster(ChatPoster):
    """
    ChatPoster over the ``chat_conversations`` and ``chat_messages`` tables.

    The message is authored on the recipient's behalf with message type
    ``alert`` so clients render it as a system notice.
    """

    def __init__(self, client: PostgresClient) -> None:
        self.client = client

    async def post_system_message(self, campaign_id: str, alert: Alert) -> Optional[str]:
        try:
            conversation_id = await self.client.find_conversation(campaign_id, alert.recipient_id)
            if conversation_id is None:
                return None

            await self.client.insert_chat_message(
                conversation_id,
                alert.recipient_id,
                chat_message_text(alert),
                ALERT_MESSAGE_TYPE,
            )
        except PostgresClientError as e:
            raise ChannelError(
                f"Chat post failed: {e}",
                channel="chat",
                alert_id=alert.id,
            ) from e

        logger.info(
            "alert_posted_to_chat",
            alert_id=alert.id,
            conversation_id=conversation_id,
        )
        return conversation_id
