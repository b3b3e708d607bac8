"""
Tests for the Redis, SMTP and chat channel adapters.

The underlying clients are replaced with small fakes; SMTP delivery is
intercepted at the blocking ``_deliver`` step.
"""

import json
import smtplib

import pytest

from adwatch.channels.chat import ALERT_MESSAGE_TYPE, PostgresChatPoster
from adwatch.channels.email import SmtpEmailSender
from adwatch.channels.realtime import RedisRealtimePublisher
from adwatch.config.models import EmailChannelConfig, RedisConnectionConfig
from adwatch.errors import ChannelError
from adwatch.storage.postgres_client import PostgresOperationError
from adwatch.storage.redis_client import RedisClient

from tests.conftest import make_alert


pytestmark = pytest.mark.asyncio


class FakeRedis:
    def __init__(self):
        self.published = []

    async def publish(self, channel, data):
        self.published.append((channel, data))
        return 1


class FakeChatClient:
    def __init__(self, conversation_id="conv-9", error=None):
        self.conversation_id = conversation_id
        self.error = error
        self.messages = []

    async def find_conversation(self, campaign_id, recipient_id):
        if self.error:
            raise self.error
        return self.conversation_id

    async def insert_chat_message(self, conversation_id, sender_id, content, message_type):
        self.messages.append((conversation_id, sender_id, content, message_type))


class FakeDirectory:
    def __init__(self, recipients):
        self.recipients = recipients

    async def fetch_recipient(self, recipient_id):
        return self.recipients.get(recipient_id)


@pytest.fixture
def redis_client():
    client = RedisClient(RedisConnectionConfig())
    client._client = FakeRedis()
    client._connected = True
    return client


class TestRealtimePublisher:
    """Tests for the Redis pub/sub publisher."""

    async def test_publishes_envelope(self, redis_client):
        publisher = RedisRealtimePublisher(redis_client, channel_prefix="ads")

        await publisher.publish("user_user-7", "new_alert", {"id": "alert-1", "value": make_alert().current_value})

        channel, data = redis_client._client.published[0]
        assert channel == "ads:user_user-7"
        assert json.loads(data) == {"event": "new_alert", "payload": {"id": "alert-1", "value": "1.8"}}

    async def test_disconnected_client(self):
        publisher = RedisRealtimePublisher(RedisClient(RedisConnectionConfig()))

        with pytest.raises(ChannelError):
            await publisher.publish("user_user-7", "new_alert", {})


class TestChatPoster:
    """Tests for the chat poster."""

    async def test_posts_alert_message(self):
        client = FakeChatClient()
        alert = make_alert()

        conversation_id = await PostgresChatPoster(client).post_system_message("cmp-1", alert)

        assert conversation_id == "conv-9"
        assert client.messages == [
            ("conv-9", "user-7", f"ALERT: {alert.title}\n\n{alert.message}", ALERT_MESSAGE_TYPE)
        ]

    async def test_no_conversation(self):
        client = FakeChatClient(conversation_id=None)

        assert await PostgresChatPoster(client).post_system_message("cmp-1", make_alert()) is None
        assert client.messages == []

    async def test_database_error(self):
        client = FakeChatClient(error=PostgresOperationError("relation missing"))

        with pytest.raises(ChannelError):
            await PostgresChatPoster(client).post_system_message("cmp-1", make_alert())


class TestSmtpEmailSender:
    """Tests for the SMTP sender."""

    @pytest.fixture
    def sender(self):
        config = EmailChannelConfig(from_address="alerts@example.com", dashboard_url="https://ads.example.com")
        directory = FakeDirectory(
            {
                "user-7": {"email": "dana@example.com", "name": "Dana"},
                "user-8": {"email": None, "name": "No Mail"},
            }
        )
        sender = SmtpEmailSender(config, directory)
        sender.delivered = []
        sender._deliver = sender.delivered.append
        return sender

    async def test_alert_email(self, sender):
        await sender.send_alert_email(make_alert())

        message = sender.delivered[0]
        assert message["To"] == "dana@example.com"
        assert message["Subject"] == "[HIGH] ROAS drop: Brand Search"
        assert "alerts@example.com" in message["From"]
        assert message.get_body(("plain",)).get_content().startswith("High priority")
        assert "https://ads.example.com/manager/campaigns/cmp-1" in message.get_body(("html",)).get_content()

    async def test_recipient_without_email(self, sender):
        with pytest.raises(ChannelError):
            await sender.send_alert_email(make_alert(recipient_id="user-8"))
        assert sender.delivered == []

    async def test_unknown_recipient(self, sender):
        with pytest.raises(ChannelError):
            await sender.send_alert_email(make_alert(recipient_id="user-404"))

    async def test_smtp_failure(self, sender):
        def refuse(message):
            raise smtplib.SMTPRecipientsRefused({"dana@example.com": (550, b"mailbox unavailable")})

        sender._deliver = refuse

        with pytest.raises(ChannelError) as exc_info:
            await sender.send_alert_email(make_alert())
        assert exc_info.value.details["channel"] == "email"

    async def test_daily_summary(self, sender):
        sent = await sender.send_daily_summary("user-7", [make_alert("a-1"), make_alert("a-2")])

        assert sent is True
        assert sender.delivered[0]["Subject"] == "Daily summary: 2 alerts on your campaigns"

    async def test_empty_summary_not_sent(self, sender):
        assert await sender.send_daily_summary("user-7", []) is False
        assert sender.delivered == []
