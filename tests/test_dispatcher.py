"""
Tests for the alert dispatcher.

Covers fan-out to the three channels, per-channel failure isolation,
channel timeouts, disabled channels and delivery flag persistence.
"""

import pytest

from adwatch.detection.dispatcher import (
    NEW_ALERT_EVENT,
    NEW_MESSAGE_EVENT,
    alert_event_payload,
    create_dispatcher,
)
from adwatch.errors import ChannelError

from tests.conftest import make_alert, make_campaign


pytestmark = pytest.mark.asyncio


class TestDispatchAllChannels:
    """Tests for a dispatch where every channel works."""

    async def test_delivers_everywhere(self, dispatcher, store, publisher, email_sender, chat_poster):
        alert = store.add(make_alert())

        report = await dispatcher.dispatch(alert, make_campaign())

        assert report.delivered_count == 3
        assert report.failures == []
        assert publisher.scopes(NEW_ALERT_EVENT) == ["user_user-7"]
        assert publisher.scopes(NEW_MESSAGE_EVENT) == ["conversation_conv-9"]
        assert [a.id for a in email_sender.sent] == [alert.id]
        assert chat_poster.posted[0][0] == "conv-9"

    async def test_records_delivery_flags(self, dispatcher, store):
        alert = store.add(make_alert())

        report = await dispatcher.dispatch(alert)

        assert report.alert.email_sent is True
        assert report.alert.chat_sent is True
        assert store.alerts[alert.id].email_sent is True
        assert store.alerts[alert.id].chat_sent is True

    async def test_alert_payload(self, dispatcher, store, publisher):
        alert = store.add(make_alert())

        await dispatcher.dispatch(alert, make_campaign())

        payload = next(p for _, event, p in publisher.events if event == NEW_ALERT_EVENT)
        assert payload["id"] == alert.id
        assert payload["type"] == "ROAS_DROP"
        assert payload["priority"] == "HIGH"
        assert payload["campaign_name"] == "Brand Search"

    async def test_chat_message_payload(self, dispatcher, store, publisher):
        alert = store.add(make_alert())

        await dispatcher.dispatch(alert)

        payload = next(p for _, event, p in publisher.events if event == NEW_MESSAGE_EVENT)
        assert payload["type"] == "alert"
        assert payload["alert"]["id"] == alert.id


class TestFailureIsolation:
    """Tests for one channel failing without affecting the others."""

    async def test_email_failure(self, dispatcher, store, email_sender):
        email_sender.error = ChannelError("smtp refused")
        alert = store.add(make_alert())

        report = await dispatcher.dispatch(alert)

        assert report.realtime.delivered
        assert report.chat.delivered
        assert [f.channel for f in report.failures] == ["email"]
        assert report.email.error == "smtp refused"
        assert store.alerts[alert.id].email_sent is False
        assert store.alerts[alert.id].chat_sent is True

    async def test_realtime_failure(self, dispatcher, store, publisher, email_sender):
        publisher.error = ChannelError("redis down")
        alert = store.add(make_alert())

        report = await dispatcher.dispatch(alert)

        assert report.realtime.error == "redis down"
        assert report.email.delivered
        assert len(email_sender.sent) == 1

    async def test_realtime_failure_keeps_chat_delivered(self, dispatcher, store, publisher, chat_poster):
        publisher.error = ChannelError("redis down")
        alert = store.add(make_alert())

        report = await dispatcher.dispatch(alert)

        assert len(chat_poster.posted) == 1
        assert report.chat.delivered
        assert report.chat.error is None
        assert [f.channel for f in report.failures] == ["realtime"]
        assert store.alerts[alert.id].chat_sent is True

    async def test_missing_conversation_is_not_delivered(self, dispatcher, store, publisher, chat_poster):
        chat_poster.conversations.clear()
        alert = store.add(make_alert())

        report = await dispatcher.dispatch(alert)

        assert report.chat.delivered is False
        assert report.chat.error is None
        assert publisher.scopes(NEW_MESSAGE_EVENT) == []
        assert store.alerts[alert.id].chat_sent is False

    async def test_channel_timeout(self, store, publisher, email_sender, chat_poster):
        email_sender.delay = 0.5
        dispatcher = create_dispatcher(
            store,
            publisher,
            email_sender=email_sender,
            chat_poster=chat_poster,
            channel_timeout=0.01,
        )
        alert = store.add(make_alert())

        report = await dispatcher.dispatch(alert)

        assert report.email.error == "email delivery timed out"
        assert report.chat.delivered

    async def test_flag_update_failure_still_reports(self, dispatcher, store):
        store.fail("update")
        alert = store.add(make_alert())

        report = await dispatcher.dispatch(alert)

        assert report.delivered_count == 3
        assert report.alert.email_sent is False


class TestDisabledChannels:
    """Tests for channels switched off in configuration."""

    async def test_disabled_channels_are_skipped(self, store, publisher, email_sender, chat_poster):
        dispatcher = create_dispatcher(
            store,
            publisher,
            email_sender=email_sender,
            chat_poster=chat_poster,
            email_enabled=False,
            chat_enabled=False,
        )
        alert = store.add(make_alert())

        report = await dispatcher.dispatch(alert)

        assert report.email.skipped
        assert report.chat.skipped
        assert report.delivered_count == 1
        assert email_sender.sent == []
        assert store.alerts[alert.id].email_sent is False

    async def test_already_flagged_alert_not_rewritten(self, dispatcher, store):
        alert = store.add(make_alert(email_sent=True, chat_sent=True))
        store.fail("update")

        report = await dispatcher.dispatch(alert)

        assert report.alert.email_sent is True


async def test_alert_event_payload_without_campaign():
    payload = alert_event_payload(make_alert())

    assert payload["campaign_name"] is None
    assert payload["created_at"] == "2024-05-10T12:00:00+00:00"

