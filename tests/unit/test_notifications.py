"""
Unit Tests - Notifications and Push Delivery
"""
import uuid

import pytest

from marketplace.database.models import NotificationType
from marketplace.errors import AuthorizationError, NotFoundError
from marketplace.social.notifications import (
    NotificationService,
    order_placed_message,
    order_short_id,
    order_status_message,
)
from marketplace.social.push import (
    ExpoPushTransport,
    PushDispatcher,
    PushMessage,
    chunked,
    is_valid_push_token,
)


class BrokenTransport:
    async def send(self, tokens, message):
        raise ConnectionError("expo down")


class TestMessages:
    """Tests for notification wording"""

    def test_order_short_id(self):
        """Test the short id is the last six hex digits, upper case"""
        order_id = uuid.UUID("12345678-1234-5678-1234-567812abcdef")

        assert order_short_id(order_id) == "ABCDEF"
        assert order_placed_message(order_id) == "Your order #ABCDEF has been placed successfully!"
        assert order_status_message(order_id, "shipped") == "Your order #ABCDEF has been shipped."


class TestPushHelpers:
    """Tests for token validation and chunking"""

    @pytest.mark.parametrize("token,valid", [
        ("ExponentPushToken[abc123]", True),
        ("ExpoPushToken[xyz]", True),
        ("fcm-token", False),
        ("", False),
        (None, False),
    ])
    def test_token_validation(self, token, valid):
        """Test only Expo tokens are delivered"""
        assert is_valid_push_token(token) is valid

    def test_chunked(self):
        """Test messages are split into provider-sized batches"""
        assert [len(chunk) for chunk in chunked(list(range(250)), 100)] == [100, 100, 50]

    def test_expo_payload(self):
        """Test the Expo message shape"""
        transport = ExpoPushTransport(url="https://exp.host/push", sound="ding.wav", channel_id="orders")

        messages = transport.build_messages(["ExpoPushToken[a]"], PushMessage("Hi", "Body", {"k": "v"}))

        assert messages == [{
            "to": "ExpoPushToken[a]",
            "sound": "ding.wav",
            "title": "Hi",
            "body": "Body",
            "data": {"k": "v"},
            "priority": "high",
            "channelId": "orders",
        }]


class TestNotificationService:
    """Tests for inbox writes and reads"""

    async def test_notify_persists_and_pushes(self, test_db, notifications, push_transport, factory):
        """Test a notification is stored unread and pushed with its ids"""
        user = await factory.user(push_token="ExponentPushToken[u1]")
        order_id = uuid.uuid4()

        notification = await notifications.notify(
            user.id, NotificationType.ORDER_STATUS, "Order Update", "shipped", order_id=order_id
        )

        assert notification.is_read is False
        tokens, message = push_transport.sent[0]
        assert tokens == ["ExponentPushToken[u1]"]
        assert message.data["order_id"] == str(order_id)
        assert message.data["type"] == "order_status"

    async def test_push_failure_keeps_record(self, test_db, factory):
        """Test a failing push provider never loses the inbox record"""
        user = await factory.user(push_token="ExponentPushToken[u1]")
        service = NotificationService(test_db, BrokenTransport())

        await service.notify(user.id, NotificationType.GENERAL, "Hello", "World")

        assert await service.unread_count(user.id) == 1

    async def test_invalid_tokens_are_skipped(self, test_db, push_transport, factory):
        """Test users without a valid token get no push"""
        user = await factory.user(push_token="not-a-token")
        dispatcher = PushDispatcher(test_db, push_transport)

        accepted = await dispatcher.dispatch([user.id], PushMessage("t", "b"))

        assert accepted == 0
        assert push_transport.sent == []

    async def test_notify_many_dedupes(self, test_db, notifications, factory):
        """Test bulk notifications create one record per distinct recipient"""
        first = await factory.user()
        second = await factory.user()

        created = await notifications.notify_many(
            [first.id, second.id, first.id], NotificationType.GENERAL, "News", "Hello"
        )

        assert created == 2
        assert await notifications.unread_count(first.id) == 1

    async def test_inbox_paging_and_read_flags(self, test_db, notifications, factory):
        """Test paging, unread counts, mark read and mark all read"""
        user = await factory.user()
        for n in range(5):
            await notifications.notify(user.id, NotificationType.GENERAL, f"Note {n}", "body")

        page = await notifications.list_for(user.id, page=2, limit=2)
        assert (page.total, page.pages, len(page.items), page.unread_count) == (5, 3, 2, 5)

        await notifications.mark_read(user.id, page.items[0].id)
        assert await notifications.unread_count(user.id) == 4

        assert await notifications.mark_all_read(user.id) == 4
        assert await notifications.unread_count(user.id) == 0

    async def test_only_recipient_may_touch(self, test_db, notifications, factory):
        """Test other users cannot read or delete a notification"""
        owner = await factory.user()
        intruder = await factory.user()
        notification = await notifications.notify(owner.id, NotificationType.GENERAL, "Private", "body")

        with pytest.raises(AuthorizationError):
            await notifications.mark_read(intruder.id, notification.id)
        with pytest.raises(AuthorizationError):
            await notifications.delete(intruder.id, notification.id)

        await notifications.delete(owner.id, notification.id)
        with pytest.raises(NotFoundError):
            await notifications.mark_read(owner.id, notification.id)
