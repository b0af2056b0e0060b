import pytest
from datetime import datetime, timedelta
from uuid import uuid4

from app.schemas.message_schemas import MessageCreateSchema, ThreadKind
from app.schemas.notification_schemas import NotificationCreateSchema
from app.schemas.status_schema import NotificationLevel
from app.schemas.user_schemas import Actor
from app.services.notification_service import create_notification
from app.sync.badges import NotificationInbox, UnreadMessagesBadge
from app.test.factories import ConversationFactory, MessageFactory, NotificationFactory
from app.utils.exceptions import AuthorizationDenied

DIRECT = ThreadKind.DIRECT


class TestUnreadMessagesBadge:
    """Unread count derived from conversations joined with unread messages."""

    @pytest.mark.asyncio
    async def test_count_matches_definition(self, backend, persist, conversation, sender, traveler):
        other = ConversationFactory(sender_id=uuid4(), traveler_id=traveler.id)
        await persist(
            other,
            MessageFactory(conversation_id=conversation.id, sender_id=traveler.id),
            MessageFactory(conversation_id=conversation.id, sender_id=traveler.id),
            # Own messages never count
            MessageFactory(conversation_id=conversation.id, sender_id=sender.id),
            # Already read
            MessageFactory(conversation_id=conversation.id, sender_id=traveler.id,
                           read_at=conversation.created_at),
            # A conversation the sender is not part of
            MessageFactory(conversation_id=other.id, sender_id=other.sender_id),
        )
        badge = UnreadMessagesBadge(backend, sender)

        assert await badge.recompute() == 2
        assert badge.has_unread

    @pytest.mark.asyncio
    async def test_no_conversations(self, backend, sender, feed):
        badge = UnreadMessagesBadge(backend, sender)

        assert await badge.start() == 0
        assert badge.has_unread is False
        assert feed.subscription_count("messages") == 0
        await badge.stop()

    @pytest.mark.asyncio
    async def test_live_insert_and_read_update(self, backend, feed, conversation, sender, traveler):
        badge = UnreadMessagesBadge(backend, sender)
        await badge.start()
        assert badge.count == 0

        await backend.insert_message(
            DIRECT, conversation.id, traveler, MessageCreateSchema(content="Parcel ready?")
        )
        assert badge.count == 1

        await backend.mark_conversation_read(DIRECT, conversation.id, sender)
        assert badge.count == 0
        await badge.stop()

    @pytest.mark.asyncio
    async def test_own_message_does_not_count(self, backend, conversation, sender):
        badge = UnreadMessagesBadge(backend, sender)
        await badge.start()

        await backend.insert_message(
            DIRECT, conversation.id, sender, MessageCreateSchema(content="Hello")
        )

        assert badge.count == 0
        await badge.stop()

    @pytest.mark.asyncio
    async def test_new_conversation_widens_the_filter(self, backend, feed, assignment, sender, traveler):
        badge = UnreadMessagesBadge(backend, sender)
        await badge.start()
        assert badge.messages.is_active is False

        created = await backend.get_or_create_conversation(
            traveler, assignment.id, sender.id, traveler.id
        )
        assert badge.conversation_ids == [str(created.id)]
        assert feed.subscription_count("messages") == 1

        await backend.insert_message(
            DIRECT, created.id, traveler, MessageCreateSchema(content="Hi!")
        )
        assert badge.count == 1
        await badge.stop()

    @pytest.mark.asyncio
    async def test_messages_elsewhere_do_not_reach_the_badge(self, backend, persist, conversation, sender):
        stranger_a, stranger_b = uuid4(), uuid4()
        unrelated = ConversationFactory(sender_id=stranger_a, traveler_id=stranger_b)
        await persist(unrelated)
        badge = UnreadMessagesBadge(backend, sender)
        await badge.start()
        calls = []
        original = badge.recompute

        async def counting_recompute():
            calls.append(1)
            return await original()

        badge.recompute = counting_recompute

        await backend.insert_message(
            DIRECT, unrelated.id, Actor(id=stranger_a), MessageCreateSchema(content="x")
        )

        assert calls == []
        await badge.stop()

    @pytest.mark.asyncio
    async def test_stop_releases_subscriptions(self, backend, feed, conversation, sender):
        async with UnreadMessagesBadge(backend, sender):
            assert feed.subscription_count() == 2

        assert feed.subscription_count() == 0


class TestNotificationInbox:
    """Newest-first notifications with a live unread count."""

    @pytest.mark.asyncio
    async def test_start_loads_newest_first(self, backend, persist, sender):
        now = datetime.now()
        await persist(
            NotificationFactory(user_id=sender.id, title="old", created_at=now),
            NotificationFactory(user_id=sender.id, title="new", created_at=now + timedelta(minutes=1), read=True),
            NotificationFactory(user_id=uuid4(), title="not mine", created_at=now),
        )
        inbox = NotificationInbox(backend, sender)

        items = await inbox.start()

        assert [n.title for n in items] == ["new", "old"]
        assert inbox.unread_count == 1
        await inbox.stop()

    @pytest.mark.asyncio
    async def test_new_notification_raises_notice(self, backend, feed, session_factory, sender, notices):
        inbox = NotificationInbox(backend, sender, notify=notices.append)
        await inbox.start()

        async with session_factory() as db:
            await create_notification(
                db,
                NotificationCreateSchema(
                    user_id=sender.id,
                    title="Payment released",
                    message="Your traveler can now pick up the parcel",
                    type=NotificationLevel.SUCCESS,
                    link="/tracking",
                ),
                feed,
            )

        assert inbox.notifications.items[0].title == "Payment released"
        assert inbox.unread_count == 1
        assert notices[0].title == "Payment released"
        assert notices[0].level == NotificationLevel.SUCCESS
        assert notices[0].link == "/tracking"
        await inbox.stop()

    @pytest.mark.asyncio
    async def test_other_users_notifications_ignored(self, backend, feed, session_factory, sender, notices):
        inbox = NotificationInbox(backend, sender, notify=notices.append)
        await inbox.start()

        async with session_factory() as db:
            await create_notification(
                db,
                NotificationCreateSchema(user_id=uuid4(), title="Hi", message="Not for you"),
                feed,
            )

        assert len(inbox.notifications) == 0
        assert notices == []
        await inbox.stop()

    @pytest.mark.asyncio
    async def test_mark_read_and_mark_all(self, backend, persist, sender):
        first = NotificationFactory(user_id=sender.id)
        second = NotificationFactory(user_id=sender.id)
        third = NotificationFactory(user_id=sender.id)
        await persist(first, second, third)
        inbox = NotificationInbox(backend, sender)
        await inbox.start()
        assert inbox.unread_count == 3

        assert await inbox.mark_read(first.id) is True
        assert inbox.unread_count == 2
        assert inbox.notifications.get(first.id).read is True

        assert await inbox.mark_all_read() == 2
        assert inbox.unread_count == 0
        assert await inbox.mark_all_read() == 0
        await inbox.stop()

    @pytest.mark.asyncio
    async def test_cannot_mark_someone_elses(self, backend, persist, sender, outsider, notices):
        foreign = NotificationFactory(user_id=outsider.id)
        await persist(foreign)
        inbox = NotificationInbox(backend, sender, notify=notices.append)

        assert await inbox.mark_read(foreign.id) is False
        assert notices[0].level == NotificationLevel.ERROR
        with pytest.raises(AuthorizationDenied):
            await backend.mark_notification_read(foreign.id, sender)
