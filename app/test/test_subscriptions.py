import pytest
from uuid import uuid4

from app.schemas.realtime_schemas import ChangeEvent, ChangeEventType, ChangeFilter
from app.sync.client import BackendClient
from app.sync.subscriptions import SubscriptionManager, normalize_scope
from app.utils.exceptions import InvalidInput, SubscriptionError


def message_event(conversation_id, content="hi", event_type=ChangeEventType.INSERT):
    return ChangeEvent(
        table="messages",
        event_type=event_type,
        record={
            "id": str(uuid4()),
            "conversation_id": str(conversation_id),
            "content": content,
        },
    )


class TestNormalizeScope:
    def test_single_and_collection(self):
        first, second = uuid4(), uuid4()
        assert normalize_scope(first) == (str(first),)
        assert normalize_scope([second, first]) == normalize_scope([first, second])

    def test_empty(self):
        assert normalize_scope(None) == ()
        assert normalize_scope([]) == ()
        assert normalize_scope("") == ()


class TestSubscriptionManager:
    """One live subscription per visible scope."""

    @pytest.mark.asyncio
    async def test_activate_requires_scope(self, backend):
        manager = SubscriptionManager(backend, "messages", "conversation_id", lambda e: None)
        with pytest.raises(InvalidInput):
            await manager.activate(None)

    @pytest.mark.asyncio
    async def test_same_scope_twice_keeps_one_subscription(self, backend, feed):
        manager = SubscriptionManager(backend, "messages", "conversation_id", lambda e: None)
        conversation_id = uuid4()

        await manager.activate(conversation_id)
        await manager.activate(conversation_id)

        assert feed.subscription_count("messages") == 1
        assert manager.is_active

    @pytest.mark.asyncio
    async def test_switching_scope_never_leaves_two_open(self, backend, feed):
        manager = SubscriptionManager(backend, "messages", "conversation_id", lambda e: None)
        a, b = uuid4(), uuid4()

        for scope in (a, b, a, b):
            await manager.activate(scope)
            assert feed.subscription_count("messages") == 1

        assert manager.scope == (str(b),)
        await manager.deactivate()
        assert feed.subscription_count("messages") == 0

    @pytest.mark.asyncio
    async def test_deactivate_without_subscription_is_safe(self, backend):
        manager = SubscriptionManager(backend, "messages", "conversation_id", lambda e: None)
        await manager.deactivate()
        await manager.deactivate()
        assert not manager.is_active

    @pytest.mark.asyncio
    async def test_delivers_only_the_active_scope_in_order(self, backend, feed):
        received = []
        manager = SubscriptionManager(backend, "messages", "conversation_id", received.append)
        mine, other = uuid4(), uuid4()
        await manager.activate(mine)

        await feed.publish(message_event(mine, "one"))
        await feed.publish(message_event(other, "not mine"))
        await feed.publish(message_event(mine, "two"))
        await feed.publish(message_event(mine, "ignored", ChangeEventType.UPDATE))

        assert [event.record["content"] for event in received] == ["one", "two"]

    @pytest.mark.asyncio
    async def test_no_delivery_after_deactivate(self, backend, feed):
        received = []
        manager = SubscriptionManager(backend, "messages", "conversation_id", received.append)
        conversation_id = uuid4()
        await manager.activate(conversation_id)

        await manager.deactivate()
        await feed.publish(message_event(conversation_id))

        assert received == []

    @pytest.mark.asyncio
    async def test_stale_generation_is_dropped(self, backend):
        """An event already in flight for a released scope is not handed on."""
        received = []
        manager = SubscriptionManager(backend, "messages", "conversation_id", received.append)
        conversation_id = uuid4()
        await manager.activate(conversation_id)
        stale_generation = manager.generation

        await manager.deactivate()
        await manager._deliver(message_event(conversation_id), stale_generation)

        assert received == []

    @pytest.mark.asyncio
    async def test_scope_in_several_columns(self, backend, feed):
        received = []
        user_id = uuid4()
        manager = SubscriptionManager(
            backend, "conversations", ("sender_id", "traveler_id"), received.append
        )
        await manager.activate(user_id)

        for record in (
            {"id": "1", "sender_id": str(user_id), "traveler_id": str(uuid4())},
            {"id": "2", "sender_id": str(uuid4()), "traveler_id": str(user_id)},
            {"id": "3", "sender_id": str(uuid4()), "traveler_id": str(uuid4())},
        ):
            await feed.publish(
                ChangeEvent(table="conversations", event_type=ChangeEventType.INSERT, record=record)
            )

        assert [event.record["id"] for event in received] == ["1", "2"]

    @pytest.mark.asyncio
    async def test_reconnects_after_feed_error(self, backend, feed):
        received = []
        manager = SubscriptionManager(backend, "messages", "conversation_id", received.append)
        conversation_id = uuid4()
        await manager.activate(conversation_id)

        await feed.fail("messages", SubscriptionError("connection lost"))
        # Reopening runs as a background task
        await manager._reconnect_task

        assert manager.is_active
        assert feed.subscription_count("messages") == 1
        await feed.publish(message_event(conversation_id, "after reconnect"))
        assert [event.record["content"] for event in received] == ["after reconnect"]

    @pytest.mark.asyncio
    async def test_without_reconnect_stays_inactive(self, backend, feed):
        manager = SubscriptionManager(
            backend, "messages", "conversation_id", lambda e: None, reconnect=False
        )
        await manager.activate(uuid4())

        await feed.fail("messages", SubscriptionError("connection lost"))

        assert not manager.is_active
        assert feed.subscription_count("messages") == 0

    @pytest.mark.asyncio
    async def test_open_retries_then_gives_up(self, session_factory, monkeypatch):
        attempts = []

        async def refusing_subscribe(change_filter: ChangeFilter, callback, on_error=None):
            attempts.append(change_filter)
            raise SubscriptionError("broker down")

        client = BackendClient(session_factory=session_factory)
        monkeypatch.setattr(client, "subscribe", refusing_subscribe)
        manager = SubscriptionManager(client, "messages", "conversation_id", lambda e: None)

        await manager.activate(uuid4())

        assert len(attempts) == 3
        assert not manager.is_active

    @pytest.mark.asyncio
    async def test_context_manager_releases(self, backend, feed):
        async with SubscriptionManager(
            backend, "messages", "conversation_id", lambda e: None
        ) as manager:
            await manager.activate(uuid4())
            assert feed.subscription_count("messages") == 1

        assert feed.subscription_count("messages") == 0

    @pytest.mark.asyncio
    async def test_client_without_feed(self, session_factory):
        client = BackendClient(session_factory=session_factory)
        with pytest.raises(SubscriptionError):
            await client.subscribe(ChangeFilter(table="messages"), lambda e: None)
