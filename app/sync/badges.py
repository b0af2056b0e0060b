from typing import List, Optional

from pydantic import ValidationError

from app.schemas.notification_schemas import NotificationSchema
from app.schemas.realtime_schemas import ChangeEvent, ChangeEventType
from app.schemas.user_schemas import Actor
from app.sync.client import BackendClient
from app.sync.live_list import LiveList
from app.sync.notices import NoticeEmitter, Notifier
from app.sync.subscriptions import SubscriptionManager
from app.utils.exceptions import BackendError
from app.utils.logger_config import setup_logger

logger = setup_logger()


class UnreadMessagesBadge:
    """
    Unread-message indicator for one user.

    The count is never kept as a running tally. Every relevant change
    triggers recompute(), which re-derives it from the user's
    conversations and their unread messages from the other party.
    """

    def __init__(self, client: BackendClient, actor: Actor):
        self.client = client
        self.actor = actor
        self.count = 0
        self.conversation_ids: List[str] = []
        self.messages = SubscriptionManager(
            client,
            "messages",
            "conversation_id",
            self._on_change,
            events=(ChangeEventType.INSERT, ChangeEventType.UPDATE),
        )
        self.conversations = SubscriptionManager(
            client,
            "conversations",
            ("sender_id", "traveler_id"),
            self._on_change,
        )

    @property
    def has_unread(self) -> bool:
        return self.count > 0

    async def start(self) -> int:
        await self.conversations.activate(self.actor.id)
        return await self.recompute()

    async def stop(self) -> None:
        await self.messages.deactivate()
        await self.conversations.deactivate()

    async def recompute(self) -> int:
        try:
            conversation_ids = await self.client.conversation_ids_for(self.actor)
            count = await self.client.count_unread_messages(conversation_ids, self.actor)
        except BackendError as e:
            logger.error(f"Error computing unread messages for {self.actor.id}: {e.detail}")
            return self.count

        self.count = count
        self.conversation_ids = [str(conversation_id) for conversation_id in conversation_ids]
        if self.conversation_ids:
            await self.messages.activate(self.conversation_ids)
        else:
            await self.messages.deactivate()
        return self.count

    async def _on_change(self, event: ChangeEvent) -> None:
        await self.recompute()

    async def __aenter__(self) -> "UnreadMessagesBadge":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()


class NotificationInbox(NoticeEmitter):
    """
    A user's notifications, newest first, with a live unread count.

    Each new notification is surfaced through the notifier as it arrives.
    """

    def __init__(
        self,
        client: BackendClient,
        actor: Actor,
        notify: Optional[Notifier] = None,
        limit: int = 50,
    ):
        super().__init__(notify)
        self.client = client
        self.actor = actor
        self.limit = limit
        self.notifications: LiveList[NotificationSchema] = LiveList(descending=True)
        self.unread_count = 0
        self.subscription = SubscriptionManager(
            client,
            "notifications",
            "user_id",
            self._on_change,
            events=(ChangeEventType.INSERT, ChangeEventType.UPDATE),
        )

    async def start(self) -> List[NotificationSchema]:
        await self.subscription.activate(self.actor.id)
        try:
            response = await self.client.notifications(self.actor, limit=self.limit)
        except BackendError as e:
            logger.error(f"Error fetching notifications: {e.detail}")
            return self.notifications.items
        self.notifications.merge(response.notifications)
        self.unread_count = response.unread_count
        return self.notifications.items

    async def stop(self) -> None:
        await self.subscription.deactivate()
        self.notifications.clear()

    async def refresh_unread_count(self) -> int:
        try:
            self.unread_count = await self.client.count_unread_notifications(self.actor)
        except BackendError as e:
            logger.error(f"Error counting unread notifications: {e.detail}")
        return self.unread_count

    async def mark_read(self, notification_id) -> bool:
        try:
            notification = await self.client.mark_notification_read(
                notification_id, self.actor
            )
        except BackendError as e:
            logger.error(f"Error marking notification {notification_id} read: {e.detail}")
            await self._error("Error", "Could not update the notification")
            return False
        self.notifications.update(notification)
        await self.refresh_unread_count()
        return True

    async def mark_all_read(self) -> int:
        try:
            count = await self.client.mark_all_notifications_read(self.actor)
        except BackendError as e:
            logger.error(f"Error marking notifications read: {e.detail}")
            await self._error("Error", "Could not update the notifications")
            return 0
        await self.refresh_unread_count()
        return count

    async def _on_change(self, event: ChangeEvent) -> None:
        try:
            notification = NotificationSchema.model_validate(event.record)
        except ValidationError as e:
            logger.warning(f"Dropped malformed notification: {e}")
            return

        if event.event_type == ChangeEventType.INSERT:
            if self.notifications.append(notification):
                await self._notice(
                    notification.type,
                    notification.title,
                    notification.message,
                    link=notification.link,
                )
        else:
            self.notifications.update(notification)
        await self.refresh_unread_count()
