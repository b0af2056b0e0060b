import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database.database import async_session, get_db_context
from app.schemas.message_schemas import (
    AdminConversationCreateSchema,
    AdminConversationSchema,
    ConversationSchema,
    ConversationSummarySchema,
    MessageCreateSchema,
    MessageSchema,
    ThreadKind,
)
from app.schemas.notification_schemas import (
    NotificationListResponseSchema,
    NotificationSchema,
)
from app.schemas.realtime_schemas import ChangeFilter
from app.schemas.tracking_schemas import (
    AssignmentSchema,
    ShipmentSchema,
    TrackingEventCreateSchema,
    TrackingEventSchema,
)
from app.schemas.user_schemas import Actor
from app.services import (
    assignment_service,
    message_service,
    notification_service,
    shipment_service,
    tracking_service,
)
from app.sync.feed import BaseChangeFeed, ErrorCallback, EventCallback, FeedSubscription
from app.utils.exceptions import BackendError, SubscriptionError
from app.utils.logger_config import setup_logger
from app.utils.middleware import with_timeout
from app.utils.s3_service import ObjectStorage

logger = setup_logger()


class BackendClient:
    """
    Everything the sync layer may ask of the backend: table reads and
    writes, change-feed subscriptions and blob uploads. One session per
    call, each call bounded by BACKEND_CALL_TIMEOUT.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session,
        feed: Optional[BaseChangeFeed] = None,
        storage: Optional[ObjectStorage] = None,
    ):
        self.session_factory = session_factory
        self.feed = feed
        self.storage = storage

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        try:
            async with get_db_context(self.session_factory) as db:
                yield db
        except SQLAlchemyError as e:
            logger.error(f"Database error: {e}")
            raise BackendError(f"Database error: {str(e)}") from e

    # Messaging

    @with_timeout()
    async def fetch_messages(
        self, kind: ThreadKind, conversation_id: UUID, actor: Actor
    ) -> List[MessageSchema]:
        async with self._session() as db:
            return await message_service.get_messages(db, kind, conversation_id, actor)

    @with_timeout()
    async def insert_message(
        self,
        kind: ThreadKind,
        conversation_id: UUID,
        actor: Actor,
        message_data: MessageCreateSchema,
    ) -> MessageSchema:
        async with self._session() as db:
            return await message_service.insert_message(
                db, kind, conversation_id, actor, message_data, self.feed
            )

    @with_timeout()
    async def mark_conversation_read(
        self, kind: ThreadKind, conversation_id: UUID, actor: Actor
    ) -> int:
        async with self._session() as db:
            return await message_service.mark_conversation_read(
                db, kind, conversation_id, actor, self.feed
            )

    @with_timeout()
    async def conversation_ids_for(self, actor: Actor) -> List[UUID]:
        async with self._session() as db:
            return await message_service.get_conversation_ids(db, actor)

    @with_timeout()
    async def count_unread_messages(
        self, conversation_ids: Sequence[UUID], actor: Actor
    ) -> int:
        async with self._session() as db:
            return await message_service.count_unread_messages(
                db, conversation_ids, actor
            )

    @with_timeout()
    async def list_conversations(self, actor: Actor) -> List[ConversationSchema]:
        async with self._session() as db:
            return await message_service.list_conversations(db, actor)

    @with_timeout()
    async def conversation_summaries(
        self, actor: Actor
    ) -> List[ConversationSummarySchema]:
        async with self._session() as db:
            return await message_service.get_conversation_summaries(db, actor)

    @with_timeout()
    async def get_or_create_conversation(
        self,
        actor: Actor,
        assignment_id: Optional[UUID],
        sender_id: UUID,
        traveler_id: UUID,
    ) -> ConversationSchema:
        async with self._session() as db:
            return await message_service.get_or_create_conversation(
                db, actor, assignment_id, sender_id, traveler_id, self.feed
            )

    @with_timeout()
    async def admin_conversation(
        self, actor: Actor
    ) -> Optional[AdminConversationSchema]:
        async with self._session() as db:
            return await message_service.get_admin_conversation(db, actor)

    @with_timeout()
    async def create_admin_conversation(
        self, actor: Actor, conversation_data: AdminConversationCreateSchema
    ) -> AdminConversationSchema:
        async with self._session() as db:
            return await message_service.create_admin_conversation(
                db, actor, conversation_data, self.feed
            )

    @with_timeout()
    async def list_admin_conversations(
        self, actor: Actor
    ) -> List[AdminConversationSchema]:
        async with self._session() as db:
            return await message_service.list_admin_conversations(db, actor)

    # Tracking

    @with_timeout()
    async def fetch_tracking_events(
        self, assignment_id: UUID, actor: Actor, descending: bool = False
    ) -> List[TrackingEventSchema]:
        async with self._session() as db:
            return await tracking_service.get_tracking_events(
                db, assignment_id, actor, descending
            )

    @with_timeout()
    async def latest_tracking_event(
        self, assignment_id: UUID, actor: Actor
    ) -> Optional[TrackingEventSchema]:
        async with self._session() as db:
            return await tracking_service.get_latest_tracking_event(
                db, assignment_id, actor
            )

    @with_timeout()
    async def insert_tracking_event(
        self,
        assignment_id: UUID,
        actor: Actor,
        event_data: TrackingEventCreateSchema,
    ) -> TrackingEventSchema:
        async with self._session() as db:
            return await tracking_service.insert_tracking_event(
                db, assignment_id, actor, event_data, self.feed
            )

    # Assignments and shipments

    @with_timeout()
    async def get_assignment(self, assignment_id: UUID, actor: Actor) -> AssignmentSchema:
        async with self._session() as db:
            return await assignment_service.get_assignment(db, assignment_id, actor)

    @with_timeout()
    async def list_assignments(self, actor: Actor) -> List[AssignmentSchema]:
        async with self._session() as db:
            return await assignment_service.list_assignments_for_user(db, actor)

    @with_timeout()
    async def get_shipment(self, shipment_id: UUID) -> ShipmentSchema:
        async with self._session() as db:
            return await shipment_service.get_shipment(db, shipment_id)

    @with_timeout()
    async def stamp_pickup(self, assignment_id: UUID, actor: Actor) -> AssignmentSchema:
        async with self._session() as db:
            return await assignment_service.stamp_pickup(
                db, assignment_id, actor, self.feed
            )

    @with_timeout()
    async def stamp_delivery(
        self, assignment_id: UUID, actor: Actor
    ) -> AssignmentSchema:
        async with self._session() as db:
            return await assignment_service.stamp_delivery(
                db, assignment_id, actor, self.feed
            )

    @with_timeout()
    async def delete_shipment(self, shipment_id: UUID, actor: Actor) -> None:
        async with self._session() as db:
            await shipment_service.delete_shipment(db, shipment_id, actor, self.feed)

    # Notifications

    @with_timeout()
    async def notifications(
        self, actor: Actor, skip: int = 0, limit: int = 50
    ) -> NotificationListResponseSchema:
        async with self._session() as db:
            return await notification_service.get_user_notifications(
                db, actor, skip, limit
            )

    @with_timeout()
    async def count_unread_notifications(self, actor: Actor) -> int:
        async with self._session() as db:
            return await notification_service.count_unread_notifications(db, actor)

    @with_timeout()
    async def mark_notification_read(
        self, notification_id: UUID, actor: Actor
    ) -> NotificationSchema:
        async with self._session() as db:
            return await notification_service.mark_notification_read(
                db, notification_id, actor, self.feed
            )

    @with_timeout()
    async def mark_all_notifications_read(self, actor: Actor) -> int:
        async with self._session() as db:
            return await notification_service.mark_all_notifications_read(
                db, actor, self.feed
            )

    # Storage and change feed

    @with_timeout()
    async def upload_image(
        self,
        folder: str,
        owner_id: UUID,
        filename: str,
        data: bytes,
        content_type: str,
    ) -> str:
        if self.storage is None:
            raise BackendError("No object storage configured")
        # boto3 blocks; keep it off the event loop
        return await asyncio.to_thread(
            self.storage.upload, folder, owner_id, filename, data, content_type
        )

    async def subscribe(
        self,
        change_filter: ChangeFilter,
        callback: EventCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> FeedSubscription:
        if self.feed is None:
            raise SubscriptionError("No change feed configured")
        try:
            return await self.feed.subscribe(change_filter, callback, on_error)
        except SubscriptionError:
            raise
        except Exception as e:
            raise SubscriptionError(
                f"Could not subscribe to {change_filter.table}: {e}"
            ) from e
