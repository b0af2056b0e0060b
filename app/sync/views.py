from typing import List, Optional
from uuid import UUID

from pydantic import ValidationError

from app.schemas.message_schemas import ImageUpload, MessageSchema, ThreadKind
from app.schemas.realtime_schemas import ChangeEvent, ChangeEventType
from app.schemas.status_schema import DeliveryStatus, TrackingEventType
from app.schemas.tracking_schemas import AssignmentSchema, TrackingEventSchema
from app.schemas.user_schemas import Actor
from app.services.message_service import message_table
from app.sync.client import BackendClient
from app.sync.gateway import Gateway
from app.sync.live_list import LiveList
from app.sync.notices import Notifier
from app.sync.status import next_action
from app.sync.subscriptions import SubscriptionManager
from app.utils.exceptions import BackendError
from app.utils.logger_config import setup_logger

logger = setup_logger()


class ConversationView:
    """
    An open chat thread: ascending message list kept live.

    open() subscribes before fetching, then merges the fetch by key, so a
    message inserted between the two is neither lost nor shown twice.
    """

    def __init__(
        self,
        client: BackendClient,
        actor: Actor,
        kind: ThreadKind = ThreadKind.DIRECT,
        notify: Optional[Notifier] = None,
    ):
        self.client = client
        self.actor = actor
        self.kind = kind
        self.gateway = Gateway(client, actor, notify)
        self.messages: LiveList[MessageSchema] = LiveList()
        self.conversation_id: Optional[UUID] = None
        self.loading = False
        self.subscription = SubscriptionManager(
            client,
            message_table(kind),
            "conversation_id",
            self._on_change,
            events=(ChangeEventType.INSERT, ChangeEventType.UPDATE),
        )

    async def open(self, conversation_id: UUID) -> List[MessageSchema]:
        if conversation_id == self.conversation_id and self.subscription.is_active:
            return self.messages.items

        self.messages.clear()
        self.conversation_id = conversation_id
        await self.subscription.activate(conversation_id)

        self.loading = True
        try:
            rows = await self.client.fetch_messages(self.kind, conversation_id, self.actor)
        except BackendError as e:
            logger.error(f"Error loading messages for {conversation_id}: {e.detail}")
            rows = []
        finally:
            self.loading = False

        if conversation_id != self.conversation_id:
            # Another thread was opened while this one was loading
            return self.messages.items
        self.messages.merge(rows)
        await self.mark_read()
        return self.messages.items

    async def mark_read(self) -> int:
        if self.conversation_id is None:
            return 0
        try:
            return await self.client.mark_conversation_read(
                self.kind, self.conversation_id, self.actor
            )
        except BackendError as e:
            logger.warning(f"Could not mark {self.conversation_id} read: {e.detail}")
            return 0

    async def send(self, body: str, image: Optional[ImageUpload] = None) -> bool:
        return await self.gateway.send_message(
            self.kind, self.conversation_id, body, image
        )

    async def close(self) -> None:
        await self.subscription.deactivate()
        self.conversation_id = None
        self.messages.clear()

    async def _on_change(self, event: ChangeEvent) -> None:
        try:
            message = MessageSchema.model_validate(event.record)
        except ValidationError as e:
            logger.warning(f"Dropped malformed {event.table} row: {e}")
            return
        if str(message.conversation_id) != str(self.conversation_id):
            return
        if event.event_type == ChangeEventType.INSERT:
            self.messages.append(message)
        else:
            self.messages.update(message)

    async def __aenter__(self) -> "ConversationView":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


class TrackingView:
    """Timeline of one assignment plus its live derived status"""

    def __init__(self, client: BackendClient, actor: Actor):
        self.client = client
        self.actor = actor
        self.events: LiveList[TrackingEventSchema] = LiveList()
        self.assignment: Optional[AssignmentSchema] = None
        self.assignment_id: Optional[UUID] = None
        self.loading = False
        self.event_subscription = SubscriptionManager(
            client, "tracking_events", "assignment_id", self._on_event
        )
        self.assignment_subscription = SubscriptionManager(
            client,
            "assignments",
            "id",
            self._on_assignment,
            events=(ChangeEventType.UPDATE,),
        )

    @property
    def latest(self) -> Optional[TrackingEventSchema]:
        return self.events.last

    @property
    def status(self) -> Optional[DeliveryStatus]:
        if self.assignment is None:
            return None
        return self.assignment.delivery_status

    @property
    def next_action(self) -> Optional[TrackingEventType]:
        if self.assignment is None:
            return None
        return next_action(
            self.assignment.payment_status,
            self.assignment.pickup_completed_at,
            self.assignment.delivery_completed_at,
        )

    async def open(self, assignment_id: UUID) -> List[TrackingEventSchema]:
        if assignment_id == self.assignment_id and self.event_subscription.is_active:
            return self.events.items

        self.events.clear()
        self.assignment = None
        self.assignment_id = assignment_id
        await self.event_subscription.activate(assignment_id)
        await self.assignment_subscription.activate(assignment_id)

        self.loading = True
        try:
            self.assignment = await self.client.get_assignment(assignment_id, self.actor)
            rows = await self.client.fetch_tracking_events(assignment_id, self.actor)
        except BackendError as e:
            logger.error(f"Error loading tracking for {assignment_id}: {e.detail}")
            rows = []
        finally:
            self.loading = False

        if assignment_id == self.assignment_id:
            self.events.merge(rows)
        return self.events.items

    async def close(self) -> None:
        await self.event_subscription.deactivate()
        await self.assignment_subscription.deactivate()
        self.assignment_id = None
        self.assignment = None
        self.events.clear()

    async def _on_event(self, event: ChangeEvent) -> None:
        try:
            tracking_event = TrackingEventSchema.model_validate(event.record)
        except ValidationError as e:
            logger.warning(f"Dropped malformed tracking event: {e}")
            return
        self.events.append(tracking_event)

    async def _on_assignment(self, event: ChangeEvent) -> None:
        try:
            self.assignment = AssignmentSchema.model_validate(event.record)
        except ValidationError as e:
            logger.warning(f"Dropped malformed assignment row: {e}")

    async def __aenter__(self) -> "TrackingView":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
