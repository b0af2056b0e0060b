from typing import List, Optional
from uuid import UUID

from pydantic import ValidationError

from app.config.config import settings
from app.schemas.message_schemas import (
    AdminConversationCreateSchema,
    AdminConversationSchema,
    ConversationSummarySchema,
    ImageUpload,
    MessageCreateSchema,
    ThreadKind,
)
from app.schemas.notification_schemas import NotificationSchema
from app.schemas.tracking_schemas import TrackingEventCreateSchema, TrackingEventSchema
from app.schemas.user_schemas import Actor
from app.sync.client import BackendClient
from app.sync.notices import NoticeEmitter, Notifier
from app.utils.exceptions import AuthorizationDenied, BackendError, InvalidInput
from app.utils.logger_config import setup_logger

logger = setup_logger()

# Caption stored for a photo sent without text
IMAGE_ONLY_CAPTION = "📷 Image"


class Gateway(NoticeEmitter):
    """
    User-initiated writes, each paired with a success or failure notice.

    Failures never propagate: they are logged, reported through the
    notifier and turned into a False/None result. Nothing is retried.
    """

    def __init__(
        self,
        client: BackendClient,
        actor: Optional[Actor],
        notify: Optional[Notifier] = None,
    ):
        super().__init__(notify)
        self.client = client
        self.actor = actor

    async def send_message(
        self,
        kind: ThreadKind,
        conversation_id: Optional[UUID],
        body: Optional[str],
        image: Optional[ImageUpload] = None,
    ) -> bool:
        """
        Insert one message authored by the current actor.

        Returns True once the backend accepted the row. The sender's own
        list is not touched here: the row comes back through the
        subscription like any other. A photo with no text is sent with
        IMAGE_ONLY_CAPTION as its content.
        """
        text = (body or "").strip()
        if not text and image is not None:
            text = IMAGE_ONLY_CAPTION
        if not text or conversation_id is None or self.actor is None:
            logger.debug("send_message skipped: empty body, scope or actor")
            return False

        image_url = None
        if image is not None:
            image_url = await self.upload_image(image, settings.MESSAGE_IMAGES_FOLDER)
            if image_url is None:
                return False

        try:
            await self.client.insert_message(
                kind,
                conversation_id,
                self.actor,
                MessageCreateSchema(
                    content=text,
                    image_url=image_url,
                    image_type=image.content_type if image else None,
                ),
            )
        except AuthorizationDenied as e:
            logger.warning(f"Message to {conversation_id} rejected: {e.detail}")
            await self._error("Message not sent", "You cannot write in this conversation")
            return False
        except BackendError as e:
            logger.error(f"Error sending message to {conversation_id}: {e.detail}")
            await self._error("Message not sent", "Could not send the message")
            return False
        await self._success("Message sent", "Your message was sent")
        return True

    async def upload_image(
        self, image: ImageUpload, folder: str = settings.MESSAGE_IMAGES_FOLDER
    ) -> Optional[str]:
        if self.actor is None:
            return None
        try:
            url = await self.client.upload_image(
                folder, self.actor.id, image.filename, image.data, image.content_type
            )
        except InvalidInput as e:
            await self._error("Invalid file", str(e))
            return None
        except BackendError as e:
            logger.error(f"Error uploading {image.filename}: {e.detail}")
            await self._error("Upload failed", "Could not upload the image")
            return None
        await self._success("Image uploaded", image.filename)
        return url

    async def log_tracking_event(
        self,
        assignment_id: UUID,
        event_data: TrackingEventCreateSchema,
    ) -> Optional[TrackingEventSchema]:
        if self.actor is None:
            return None
        try:
            event = await self.client.insert_tracking_event(
                assignment_id, self.actor, event_data
            )
        except AuthorizationDenied as e:
            logger.warning(f"Tracking event on {assignment_id} rejected: {e.detail}")
            await self._error("Not allowed", "Only the traveler can log tracking events")
            return None
        except BackendError as e:
            logger.error(f"Error logging tracking event on {assignment_id}: {e.detail}")
            await self._error("Error", "Could not log the tracking event")
            return None
        await self._success("Tracking updated", "The tracking event was recorded")
        return event

    async def create_admin_conversation(
        self, subject: str
    ) -> Optional[AdminConversationSchema]:
        if self.actor is None:
            return None
        try:
            conversation_data = AdminConversationCreateSchema(subject=subject)
        except ValidationError:
            await self._error("Subject required", "Describe your request to contact support")
            return None
        try:
            conversation = await self.client.create_admin_conversation(
                self.actor, conversation_data
            )
        except BackendError as e:
            logger.error(f"Error opening support conversation: {e.detail}")
            await self._error("Error", "Could not contact support")
            return None
        await self._success("Conversation started", "Support will answer shortly")
        return conversation

    async def delete_shipment(self, shipment_id: UUID) -> bool:
        if self.actor is None:
            return False
        try:
            await self.client.delete_shipment(shipment_id, self.actor)
        except AuthorizationDenied as e:
            logger.warning(f"Delete of shipment {shipment_id} denied: {e.detail}")
            await self._error(
                "Cannot delete", "Only delivered shipments can be deleted"
            )
            return False
        except BackendError as e:
            logger.error(f"Error deleting shipment {shipment_id}: {e.detail}")
            await self._error("Error", "Could not delete the shipment")
            return False
        await self._success("Shipment deleted", "The shipment was removed")
        return True

    async def mark_notification_read(
        self, notification_id: UUID
    ) -> Optional[NotificationSchema]:
        if self.actor is None:
            return None
        try:
            return await self.client.mark_notification_read(notification_id, self.actor)
        except BackendError as e:
            logger.error(f"Error marking notification {notification_id} read: {e.detail}")
            await self._error("Error", "Could not update the notification")
            return None

    async def mark_all_notifications_read(self) -> int:
        if self.actor is None:
            return 0
        try:
            count = await self.client.mark_all_notifications_read(self.actor)
        except BackendError as e:
            logger.error(f"Error marking notifications read: {e.detail}")
            await self._error("Error", "Could not update the notifications")
            return 0
        await self._success("Done", "All notifications marked as read")
        return count

    async def load_conversations(self) -> List[ConversationSummarySchema]:
        """Read path: failures degrade to an empty list, logged only"""
        if self.actor is None:
            return []
        try:
            return await self.client.conversation_summaries(self.actor)
        except BackendError as e:
            logger.error(f"Error loading conversations: {e.detail}")
            return []


class MessageComposer:
    """The compose box: text survives a failed send"""

    def __init__(
        self,
        gateway: Gateway,
        kind: ThreadKind = ThreadKind.DIRECT,
        conversation_id: Optional[UUID] = None,
    ):
        self.gateway = gateway
        self.kind = kind
        self.conversation_id = conversation_id
        self.text = ""
        self.image: Optional[ImageUpload] = None
        self.sending = False

    async def submit(self) -> bool:
        if self.sending:
            return False
        self.sending = True
        try:
            sent = await self.gateway.send_message(
                self.kind, self.conversation_id, self.text, self.image
            )
        finally:
            self.sending = False
        if sent:
            self.text = ""
            self.image = None
        return sent
