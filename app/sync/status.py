from datetime import datetime
from typing import Optional

from app.config.config import settings
from app.schemas.message_schemas import ImageUpload
from app.schemas.status_schema import DeliveryStatus, PaymentStatus, TrackingEventType
from app.schemas.tracking_schemas import AssignmentSchema, TrackingEventCreateSchema
from app.schemas.user_schemas import Actor
from app.sync.client import BackendClient
from app.sync.notices import NoticeEmitter, Notifier
from app.utils.exceptions import BackendError, InvalidInput
from app.utils.logger_config import setup_logger

logger = setup_logger()

DEFAULT_DESCRIPTIONS = {
    TrackingEventType.PICKUP: "Package picked up by the traveler",
    TrackingEventType.DELIVERY: "Package delivered to the recipient",
}


def derive_status(
    payment_status: PaymentStatus,
    pickup_completed_at: Optional[datetime],
    delivery_completed_at: Optional[datetime],
) -> DeliveryStatus:
    """
    Presentation status of an assignment, computed from its source fields.

    The label is never stored; every reader calls this.
    """
    if delivery_completed_at is not None:
        return DeliveryStatus.DELIVERED
    if pickup_completed_at is not None:
        return DeliveryStatus.IN_TRANSIT
    if payment_status == PaymentStatus.RELEASED:
        return DeliveryStatus.READY_FOR_PICKUP
    return DeliveryStatus.PENDING_PAYMENT


def next_action(
    payment_status: PaymentStatus,
    pickup_completed_at: Optional[datetime],
    delivery_completed_at: Optional[datetime],
) -> Optional[TrackingEventType]:
    """The single forward action a traveler may take, or None"""
    status = derive_status(payment_status, pickup_completed_at, delivery_completed_at)
    if status == DeliveryStatus.READY_FOR_PICKUP:
        return TrackingEventType.PICKUP
    if status == DeliveryStatus.IN_TRANSIT:
        return TrackingEventType.DELIVERY
    return None


class StatusUpdater(NoticeEmitter):
    """
    Traveler-side pickup and delivery confirmation.

    One confirmation runs at a time per updater: `loading` is set before
    the first backend call and cleared in a finally block.
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
        self.loading = False

    def can_act(self, assignment: AssignmentSchema) -> bool:
        return self.actor is not None and self.actor.id == assignment.traveler_id

    def available_action(self, assignment: AssignmentSchema) -> Optional[TrackingEventType]:
        if not self.can_act(assignment):
            return None
        return next_action(
            assignment.payment_status,
            assignment.pickup_completed_at,
            assignment.delivery_completed_at,
        )

    async def confirm_pickup(
        self,
        assignment: AssignmentSchema,
        location: Optional[str] = None,
        description: Optional[str] = None,
        photo: Optional[ImageUpload] = None,
    ) -> Optional[AssignmentSchema]:
        return await self._confirm(
            assignment, TrackingEventType.PICKUP, location, description, photo
        )

    async def confirm_delivery(
        self,
        assignment: AssignmentSchema,
        location: Optional[str] = None,
        description: Optional[str] = None,
        photo: Optional[ImageUpload] = None,
    ) -> Optional[AssignmentSchema]:
        return await self._confirm(
            assignment, TrackingEventType.DELIVERY, location, description, photo
        )

    async def _confirm(
        self,
        assignment: AssignmentSchema,
        action: TrackingEventType,
        location: Optional[str],
        description: Optional[str],
        photo: Optional[ImageUpload],
    ) -> Optional[AssignmentSchema]:
        if self.loading:
            logger.info(f"Ignoring {action.value} for {assignment.id}: update in progress")
            return None
        if not self.can_act(assignment):
            await self._error("Not allowed", "Only the traveler can update this delivery")
            return None
        if self.available_action(assignment) != action:
            await self._warning(
                "Not available",
                f"Cannot confirm {action.value} from status "
                f"{assignment.delivery_status.value}",
            )
            return None

        self.loading = True
        try:
            photo_url = await self._upload_photo(photo) if photo else None

            try:
                if action == TrackingEventType.PICKUP:
                    updated = await self.client.stamp_pickup(assignment.id, self.actor)
                else:
                    updated = await self.client.stamp_delivery(assignment.id, self.actor)
            except BackendError as e:
                logger.error(f"Error updating status of {assignment.id}: {e.detail}")
                await self._error("Error", "Could not update the delivery status")
                return None

            event_data = TrackingEventCreateSchema(
                event_type=action,
                description=description or DEFAULT_DESCRIPTIONS[action],
                location=location,
                photo_url=photo_url,
            )
            try:
                await self.client.insert_tracking_event(assignment.id, self.actor, event_data)
            except BackendError as e:
                logger.error(f"Tracking event for {assignment.id} not logged: {e.detail}")
                await self._warning(
                    "Tracking not updated",
                    "The status changed but the tracking history could not be updated",
                )

            title = "Pickup confirmed" if action == TrackingEventType.PICKUP else "Delivery confirmed"
            await self._success(title, "The status was updated successfully")
            return updated
        finally:
            self.loading = False

    async def _upload_photo(self, photo: ImageUpload) -> Optional[str]:
        try:
            return await self.client.upload_image(
                settings.PROOF_PHOTOS_FOLDER,
                self.actor.id,
                photo.filename,
                photo.data,
                photo.content_type,
            )
        except (BackendError, InvalidInput) as e:
            logger.warning(f"Proof photo upload failed: {e}")
            await self._warning("Photo not uploaded", "Continuing without the proof photo")
            return None
