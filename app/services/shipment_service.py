from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.models import Shipment
from app.schemas.realtime_schemas import ChangeEventType
from app.schemas.status_schema import ShipmentStatus
from app.schemas.tracking_schemas import ShipmentSchema
from app.schemas.user_schemas import Actor
from app.services.realtime_service import publish_change
from app.sync.feed import BaseChangeFeed
from app.utils.exceptions import AuthorizationDenied, NotFound
from app.utils.logger_config import setup_logger

logger = setup_logger()


async def get_shipment(db: AsyncSession, shipment_id: UUID) -> ShipmentSchema:
    shipment = await db.get(Shipment, shipment_id)
    if shipment is None:
        raise NotFound("Shipment not found")
    return ShipmentSchema.model_validate(shipment)


async def delete_shipment(
    db: AsyncSession,
    shipment_id: UUID,
    actor: Actor,
    feed: Optional[BaseChangeFeed] = None,
) -> None:
    """
    Delete a shipment. Row policy: only its sender, and only once delivered.
    """
    shipment = await db.get(Shipment, shipment_id)
    if shipment is None:
        raise NotFound("Shipment not found")
    if shipment.sender_id != actor.id or shipment.status != ShipmentStatus.DELIVERED:
        logger.warning(f"Delete of shipment {shipment_id} by {actor.id} rejected by policy")
        raise AuthorizationDenied(
            "Row-level policy: only delivered shipments can be deleted by their sender"
        )

    schema = ShipmentSchema.model_validate(shipment)
    await db.delete(shipment)
    await db.commit()
    await publish_change(feed, Shipment.__tablename__, ChangeEventType.DELETE, schema)
    logger.info(f"Shipment {shipment_id} deleted by {actor.id}")
