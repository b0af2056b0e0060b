from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.models import Assignment, Shipment
from app.schemas.status_schema import PaymentStatus, ShipmentStatus
from app.schemas.tracking_schemas import AssignmentSchema
from app.schemas.user_schemas import Actor
from app.services.realtime_service import publish_update
from app.sync.feed import BaseChangeFeed
from app.utils.exceptions import AuthorizationDenied, ConflictError, NotFound
from app.utils.logger_config import setup_logger

logger = setup_logger()


async def get_assignment(
    db: AsyncSession, assignment_id: UUID, actor: Actor
) -> AssignmentSchema:
    assignment = await db.get(Assignment, assignment_id)
    if assignment is None:
        raise NotFound("Assignment not found")
    if actor.id not in (assignment.sender_id, assignment.traveler_id) and not actor.is_admin:
        raise AuthorizationDenied("You are not part of this delivery")
    return AssignmentSchema.model_validate(assignment)


async def list_assignments_for_user(
    db: AsyncSession, actor: Actor
) -> List[AssignmentSchema]:
    result = await db.execute(
        select(Assignment)
        .where(
            or_(Assignment.sender_id == actor.id, Assignment.traveler_id == actor.id)
        )
        .order_by(Assignment.created_at.desc())
    )
    return [AssignmentSchema.model_validate(row) for row in result.scalars().all()]


async def update_payment_status(
    db: AsyncSession,
    assignment_id: UUID,
    payment_status: PaymentStatus,
    feed: Optional[BaseChangeFeed] = None,
) -> AssignmentSchema:
    """Payment provider callback. Releasing payment unlocks pickup."""
    assignment = await db.get(Assignment, assignment_id)
    if assignment is None:
        raise NotFound("Assignment not found")
    previous = assignment.payment_status
    assignment.payment_status = payment_status
    await db.commit()
    await db.refresh(assignment)

    schema = AssignmentSchema.model_validate(assignment)
    await publish_update(
        feed,
        Assignment.__tablename__,
        schema,
        old_record={"payment_status": previous.value},
    )
    logger.info(f"Assignment {assignment_id} payment status: {previous.value} -> {payment_status.value}")
    return schema


async def _stamp(
    db: AsyncSession,
    assignment_id: UUID,
    actor: Actor,
    field: str,
    conditions: list,
    shipment_status: ShipmentStatus,
    feed: Optional[BaseChangeFeed],
) -> AssignmentSchema:
    assignment = await db.get(Assignment, assignment_id)
    if assignment is None:
        raise NotFound("Assignment not found")
    if assignment.traveler_id != actor.id:
        raise AuthorizationDenied("Only the traveler can update the delivery status")

    column = getattr(Assignment, field)
    result = await db.execute(
        update(Assignment)
        .where(and_(Assignment.id == assignment_id, column.is_(None), *conditions))
        .values({field: datetime.now(), "updated_at": datetime.now()})
    )
    if result.rowcount == 0:
        await db.rollback()
        raise ConflictError(f"Cannot set {field} in the current delivery state")
    # Keep the shipment listing in step with the delivery
    await db.execute(
        update(Shipment)
        .where(Shipment.id == assignment.shipment_id)
        .values(status=shipment_status)
    )
    await db.commit()
    await db.refresh(assignment)

    schema = AssignmentSchema.model_validate(assignment)
    await publish_update(feed, Assignment.__tablename__, schema, old_record={field: None})
    logger.info(f"Assignment {assignment_id}: {field} stamped by {actor.id}")
    return schema


async def stamp_pickup(
    db: AsyncSession,
    assignment_id: UUID,
    actor: Actor,
    feed: Optional[BaseChangeFeed] = None,
) -> AssignmentSchema:
    """ready_for_pickup -> in_transit. Conditional on payment released and no prior pickup."""
    return await _stamp(
        db,
        assignment_id,
        actor,
        "pickup_completed_at",
        [Assignment.payment_status == PaymentStatus.RELEASED],
        ShipmentStatus.IN_TRANSIT,
        feed,
    )


async def stamp_delivery(
    db: AsyncSession,
    assignment_id: UUID,
    actor: Actor,
    feed: Optional[BaseChangeFeed] = None,
) -> AssignmentSchema:
    """in_transit -> delivered. Conditional on pickup done and no prior delivery."""
    return await _stamp(
        db,
        assignment_id,
        actor,
        "delivery_completed_at",
        [Assignment.pickup_completed_at.is_not(None)],
        ShipmentStatus.DELIVERED,
        feed,
    )
