from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.models import Assignment, TrackingEvent
from app.schemas.tracking_schemas import TrackingEventCreateSchema, TrackingEventSchema
from app.schemas.user_schemas import Actor
from app.services.realtime_service import publish_insert
from app.sync.feed import BaseChangeFeed
from app.utils.exceptions import AuthorizationDenied, NotFound


async def _get_visible_assignment(
    db: AsyncSession, assignment_id: UUID, actor: Actor
) -> Assignment:
    assignment = await db.get(Assignment, assignment_id)
    if assignment is None:
        raise NotFound("Assignment not found")
    if actor.id not in (assignment.sender_id, assignment.traveler_id) and not actor.is_admin:
        raise AuthorizationDenied("You are not part of this delivery")
    return assignment


async def get_tracking_events(
    db: AsyncSession,
    assignment_id: UUID,
    actor: Actor,
    descending: bool = False,
) -> List[TrackingEventSchema]:
    """Timeline (ascending) or latest-first (descending) events of an assignment"""
    await _get_visible_assignment(db, assignment_id, actor)
    order = (
        TrackingEvent.created_at.desc() if descending else TrackingEvent.created_at.asc()
    )
    result = await db.execute(
        select(TrackingEvent)
        .where(TrackingEvent.assignment_id == assignment_id)
        .order_by(order)
    )
    return [TrackingEventSchema.model_validate(row) for row in result.scalars().all()]


async def get_latest_tracking_event(
    db: AsyncSession, assignment_id: UUID, actor: Actor
) -> Optional[TrackingEventSchema]:
    await _get_visible_assignment(db, assignment_id, actor)
    result = await db.execute(
        select(TrackingEvent)
        .where(TrackingEvent.assignment_id == assignment_id)
        .order_by(TrackingEvent.created_at.desc())
        .limit(1)
    )
    event = result.scalars().first()
    return TrackingEventSchema.model_validate(event) if event else None


async def insert_tracking_event(
    db: AsyncSession,
    assignment_id: UUID,
    actor: Actor,
    event_data: TrackingEventCreateSchema,
    feed: Optional[BaseChangeFeed] = None,
) -> TrackingEventSchema:
    """Append a timeline entry. Only the traveler carrying the parcel may log events."""
    assignment = await _get_visible_assignment(db, assignment_id, actor)
    if assignment.traveler_id != actor.id and not actor.is_admin:
        raise AuthorizationDenied("Only the traveler can log tracking events")

    event = TrackingEvent(
        assignment_id=assignment_id,
        event_type=event_data.event_type,
        description=event_data.description,
        location=event_data.location,
        latitude=event_data.latitude,
        longitude=event_data.longitude,
        photo_url=event_data.photo_url,
        created_by=actor.id,
    )
    db.add(event)
    await db.commit()
    await db.refresh(event)

    schema = TrackingEventSchema.model_validate(event)
    await publish_insert(feed, TrackingEvent.__tablename__, schema)
    return schema
