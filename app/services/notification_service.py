from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.models import Notification
from app.schemas.notification_schemas import (
    NotificationCreateSchema,
    NotificationListResponseSchema,
    NotificationSchema,
)
from app.schemas.user_schemas import Actor
from app.services.realtime_service import publish_insert, publish_update
from app.sync.feed import BaseChangeFeed
from app.utils.exceptions import AuthorizationDenied, NotFound
from app.utils.logger_config import setup_logger

logger = setup_logger()


async def create_notification(
    db: AsyncSession,
    notification_data: NotificationCreateSchema,
    feed: Optional[BaseChangeFeed] = None,
) -> NotificationSchema:
    """Backend-side trigger: file a notification in a user's inbox"""
    notification = Notification(
        user_id=notification_data.user_id,
        title=notification_data.title,
        message=notification_data.message,
        type=notification_data.type,
        link=notification_data.link,
    )
    db.add(notification)
    await db.commit()
    await db.refresh(notification)

    schema = NotificationSchema.model_validate(notification)
    await publish_insert(feed, Notification.__tablename__, schema)
    return schema


async def count_unread_notifications(db: AsyncSession, actor: Actor) -> int:
    result = await db.execute(
        select(func.count(Notification.id)).where(
            and_(Notification.user_id == actor.id, Notification.read.is_(False))
        )
    )
    return result.scalar() or 0


async def get_user_notifications(
    db: AsyncSession,
    actor: Actor,
    skip: int = 0,
    limit: int = 50,
) -> NotificationListResponseSchema:
    """Get notifications for a specific user, newest first"""
    count_result = await db.execute(
        select(func.count(Notification.id)).where(Notification.user_id == actor.id)
    )
    total_count = count_result.scalar() or 0

    result = await db.execute(
        select(Notification)
        .where(Notification.user_id == actor.id)
        .order_by(Notification.created_at.desc())
        .offset(skip)
        .limit(limit)
    )
    notifications = [
        NotificationSchema.model_validate(row) for row in result.scalars().all()
    ]

    return NotificationListResponseSchema(
        notifications=notifications,
        total_count=total_count,
        unread_count=await count_unread_notifications(db, actor),
    )


async def mark_notification_read(
    db: AsyncSession,
    notification_id: UUID,
    actor: Actor,
    feed: Optional[BaseChangeFeed] = None,
) -> NotificationSchema:
    """Mark a notification as read for its owner"""
    notification = await db.get(Notification, notification_id)
    if notification is None:
        raise NotFound("Notification not found")
    if notification.user_id != actor.id:
        raise AuthorizationDenied("This notification belongs to another user")

    if not notification.read:
        notification.read = True
        await db.commit()
        await db.refresh(notification)
        schema = NotificationSchema.model_validate(notification)
        await publish_update(
            feed, Notification.__tablename__, schema, old_record={"read": False}
        )
        return schema

    return NotificationSchema.model_validate(notification)


async def mark_all_notifications_read(
    db: AsyncSession,
    actor: Actor,
    feed: Optional[BaseChangeFeed] = None,
) -> int:
    """Mark all notifications as read for a user. Returns how many changed."""
    unread_result = await db.execute(
        select(Notification.id).where(
            and_(Notification.user_id == actor.id, Notification.read.is_(False))
        )
    )
    unread_ids: List[UUID] = list(unread_result.scalars().all())
    if not unread_ids:
        return 0

    await db.execute(
        update(Notification)
        .where(Notification.id.in_(unread_ids))
        .values(read=True)
    )
    await db.commit()

    result = await db.execute(
        select(Notification).where(Notification.id.in_(unread_ids))
    )
    for notification in result.scalars().all():
        await publish_update(
            feed,
            Notification.__tablename__,
            NotificationSchema.model_validate(notification),
            old_record={"read": False},
        )
    logger.info(f"Marked {len(unread_ids)} notifications read for {actor.id}")
    return len(unread_ids)
