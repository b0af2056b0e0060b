from datetime import datetime
from typing import List, Optional, Sequence, Tuple, Type
from uuid import UUID

from sqlalchemy import select, update, func, and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.models import (
    AdminConversation,
    AdminMessage,
    Conversation,
    Message,
)
from app.schemas.message_schemas import (
    AdminConversationCreateSchema,
    AdminConversationSchema,
    ConversationSchema,
    ConversationSummarySchema,
    LastMessageSchema,
    MessageCreateSchema,
    MessageSchema,
    ThreadKind,
)
from app.schemas.user_schemas import Actor
from app.services.realtime_service import publish_insert, publish_update
from app.sync.feed import BaseChangeFeed
from app.utils.exceptions import AuthorizationDenied, ConflictError, NotFound
from app.utils.logger_config import setup_logger

logger = setup_logger()


THREAD_MODELS: dict[ThreadKind, Tuple[Type, Type]] = {
    ThreadKind.DIRECT: (Conversation, Message),
    ThreadKind.ADMIN: (AdminConversation, AdminMessage),
}


def message_table(kind: ThreadKind) -> str:
    return THREAD_MODELS[kind][1].__tablename__


def conversation_table(kind: ThreadKind) -> str:
    return THREAD_MODELS[kind][0].__tablename__


def is_participant(kind: ThreadKind, conversation, actor: Actor) -> bool:
    if kind == ThreadKind.ADMIN:
        return conversation.user_id == actor.id or actor.is_admin
    return actor.id in (conversation.sender_id, conversation.traveler_id)


async def get_thread(
    db: AsyncSession, kind: ThreadKind, conversation_id: UUID, actor: Actor
):
    """Load a conversation the actor may see (admins see every thread)"""
    conversation_model, _ = THREAD_MODELS[kind]
    conversation = await db.get(conversation_model, conversation_id)
    if conversation is None:
        raise NotFound("Conversation not found")
    if not (is_participant(kind, conversation, actor) or actor.is_admin):
        raise AuthorizationDenied("You are not a participant of this conversation")
    return conversation


# Direct (sender <-> traveler) conversations


async def list_conversations(db: AsyncSession, actor: Actor) -> List[ConversationSchema]:
    result = await db.execute(
        select(Conversation)
        .where(
            or_(
                Conversation.sender_id == actor.id,
                Conversation.traveler_id == actor.id,
            )
        )
        .order_by(Conversation.updated_at.desc())
    )
    return [ConversationSchema.model_validate(row) for row in result.scalars().all()]


async def get_conversation_ids(db: AsyncSession, actor: Actor) -> List[UUID]:
    """First half of the unread computation: every conversation the actor is in"""
    result = await db.execute(
        select(Conversation.id).where(
            or_(
                Conversation.sender_id == actor.id,
                Conversation.traveler_id == actor.id,
            )
        )
    )
    return list(result.scalars().all())


async def get_or_create_conversation(
    db: AsyncSession,
    actor: Actor,
    assignment_id: Optional[UUID],
    sender_id: UUID,
    traveler_id: UUID,
    feed: Optional[BaseChangeFeed] = None,
) -> ConversationSchema:
    """Return the thread for this participant pair and assignment, creating it once"""
    if actor.id not in (sender_id, traveler_id) and not actor.is_admin:
        raise AuthorizationDenied("You can only open conversations you take part in")

    # The pair is unordered: either side may have opened the thread
    result = await db.execute(
        select(Conversation).where(
            and_(
                Conversation.assignment_id == assignment_id,
                or_(
                    and_(
                        Conversation.sender_id == sender_id,
                        Conversation.traveler_id == traveler_id,
                    ),
                    and_(
                        Conversation.sender_id == traveler_id,
                        Conversation.traveler_id == sender_id,
                    ),
                ),
            )
        )
    )
    existing = result.scalars().first()
    if existing:
        return ConversationSchema.model_validate(existing)

    conversation = Conversation(
        assignment_id=assignment_id,
        sender_id=sender_id,
        traveler_id=traveler_id,
    )
    db.add(conversation)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError("Conversation already exists") from e
    await db.refresh(conversation)

    schema = ConversationSchema.model_validate(conversation)
    await publish_insert(feed, Conversation.__tablename__, schema)
    logger.info(f"Conversation {conversation.id} created for assignment {assignment_id}")
    return schema


async def get_conversation_summaries(
    db: AsyncSession, actor: Actor
) -> List[ConversationSummarySchema]:
    """Conversations newest first, each with its last message and unread count"""
    conversations = await list_conversations(db, actor)
    if not conversations:
        return []
    ids = [conversation.id for conversation in conversations]

    unread_result = await db.execute(
        select(Message.conversation_id, func.count(Message.id))
        .where(
            and_(
                Message.conversation_id.in_(ids),
                Message.sender_id != actor.id,
                Message.read_at.is_(None),
            )
        )
        .group_by(Message.conversation_id)
    )
    unread_counts = dict(unread_result.all())

    summaries = []
    for conversation in conversations:
        last_result = await db.execute(
            select(Message)
            .where(Message.conversation_id == conversation.id)
            .order_by(Message.created_at.desc())
            .limit(1)
        )
        last_message = last_result.scalars().first()
        summaries.append(
            ConversationSummarySchema(
                **conversation.model_dump(),
                last_message=(
                    LastMessageSchema.model_validate(last_message)
                    if last_message
                    else None
                ),
                unread_count=unread_counts.get(conversation.id, 0),
            )
        )
    return summaries


async def count_unread_messages(
    db: AsyncSession, conversation_ids: Sequence[UUID], actor: Actor
) -> int:
    """Second half of the unread computation: unread messages from the other party"""
    if not conversation_ids:
        return 0
    result = await db.execute(
        select(func.count(Message.id)).where(
            and_(
                Message.conversation_id.in_(list(conversation_ids)),
                Message.sender_id != actor.id,
                Message.read_at.is_(None),
            )
        )
    )
    return result.scalar() or 0


# Messages, shared by direct and admin threads


async def get_messages(
    db: AsyncSession, kind: ThreadKind, conversation_id: UUID, actor: Actor
) -> List[MessageSchema]:
    await get_thread(db, kind, conversation_id, actor)
    _, message_model = THREAD_MODELS[kind]
    result = await db.execute(
        select(message_model)
        .where(message_model.conversation_id == conversation_id)
        .order_by(message_model.created_at.asc())
    )
    return [MessageSchema.model_validate(row) for row in result.scalars().all()]


async def insert_message(
    db: AsyncSession,
    kind: ThreadKind,
    conversation_id: UUID,
    actor: Actor,
    message_data: MessageCreateSchema,
    feed: Optional[BaseChangeFeed] = None,
) -> MessageSchema:
    conversation = await get_thread(db, kind, conversation_id, actor)
    _, message_model = THREAD_MODELS[kind]

    message = message_model(
        conversation_id=conversation_id,
        sender_id=actor.id,
        content=message_data.content,
        image_url=message_data.image_url,
        image_type=message_data.image_type,
    )
    db.add(message)
    conversation.updated_at = datetime.now()
    await db.commit()
    await db.refresh(message)

    schema = MessageSchema.model_validate(message)
    await publish_insert(feed, message_model.__tablename__, schema)
    return schema


async def mark_conversation_read(
    db: AsyncSession,
    kind: ThreadKind,
    conversation_id: UUID,
    actor: Actor,
    feed: Optional[BaseChangeFeed] = None,
) -> int:
    """
    Stamp read_at on every unread message from the other side of the thread.

    Conditional bulk update (`read_at is null AND sender_id != viewer`). In a
    support thread the user reads admin replies and admins read the user's
    messages. An admin looking at a direct thread stamps nothing.
    Returns the number of rows stamped; a repeat call with nothing new is a
    no-op returning 0.
    """
    conversation = await get_thread(db, kind, conversation_id, actor)
    _, message_model = THREAD_MODELS[kind]

    # Only the other side of a thread marks it read
    if kind == ThreadKind.ADMIN:
        if conversation.user_id == actor.id:
            counterpart = message_model.sender_id != conversation.user_id
        else:
            counterpart = message_model.sender_id == conversation.user_id
    elif is_participant(kind, conversation, actor):
        counterpart = message_model.sender_id != actor.id
    else:
        return 0

    conditions = and_(
        message_model.conversation_id == conversation_id,
        counterpart,
        message_model.read_at.is_(None),
    )

    unread_result = await db.execute(select(message_model.id).where(conditions))
    unread_ids = list(unread_result.scalars().all())
    if not unread_ids:
        return 0

    read_at = datetime.now()
    await db.execute(
        update(message_model)
        .where(and_(message_model.id.in_(unread_ids), message_model.read_at.is_(None)))
        .values(read_at=read_at)
    )
    await db.commit()

    result = await db.execute(
        select(message_model).where(message_model.id.in_(unread_ids))
    )
    stamped = [MessageSchema.model_validate(row) for row in result.scalars().all()]
    for message in stamped:
        await publish_update(
            feed, message_model.__tablename__, message, old_record={"read_at": None}
        )
    logger.info(
        f"Marked {len(stamped)} messages read in {kind.value} conversation {conversation_id}"
    )
    return len(stamped)


# Admin support threads


async def get_admin_conversation(
    db: AsyncSession, actor: Actor
) -> Optional[AdminConversationSchema]:
    result = await db.execute(
        select(AdminConversation).where(AdminConversation.user_id == actor.id)
    )
    conversation = result.scalar_one_or_none()
    return AdminConversationSchema.model_validate(conversation) if conversation else None


async def create_admin_conversation(
    db: AsyncSession,
    actor: Actor,
    conversation_data: AdminConversationCreateSchema,
    feed: Optional[BaseChangeFeed] = None,
) -> AdminConversationSchema:
    """Open the user's support thread. A user has at most one."""
    if await get_admin_conversation(db, actor):
        raise ConflictError("You already have a conversation with the administration")

    conversation = AdminConversation(
        user_id=actor.id,
        subject=conversation_data.subject,
    )
    db.add(conversation)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise ConflictError(
            "You already have a conversation with the administration"
        ) from e
    await db.refresh(conversation)

    schema = AdminConversationSchema.model_validate(conversation)
    await publish_insert(feed, AdminConversation.__tablename__, schema)
    return schema


async def list_admin_conversations(
    db: AsyncSession, actor: Actor
) -> List[AdminConversationSchema]:
    if not actor.is_admin:
        raise AuthorizationDenied("Only administrators can list support conversations")
    result = await db.execute(
        select(AdminConversation).order_by(AdminConversation.updated_at.desc())
    )
    return [
        AdminConversationSchema.model_validate(row) for row in result.scalars().all()
    ]
