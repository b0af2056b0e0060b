from typing import Optional
from uuid import UUID, uuid4
from datetime import datetime
from decimal import Decimal

from sqlalchemy import ForeignKey, Numeric, Text, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database.database import Base
from app.schemas.status_schema import (
    ConversationStatus,
    NotificationLevel,
    PaymentStatus,
    ShipmentStatus,
    TrackingEventType,
)


class Shipment(Base):
    __tablename__ = "shipments"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    sender_id: Mapped[UUID] = mapped_column(index=True)
    title: Mapped[str]
    pickup_city: Mapped[str]
    delivery_city: Mapped[str]
    status: Mapped[ShipmentStatus] = mapped_column(default=ShipmentStatus.PENDING)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(
        default=datetime.now, onupdate=datetime.now
    )

    assignments: Mapped[list["Assignment"]] = relationship(
        back_populates="shipment",
        cascade="all, delete-orphan",
    )


class Assignment(Base):
    """A shipment matched to a traveler's trip"""

    __tablename__ = "assignments"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    shipment_id: Mapped[UUID] = mapped_column(
        ForeignKey("shipments.id", ondelete="CASCADE")
    )
    sender_id: Mapped[UUID] = mapped_column(index=True)
    traveler_id: Mapped[UUID] = mapped_column(index=True)
    final_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0)
    payment_status: Mapped[PaymentStatus] = mapped_column(default=PaymentStatus.PENDING)
    # Source fields of the derived delivery status
    pickup_completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    delivery_completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(
        default=datetime.now, onupdate=datetime.now
    )

    shipment: Mapped["Shipment"] = relationship(back_populates="assignments")
    tracking_events: Mapped[list["TrackingEvent"]] = relationship(
        back_populates="assignment",
        cascade="all, delete-orphan",
        order_by="TrackingEvent.created_at",
    )


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint(
            "assignment_id",
            "sender_id",
            "traveler_id",
            name="uq_conversation_participants",
        ),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    sender_id: Mapped[UUID] = mapped_column(index=True)
    traveler_id: Mapped[UUID] = mapped_column(index=True)
    assignment_id: Mapped[Optional[UUID]] = mapped_column(
        ForeignKey("assignments.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(
        default=datetime.now, onupdate=datetime.now
    )

    messages: Mapped[list["Message"]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
    )


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (Index("ix_messages_unread", "conversation_id", "read_at"),)

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    conversation_id: Mapped[UUID] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE")
    )
    sender_id: Mapped[UUID]
    content: Mapped[str] = mapped_column(Text)
    image_url: Mapped[Optional[str]] = mapped_column(nullable=True)
    image_type: Mapped[Optional[str]] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    read_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    conversation: Mapped["Conversation"] = relationship(back_populates="messages")


class AdminConversation(Base):
    """Support thread between one user and the admin team"""

    __tablename__ = "admin_conversations"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(unique=True)  # one thread per user
    admin_id: Mapped[Optional[UUID]] = mapped_column(nullable=True)
    subject: Mapped[Optional[str]] = mapped_column(nullable=True)
    status: Mapped[ConversationStatus] = mapped_column(default=ConversationStatus.OPEN)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(
        default=datetime.now, onupdate=datetime.now
    )

    messages: Mapped[list["AdminMessage"]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
    )


class AdminMessage(Base):
    __tablename__ = "admin_messages"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    conversation_id: Mapped[UUID] = mapped_column(
        ForeignKey("admin_conversations.id", ondelete="CASCADE")
    )
    sender_id: Mapped[UUID]
    content: Mapped[str] = mapped_column(Text)
    image_url: Mapped[Optional[str]] = mapped_column(nullable=True)
    image_type: Mapped[Optional[str]] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
    read_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    conversation: Mapped["AdminConversation"] = relationship(back_populates="messages")


class TrackingEvent(Base):
    """Append-only delivery timeline entry"""

    __tablename__ = "tracking_events"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    assignment_id: Mapped[UUID] = mapped_column(
        ForeignKey("assignments.id", ondelete="CASCADE"), index=True
    )
    event_type: Mapped[TrackingEventType]
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(nullable=True)
    photo_url: Mapped[Optional[str]] = mapped_column(nullable=True)
    created_by: Mapped[Optional[UUID]] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)

    assignment: Mapped["Assignment"] = relationship(back_populates="tracking_events")


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(index=True)
    title: Mapped[str]
    message: Mapped[str] = mapped_column(Text)
    type: Mapped[NotificationLevel] = mapped_column(default=NotificationLevel.INFO)
    link: Mapped[Optional[str]] = mapped_column(nullable=True)
    read: Mapped[bool] = mapped_column(default=False)
    created_at: Mapped[datetime] = mapped_column(default=datetime.now)
