from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.schemas.status_schema import ConversationStatus


class ThreadKind(str, Enum):
    DIRECT = "direct"  # sender <-> traveler, per assignment
    ADMIN = "admin"  # user <-> support team


class MessageSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    conversation_id: UUID
    sender_id: UUID
    content: str
    image_url: Optional[str] = None
    image_type: Optional[str] = None
    created_at: datetime
    read_at: Optional[datetime] = None


class MessageCreateSchema(BaseModel):
    content: str = Field(..., min_length=1)
    image_url: Optional[str] = None
    image_type: Optional[str] = None

    @field_validator("content")
    @classmethod
    def strip_content(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Message content cannot be blank")
        return value


class LastMessageSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    content: str
    created_at: datetime
    sender_id: UUID


class ConversationSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sender_id: UUID
    traveler_id: UUID
    assignment_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime


class ConversationSummarySchema(ConversationSchema):
    last_message: Optional[LastMessageSchema] = None
    unread_count: int = 0


class AdminConversationSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    admin_id: Optional[UUID] = None
    subject: Optional[str] = None
    status: ConversationStatus
    created_at: datetime
    updated_at: datetime


class AdminConversationCreateSchema(BaseModel):
    subject: str

    @field_validator("subject")
    @classmethod
    def strip_subject(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Subject is required")
        return value


class ImageUpload(BaseModel):
    """A picked file waiting to go to object storage"""

    filename: str
    data: bytes
    content_type: str
