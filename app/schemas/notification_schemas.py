from datetime import datetime
from typing import Optional, List
from uuid import UUID
from pydantic import BaseModel, ConfigDict

from app.schemas.status_schema import NotificationLevel


class NotificationSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    title: str
    message: str
    type: NotificationLevel
    link: Optional[str] = None
    read: bool = False
    created_at: datetime


class NotificationCreateSchema(BaseModel):
    user_id: UUID
    title: str
    message: str
    type: NotificationLevel = NotificationLevel.INFO
    link: Optional[str] = None


class NotificationListResponseSchema(BaseModel):
    notifications: List[NotificationSchema]
    total_count: int
    unread_count: int


class Notice(BaseModel):
    """Transient user-facing feedback (toast) for an action outcome"""

    level: NotificationLevel
    title: str
    description: str
    link: Optional[str] = None
