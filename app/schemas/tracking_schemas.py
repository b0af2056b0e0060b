from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field

from app.schemas.status_schema import (
    DeliveryStatus,
    PaymentStatus,
    ShipmentStatus,
    TrackingEventType,
)


class TrackingEventSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    assignment_id: UUID
    event_type: TrackingEventType
    description: Optional[str] = None
    location: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    photo_url: Optional[str] = None
    created_by: Optional[UUID] = None
    created_at: datetime


class TrackingEventCreateSchema(BaseModel):
    event_type: TrackingEventType
    description: Optional[str] = None
    location: Optional[str] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    photo_url: Optional[str] = None


class ShipmentSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sender_id: UUID
    title: str
    pickup_city: str
    delivery_city: str
    status: ShipmentStatus
    created_at: datetime


class AssignmentSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    shipment_id: UUID
    sender_id: UUID
    traveler_id: UUID
    final_price: Decimal
    payment_status: PaymentStatus
    pickup_completed_at: Optional[datetime] = None
    delivery_completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @property
    def delivery_status(self) -> DeliveryStatus:
        # Imported here: app.sync.status depends on this module
        from app.sync.status import derive_status

        return derive_status(
            self.payment_status, self.pickup_completed_at, self.delivery_completed_at
        )
