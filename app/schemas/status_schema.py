from enum import Enum


class PaymentStatus(str, Enum):
    PENDING: str = "pending"
    ESCROWED: str = "escrowed"
    RELEASED: str = "released"  # Unlocks pickup
    REFUNDED: str = "refunded"


class DeliveryStatus(str, Enum):
    """Presentation status of an assignment. Derived on read, never stored."""

    PENDING_PAYMENT: str = "pending_payment"
    READY_FOR_PICKUP: str = "ready_for_pickup"
    IN_TRANSIT: str = "in_transit"
    DELIVERED: str = "delivered"


class ShipmentStatus(str, Enum):
    PENDING: str = "pending"
    MATCHED: str = "matched"
    IN_TRANSIT: str = "in_transit"
    DELIVERED: str = "delivered"
    CANCELLED: str = "cancelled"


class ConversationStatus(str, Enum):
    OPEN: str = "open"
    CLOSED: str = "closed"


class TrackingEventType(str, Enum):
    PICKUP: str = "pickup"
    IN_TRANSIT: str = "in_transit"
    DELIVERY: str = "delivery"
    DELIVERED: str = "delivered"
    LOCATION_UPDATE: str = "location_update"
    CUSTOM: str = "custom"


class NotificationLevel(str, Enum):
    INFO: str = "info"
    SUCCESS: str = "success"
    WARNING: str = "warning"
    ERROR: str = "error"
