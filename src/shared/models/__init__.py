# src/shared/models/__init__.py
"""
Общие DTO и Pydantic-модели.
"""

from src.shared.models.common import (
    PaginationParams,
    PaginationInfo,
    MessageResponse,
    ErrorResponse,
    HealthStatus,
)
from src.shared.models.delivery_dto import (
    Coordinates,
    Place,
    Contact,
    Delivery,
    CreateDeliveryRequest,
    UpdateStatusRequest,
    AssignRequest,
    DeliveryPage,
    DeliveryStats,
)
from src.shared.models.location_dto import (
    AgentLocation,
    LocationUpdateRequest,
    NearbyAgent,
    DeliveryPosition,
)
from src.shared.models.notification_dto import (
    DeliveryNotification,
    CreateNotificationRequest,
    NotificationPage,
)

__all__ = [
    "PaginationParams",
    "PaginationInfo",
    "MessageResponse",
    "ErrorResponse",
    "HealthStatus",
    "Coordinates",
    "Place",
    "Contact",
    "Delivery",
    "CreateDeliveryRequest",
    "UpdateStatusRequest",
    "AssignRequest",
    "DeliveryPage",
    "DeliveryStats",
    "AgentLocation",
    "LocationUpdateRequest",
    "NearbyAgent",
    "DeliveryPosition",
    "DeliveryNotification",
    "CreateNotificationRequest",
    "NotificationPage",
]
