# src/shared/events/__init__.py
"""
Схемы событий для RabbitMQ.

Все события содержат event_id для дедупликации у потребителей.
"""

from src.shared.events.base import DomainEvent, EventMetadata
from src.shared.events.delivery_events import (
    DeliveryCreated,
    DeliveryAssigned,
    DeliveryStatusChanged,
    NotificationRequested,
)

__all__ = [
    "DomainEvent",
    "EventMetadata",
    "DeliveryCreated",
    "DeliveryAssigned",
    "DeliveryStatusChanged",
    "NotificationRequested",
]
