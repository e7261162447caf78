# src/shared/events/delivery_events.py
"""
События домена доставки.
"""

from __future__ import annotations

from typing import Literal

from src.shared.events.base import DomainEvent


class DeliveryCreated(DomainEvent):
    """Событие: создана доставка, ждёт курьера."""

    event_type: Literal["delivery.created"] = "delivery.created"

    delivery_id: str
    order_id: str
    pickup_address: str
    delivery_address: str
    is_priority: bool = False


class DeliveryAssigned(DomainEvent):
    """Событие: доставка назначена курьеру."""

    event_type: Literal["delivery.assigned"] = "delivery.assigned"

    delivery_id: str
    order_id: str
    delivery_person_id: str
    assigned_by: Literal["accept", "auto", "manual"]


class DeliveryStatusChanged(DomainEvent):
    """Событие: статус доставки изменён."""

    event_type: Literal["delivery.status_changed"] = "delivery.status_changed"

    delivery_id: str
    order_id: str
    old_status: str
    new_status: str
    delivery_person_id: str | None = None
    changed_by: str | None = None


class NotificationRequested(DomainEvent):
    """Событие: уведомление курьеру (для внешнего сервиса push/SMS)."""

    event_type: Literal["notification.delivery_person"] = "notification.delivery_person"

    notification_id: str
    delivery_person_id: str | None = None
    target_role: str | None = None
    notification_type: str
    message: str
    priority: str
