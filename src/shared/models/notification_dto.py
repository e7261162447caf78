# src/shared/models/notification_dto.py
"""
DTO уведомлений курьерам.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field

from src.common.constants import NotificationPriority, NotificationType
from src.shared.models.common import PaginationInfo


class DeliveryNotification(BaseModel):
    id: str
    delivery_person_id: Optional[str] = None
    target_role: Optional[str] = None
    delivery_id: Optional[str] = None
    order_id: Optional[str] = None
    type: NotificationType
    message: str
    is_read: bool = False
    priority: NotificationPriority = NotificationPriority.MEDIUM
    created_at: datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "DeliveryNotification":
        delivery_id = row.get("delivery_id")
        return cls(
            id=str(row["id"]),
            delivery_person_id=row.get("delivery_person_id"),
            target_role=row.get("target_role"),
            delivery_id=str(delivery_id) if delivery_id is not None else None,
            order_id=row.get("order_id"),
            type=row["type"],
            message=row["message"],
            is_read=row["is_read"],
            priority=row["priority"],
            created_at=row["created_at"],
        )


class CreateNotificationRequest(BaseModel):
    delivery_person_id: str = Field(min_length=1)
    type: NotificationType
    message: str = Field(min_length=1)
    delivery_id: Optional[str] = None
    order_id: Optional[str] = None
    priority: NotificationPriority = NotificationPriority.MEDIUM


class NotificationPage(BaseModel):
    notifications: list[DeliveryNotification]
    unread_count: int
    pagination: PaginationInfo


class MarkAllReadResponse(BaseModel):
    message: str
    count: int
